"""Pydantic schemas for transaction endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from coinfolio.domain.models.enums import TransactionType


class TransactionCreateRequest(BaseModel):
    """Request schema for recording a buy or sell."""

    type: TransactionType = Field(..., description="buy or sell")
    amount: Decimal = Field(..., gt=0, description="Units of the coin")
    price: Decimal = Field(..., ge=0, description="Price per unit in the quote currency")
    timestamp: Optional[datetime] = Field(default=None, description="Defaults to now (UTC)")
    note: Optional[str] = Field(default=None, max_length=500)

    # Optional metadata for a new position (e.g. from a search result)
    symbol: Optional[str] = Field(default=None, max_length=20)
    name: Optional[str] = Field(default=None, max_length=100)
    image: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def lowercase_type(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("symbol")
    @classmethod
    def uppercase_symbol(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else None


class TransactionUpdateRequest(BaseModel):
    """Request schema for updating a transaction (partial update)."""

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, ge=0)
    timestamp: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("type", mode="before")
    @classmethod
    def lowercase_type(cls, v):
        return v.lower() if isinstance(v, str) else v


class TransactionResponse(BaseModel):
    """Response schema for a single transaction."""

    id: str
    type: TransactionType
    amount: Decimal
    price: Decimal
    timestamp: datetime
    note: Optional[str] = None
