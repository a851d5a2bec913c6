"""Pydantic schemas for portfolio endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from coinfolio.api.schemas.transaction import TransactionResponse


class PositionResponse(BaseModel):
    """One coin position with its valuation. Value fields are null when unpriced."""

    coin_id: str
    symbol: str
    name: str
    image: Optional[str] = None
    holdings: Decimal
    average_cost: Decimal
    invested_capital: Decimal
    current_price: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    profit_loss: Optional[Decimal] = None
    profit_loss_pct: Optional[Decimal] = None
    change_24h_pct: Optional[Decimal] = None
    price_as_of: Optional[datetime] = None
    price_source: Optional[str] = None
    price_stale: bool = False
    inconsistent: bool = False
    first_buy_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    transactions: list[TransactionResponse]


class PortfolioTotalsResponse(BaseModel):
    invested_capital: Decimal
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_pct: Decimal
    unpriced_coin_ids: list[str]
    inconsistent_coin_ids: list[str]


class PortfolioResponse(BaseModel):
    """Response schema for the whole portfolio."""

    positions: list[PositionResponse]
    totals: PortfolioTotalsResponse
    updated_at: Optional[datetime] = None


class ImportSummaryResponse(BaseModel):
    """Response schema for portfolio import results."""

    position_count: int
    transaction_count: int
    inconsistent_coin_ids: list[str]


class ValueHistoryPointResponse(BaseModel):
    model_config = {"from_attributes": True}

    day: date
    value: Decimal
    invested_capital: Decimal
    profit_loss: Decimal


class ValueHistoryResponse(BaseModel):
    """Daily portfolio value; `growth_pct` is null when the first value is zero."""

    model_config = {"from_attributes": True}

    range_days: int
    points: list[ValueHistoryPointResponse]
    growth_pct: Optional[Decimal] = None
    stale: bool = False
    estimated: bool = False
    unpriced_coin_ids: list[str]


class AllocationSliceResponse(BaseModel):
    model_config = {"from_attributes": True}

    coin_id: str
    symbol: str
    name: str
    current_value: Decimal
    share_pct: Decimal


class AllocationResponse(BaseModel):
    slices: list[AllocationSliceResponse]
    total_value: Decimal
