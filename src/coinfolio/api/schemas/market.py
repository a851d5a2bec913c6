"""Pydantic schemas for market data endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class QuoteResponse(BaseModel):
    """Response schema for a market quote."""

    model_config = {"from_attributes": True}

    coin_id: str
    symbol: str
    name: str
    current_price: Optional[Decimal] = None
    change_24h_pct: Optional[Decimal] = None
    image: Optional[str] = None
    market_cap: Optional[Decimal] = None
    market_cap_rank: Optional[int] = None
    as_of: datetime
    source: str
    stale: bool = False
    estimated: bool = False


class QuoteListResponse(BaseModel):
    quotes: list[QuoteResponse]
    count: int


class PricePointResponse(BaseModel):
    model_config = {"from_attributes": True}

    timestamp_ms: int
    price: Decimal


class PriceSeriesResponse(BaseModel):
    """Response schema for a price history series."""

    model_config = {"from_attributes": True}

    coin_id: str
    range_days: int
    source: str
    stale: bool = False
    estimated: bool = False
    points: list[PricePointResponse]
