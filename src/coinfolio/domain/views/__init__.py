"""View models for service outputs."""

from coinfolio.domain.views.market import (
    Quote,
    PriceTick,
    PricePoint,
    PriceSeries,
    SearchHit,
)
from coinfolio.domain.views.history import AllocationSlice, ValueHistory, ValueHistoryPoint
from coinfolio.domain.views.portfolio import PositionValuation, PortfolioTotals
from coinfolio.domain.views.transfer import ImportSummary

__all__ = [
    "Quote",
    "PriceTick",
    "PricePoint",
    "PriceSeries",
    "SearchHit",
    "PositionValuation",
    "PortfolioTotals",
    "ImportSummary",
    "ValueHistory",
    "ValueHistoryPoint",
    "AllocationSlice",
]
