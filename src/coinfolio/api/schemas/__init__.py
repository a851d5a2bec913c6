"""Pydantic schemas for API request/response."""

from coinfolio.api.schemas.transaction import (
    TransactionCreateRequest,
    TransactionUpdateRequest,
    TransactionResponse,
)
from coinfolio.api.schemas.portfolio import (
    PositionResponse,
    PortfolioTotalsResponse,
    PortfolioResponse,
    ImportSummaryResponse,
    ValueHistoryPointResponse,
    ValueHistoryResponse,
    AllocationSliceResponse,
    AllocationResponse,
)
from coinfolio.api.schemas.market import (
    QuoteResponse,
    QuoteListResponse,
    PricePointResponse,
    PriceSeriesResponse,
)

__all__ = [
    "TransactionCreateRequest",
    "TransactionUpdateRequest",
    "TransactionResponse",
    "PositionResponse",
    "PortfolioTotalsResponse",
    "PortfolioResponse",
    "ImportSummaryResponse",
    "ValueHistoryPointResponse",
    "ValueHistoryResponse",
    "AllocationSliceResponse",
    "AllocationResponse",
    "QuoteResponse",
    "QuoteListResponse",
    "PricePointResponse",
    "PriceSeriesResponse",
]
