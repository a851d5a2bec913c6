"""Market data endpoints."""

from fastapi import APIRouter, Depends, Query

from coinfolio.api.deps import get_portfolio_service
from coinfolio.api.schemas import PriceSeriesResponse, QuoteListResponse, QuoteResponse
from coinfolio.core.exceptions import NotFoundError
from coinfolio.services import PortfolioService

router = APIRouter(prefix="/market", tags=["market"])


@router.get("/top", response_model=QuoteListResponse)
async def get_top_quotes(
    limit: int = Query(100, ge=1, le=250),
    service: PortfolioService = Depends(get_portfolio_service),
) -> QuoteListResponse:
    """Top coins by market cap."""
    quotes = await service.get_top_quotes(limit)
    return QuoteListResponse(
        quotes=[QuoteResponse.model_validate(q) for q in quotes],
        count=len(quotes),
    )


@router.get("/search", response_model=QuoteListResponse)
async def search(
    q: str = Query("", max_length=100, description="Name, symbol or 0x contract address"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> QuoteListResponse:
    quotes = await service.search(q)
    return QuoteListResponse(
        quotes=[QuoteResponse.model_validate(quote) for quote in quotes],
        count=len(quotes),
    )


@router.get("/quotes/{coin_id}", response_model=QuoteResponse)
async def get_quote(
    coin_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
) -> QuoteResponse:
    quote = await service.get_quote(coin_id)
    if quote is None:
        raise NotFoundError("Coin", coin_id)
    return QuoteResponse.model_validate(quote)


@router.get("/series/{coin_id}", response_model=PriceSeriesResponse)
async def get_series(
    coin_id: str,
    days: int = Query(7, ge=1, le=3650, description="Range in days"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> PriceSeriesResponse:
    """Price history; `estimated` marks a synthetic series."""
    series = await service.get_series(coin_id, days)
    return PriceSeriesResponse.model_validate(series)
