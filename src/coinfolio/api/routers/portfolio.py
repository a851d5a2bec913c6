"""Portfolio endpoints: ledger edits, refresh, history, allocation, import and export."""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import Response

from coinfolio.api.deps import get_portfolio_service
from coinfolio.api.schemas import (
    AllocationResponse,
    AllocationSliceResponse,
    ImportSummaryResponse,
    PortfolioResponse,
    PortfolioTotalsResponse,
    PositionResponse,
    TransactionCreateRequest,
    TransactionResponse,
    TransactionUpdateRequest,
    ValueHistoryResponse,
)
from coinfolio.domain.models import Portfolio
from coinfolio.services import PortfolioService, TransactionCreate, TransactionUpdate

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


def _portfolio_response(portfolio: Portfolio) -> PortfolioResponse:
    positions = []
    for position in portfolio.positions.values():
        valuation = position.valuation
        positions.append(PositionResponse(
            coin_id=position.coin_id,
            symbol=position.symbol,
            name=position.name,
            image=position.image,
            holdings=valuation.holdings,
            average_cost=valuation.average_cost,
            invested_capital=valuation.invested_capital,
            current_price=valuation.current_price,
            current_value=valuation.current_value,
            profit_loss=valuation.profit_loss,
            profit_loss_pct=valuation.profit_loss_pct,
            change_24h_pct=position.change_24h_pct,
            price_as_of=position.price_as_of,
            price_source=position.price_source,
            price_stale=position.price_stale,
            inconsistent=valuation.inconsistent,
            first_buy_at=valuation.first_buy_at,
            last_activity_at=valuation.last_activity_at,
            transactions=[
                TransactionResponse(
                    id=tx.tx_id,
                    type=tx.tx_type,
                    amount=tx.amount,
                    price=tx.price,
                    timestamp=tx.timestamp,
                    note=tx.note,
                )
                for tx in position.sorted_transactions()
            ],
        ))

    totals = portfolio.totals
    return PortfolioResponse(
        positions=positions,
        totals=PortfolioTotalsResponse(
            invested_capital=totals.invested_capital,
            current_value=totals.current_value,
            profit_loss=totals.profit_loss,
            profit_loss_pct=totals.profit_loss_pct,
            unpriced_coin_ids=totals.unpriced_coin_ids,
            inconsistent_coin_ids=totals.inconsistent_coin_ids,
        ),
        updated_at=portfolio.updated_at,
    )


@router.get("", response_model=PortfolioResponse)
async def get_portfolio(
    service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    """Get the portfolio valued at the last known prices."""
    return _portfolio_response(await service.get_portfolio())


@router.post("/refresh", response_model=PortfolioResponse)
async def refresh_portfolio(
    service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    """Re-price every position."""
    return _portfolio_response(await service.refresh())


@router.get("/history", response_model=ValueHistoryResponse)
async def get_value_history(
    days: int = Query(7, ge=1, le=365, description="Range in days"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> ValueHistoryResponse:
    """Daily portfolio value since the first transaction, within the range."""
    return ValueHistoryResponse.model_validate(await service.get_value_history(days))


@router.get("/allocation", response_model=AllocationResponse)
async def get_allocation(
    service: PortfolioService = Depends(get_portfolio_service),
) -> AllocationResponse:
    """Each priced position's share of current value."""
    slices = await service.get_allocation()
    return AllocationResponse(
        slices=[AllocationSliceResponse.model_validate(s) for s in slices],
        total_value=sum((s.current_value for s in slices), Decimal("0")),
    )


@router.get("/export")
async def export_portfolio(
    service: PortfolioService = Depends(get_portfolio_service),
) -> Response:
    """Download the portfolio document as JSON."""
    return Response(
        content=await service.export_portfolio(),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="crypto-portfolio.json"'},
    )


@router.post("/import", response_model=ImportSummaryResponse)
async def import_portfolio(
    document: Any = Body(...),
    refresh_prices: bool = Query(True, description="Re-price positions after importing"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> ImportSummaryResponse:
    """Replace the ledger with an exported portfolio document."""
    summary = await service.import_portfolio(document, refresh_prices=refresh_prices)
    return ImportSummaryResponse(
        position_count=summary.position_count,
        transaction_count=summary.transaction_count,
        inconsistent_coin_ids=summary.inconsistent_coin_ids,
    )


@router.post("/coins/{coin_id}/transactions", response_model=PortfolioResponse, status_code=201)
async def add_transaction(
    coin_id: str,
    request: TransactionCreateRequest,
    service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    """Record a buy or sell for a coin."""
    portfolio = await service.add_transaction(
        coin_id,
        TransactionCreate(
            tx_type=request.type,
            amount=request.amount,
            price=request.price,
            timestamp=request.timestamp,
            note=request.note,
        ),
        symbol=request.symbol,
        name=request.name,
        image=request.image,
    )
    return _portfolio_response(portfolio)


@router.put("/coins/{coin_id}/transactions/{tx_id}", response_model=PortfolioResponse)
async def update_transaction(
    coin_id: str,
    tx_id: str,
    request: TransactionUpdateRequest,
    service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    """Edit a transaction (partial update)."""
    portfolio = await service.update_transaction(
        coin_id,
        tx_id,
        TransactionUpdate(
            tx_type=request.type,
            amount=request.amount,
            price=request.price,
            timestamp=request.timestamp,
            note=request.note,
        ),
    )
    return _portfolio_response(portfolio)


@router.delete("/coins/{coin_id}/transactions/{tx_id}", response_model=PortfolioResponse)
async def remove_transaction(
    coin_id: str,
    tx_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    """Delete a transaction; the position is removed with its last transaction."""
    return _portfolio_response(await service.remove_transaction(coin_id, tx_id))
