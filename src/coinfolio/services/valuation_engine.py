"""Valuation engine: derives holdings, cost basis and P&L from the ledger."""

import logging
from bisect import bisect_right
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from coinfolio.core.timezone import from_epoch_ms, now_utc, to_utc
from coinfolio.domain.models import CoinPosition, Portfolio, Transaction
from coinfolio.domain.views import (
    AllocationSlice,
    PortfolioTotals,
    PositionValuation,
    PriceSeries,
    ValueHistoryPoint,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def value_position(
    transactions: Iterable[Transaction],
    current_price: Optional[Decimal],
    coin_id: str = "",
) -> PositionValuation:
    """
    Replay transactions in timestamp order using moving-average cost.

    A buy adds amount * price to invested capital. A sell removes the sold
    fraction of invested capital (amount / holdings before the sale), so
    the average cost of the remainder is unchanged and no realised gain is
    recorded. Selling more than is held is accepted: invested capital is
    clamped at zero and the result is flagged `inconsistent`.
    """
    holdings = ZERO
    invested = ZERO
    inconsistent = False
    first_buy_at = None
    last_activity_at = None

    for tx in sorted(transactions, key=lambda t: t.timestamp):
        if tx.is_buy:
            invested += tx.amount * tx.price
            holdings += tx.amount
            if first_buy_at is None or tx.timestamp < first_buy_at:
                first_buy_at = tx.timestamp
        else:
            if holdings > 0:
                sold_fraction = min(tx.amount / holdings, ONE)
                invested -= sold_fraction * invested
            holdings -= tx.amount
            if holdings < 0:
                inconsistent = True

        if last_activity_at is None or tx.timestamp > last_activity_at:
            last_activity_at = tx.timestamp

    if inconsistent:
        logger.warning(
            "Position %s sells more than it holds (holdings %s); flagged inconsistent",
            coin_id or "<unknown>",
            holdings,
        )

    average_cost = invested / holdings if holdings > 0 else ZERO

    current_value = profit_loss = profit_loss_pct = None
    if current_price is not None:
        current_value = holdings * current_price
        profit_loss = current_value - invested
        profit_loss_pct = profit_loss / invested * HUNDRED if invested > 0 else ZERO

    return PositionValuation(
        holdings=holdings,
        average_cost=average_cost,
        invested_capital=invested,
        current_price=current_price,
        current_value=current_value,
        profit_loss=profit_loss,
        profit_loss_pct=profit_loss_pct,
        first_buy_at=first_buy_at,
        last_activity_at=last_activity_at,
        inconsistent=inconsistent,
    )


def aggregate(valuations: dict[str, PositionValuation]) -> PortfolioTotals:
    """Sum per-position valuations; the percentage comes from the sums."""
    invested = ZERO
    value = ZERO
    unpriced = []
    inconsistent = []

    for coin_id, valuation in valuations.items():
        invested += valuation.invested_capital
        if valuation.current_value is None:
            unpriced.append(coin_id)
        else:
            value += valuation.current_value
        if valuation.inconsistent:
            inconsistent.append(coin_id)

    profit_loss = value - invested
    return PortfolioTotals(
        invested_capital=invested,
        current_value=value,
        profit_loss=profit_loss,
        profit_loss_pct=profit_loss / invested * HUNDRED if invested > 0 else ZERO,
        unpriced_coin_ids=unpriced,
        inconsistent_coin_ids=inconsistent,
    )


def revalue_position(position: CoinPosition) -> CoinPosition:
    return replace(
        position,
        valuation=value_position(position.transactions, position.current_price, position.coin_id),
    )


def revalue(portfolio: Portfolio) -> Portfolio:
    """Return a copy of `portfolio` with every valuation and the totals recomputed."""
    positions = {coin_id: revalue_position(p) for coin_id, p in portfolio.positions.items()}
    totals = aggregate({coin_id: p.valuation for coin_id, p in positions.items()})
    return Portfolio(positions=positions, totals=totals, updated_at=now_utc())


def allocation(portfolio: Portfolio) -> list[AllocationSlice]:
    """
    Each priced position's share of the portfolio's current value, largest first.

    Unpriced and empty positions are left out; shares of the rest sum to 100.
    """
    values = [
        (position, position.valuation.current_value)
        for position in portfolio.positions.values()
        if position.valuation.current_value is not None and position.valuation.current_value > 0
    ]
    total = sum((value for _, value in values), ZERO)
    if total <= 0:
        return []
    slices = [
        AllocationSlice(
            coin_id=position.coin_id,
            symbol=position.symbol,
            name=position.name,
            current_value=value,
            share_pct=value / total * HUNDRED,
        )
        for position, value in values
    ]
    return sorted(slices, key=lambda s: s.current_value, reverse=True)


def history_days(range_days: int, today: date, first_activity: Optional[date]) -> list[date]:
    """The last `range_days` UTC days up to `today`, none before `first_activity`."""
    days = [today - timedelta(days=offset) for offset in range(max(1, range_days) - 1, -1, -1)]
    if first_activity is None:
        return []
    return [d for d in days if d >= first_activity]


def daily_closes(series: Optional[PriceSeries]) -> list[tuple[date, Decimal]]:
    """Last sample of each UTC day, in day order."""
    if series is None:
        return []
    closes: dict[date, Decimal] = {}
    for point in sorted(series.points, key=lambda p: p.timestamp_ms):
        closes[from_epoch_ms(point.timestamp_ms).date()] = point.price
    return sorted(closes.items())


def _price_on(closes: list[tuple[date, Decimal]], day: date, fallback: Optional[Decimal]) -> Optional[Decimal]:
    # Carry the latest close forward over days without a sample
    index = bisect_right([d for d, _ in closes], day)
    if index:
        return closes[index - 1][1]
    return fallback


def value_history(
    positions: Iterable[CoinPosition],
    series: dict[str, PriceSeries],
    days: list[date],
) -> list[ValueHistoryPoint]:
    """
    Portfolio value at the close of each day.

    Holdings on a day come from the transactions dated on or before it,
    valued at that day's close (or the latest earlier close). A coin with no
    sample at or before the day is valued at its current price; a coin with
    neither contributes nothing. Positions with no holdings are skipped.
    """
    positions = list(positions)
    closes = {p.coin_id: daily_closes(series.get(p.coin_id)) for p in positions}

    points = []
    for day in days:
        value = ZERO
        invested = ZERO
        for position in positions:
            held = [tx for tx in position.transactions if to_utc(tx.timestamp).date() <= day]
            if not held:
                continue
            price = _price_on(closes[position.coin_id], day, position.current_price)
            valuation = value_position(held, price, position.coin_id)
            if valuation.holdings <= 0:
                continue
            invested += valuation.invested_capital
            if valuation.current_value is not None:
                value += valuation.current_value
        points.append(ValueHistoryPoint(day=day, value=value, invested_capital=invested))
    return points


def growth_pct(points: list[ValueHistoryPoint]) -> Optional[Decimal]:
    """Change from the first to the last point, in percent."""
    if not points or points[0].value <= 0:
        return None
    return (points[-1].value - points[0].value) / points[0].value * HUNDRED
