"""Portfolio service: the async surface combining the ledger and market data."""

import asyncio
import hashlib
import logging
from typing import Optional, Union

from coinfolio.core.exceptions import NoDataAvailableError
from coinfolio.core.timezone import now_utc, to_utc
from coinfolio.domain.models import Portfolio
from coinfolio.domain.views import AllocationSlice, ImportSummary, PriceSeries, Quote, ValueHistory
from coinfolio.services.ledger_service import LedgerService, TransactionCreate, TransactionUpdate
from coinfolio.services.market_data_service import MarketDataService
from coinfolio.services.tiered_cache import TieredCache
from coinfolio.services.valuation_engine import allocation, growth_pct, history_days, value_history
from coinfolio.transfer.exporter import PortfolioExporter
from coinfolio.transfer.importer import PortfolioImporter

logger = logging.getLogger(__name__)

VALUE_HISTORY_TTL = 15 * 60


def apply_quotes(portfolio: Portfolio, quotes: dict[str, Quote]) -> int:
    """
    Copy market data from `quotes` onto matching positions.

    Blank metadata (symbol, name, image) is filled in; a quote without a
    price leaves the last known price alone. Returns the number of positions
    touched.
    """
    touched = 0
    for coin_id, quote in quotes.items():
        position = portfolio.positions.get(coin_id)
        if position is None:
            continue
        if quote.current_price is not None:
            position.current_price = quote.current_price
            position.change_24h_pct = quote.change_24h_pct
            position.price_as_of = quote.as_of
            position.price_source = quote.source
            position.price_stale = quote.stale
        if not position.symbol and quote.symbol:
            position.symbol = quote.symbol
        if not position.name and quote.name:
            position.name = quote.name
        if not position.image and quote.image:
            position.image = quote.image
        touched += 1
    return touched


def value_history_key(portfolio: Portfolio, range_days: int, today) -> str:
    """Cache key that changes with the day and with any ledger edit."""
    digest = hashlib.sha1()
    for coin_id in sorted(portfolio.positions):
        for tx in portfolio.positions[coin_id].sorted_transactions():
            digest.update(
                f"{coin_id}|{tx.tx_id}|{tx.tx_type.value}|{tx.amount}|{tx.price}|{tx.timestamp.isoformat()}\n".encode()
            )
    return f"value_history:{range_days}:{today.isoformat()}:{digest.hexdigest()}"


class PortfolioService:
    """
    Service exposing portfolio and market operations to the API layer.

    Ledger mutations are serialised by one asyncio.Lock. Network calls never
    run under the lock: prices are fetched afterwards and applied in a second
    short critical section that reloads the ledger first, so a concurrent
    edit is never overwritten. A failed price fetch leaves positions unpriced
    and never fails the mutation.
    """

    def __init__(
        self,
        ledger_service: LedgerService,
        market_data_service: MarketDataService,
        importer: Optional[PortfolioImporter] = None,
        exporter: Optional[PortfolioExporter] = None,
        cache: Optional[TieredCache] = None,
    ):
        self._ledger = ledger_service
        self._market = market_data_service
        self._importer = importer or PortfolioImporter(ledger_service)
        self._exporter = exporter or PortfolioExporter(ledger_service)
        self._cache = cache
        self._lock = asyncio.Lock()

    async def get_portfolio(self) -> Portfolio:
        """Current ledger valued at the last known prices."""
        async with self._lock:
            return self._ledger.load()

    async def add_transaction(
        self,
        coin_id: str,
        data: TransactionCreate,
        symbol: Optional[str] = None,
        name: Optional[str] = None,
        image: Optional[str] = None,
    ) -> Portfolio:
        """Record a transaction, then price the coin."""
        async with self._lock:
            self._ledger.add_transaction(coin_id, data, symbol=symbol, name=name, image=image)
        return await self._price_coins([coin_id])

    async def update_transaction(self, coin_id: str, tx_id: str, patch: TransactionUpdate) -> Portfolio:
        async with self._lock:
            self._ledger.update_transaction(coin_id, tx_id, patch)
            return self._ledger.load()

    async def remove_transaction(self, coin_id: str, tx_id: str) -> Portfolio:
        async with self._lock:
            self._ledger.remove_transaction(coin_id, tx_id)
            return self._ledger.load()

    async def refresh(self) -> Portfolio:
        """Re-price every position."""
        async with self._lock:
            coin_ids = self._ledger.load().coin_ids
        if not coin_ids:
            return await self.get_portfolio()
        return await self._price_coins(coin_ids)

    async def search(self, query: str) -> list[Quote]:
        return await self._market.search(query)

    async def get_top_quotes(self, limit: int = 100) -> list[Quote]:
        return await self._market.get_top_quotes(limit)

    async def get_quote(self, coin_id: str) -> Optional[Quote]:
        return await self._market.get_quote(coin_id)

    async def get_series(self, coin_id: str, range_days: int) -> PriceSeries:
        return await self._market.get_series(coin_id, range_days)

    async def get_value_history(self, range_days: int = 7) -> ValueHistory:
        """
        Daily portfolio value over the last `range_days`, from the first transaction on.

        Each coin's history comes from the market data service; a coin with
        none is valued at its last known price. Results are cached for 15
        minutes unless any of them is estimated.
        """
        async with self._lock:
            portfolio = self._ledger.load()

        timestamps = [
            to_utc(tx.timestamp)
            for position in portfolio.positions.values()
            for tx in position.transactions
        ]
        if not timestamps:
            return ValueHistory(range_days=range_days)

        today = now_utc().date()
        key = value_history_key(portfolio, range_days, today)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return ValueHistory.from_payload(cached)

        coin_ids = portfolio.coin_ids
        fetched = await asyncio.gather(*(self._series_or_none(c, range_days) for c in coin_ids))
        series = {c: s for c, s in zip(coin_ids, fetched) if s is not None}

        points = value_history(
            portfolio.positions.values(),
            series,
            history_days(range_days, today, min(timestamps).date()),
        )
        history = ValueHistory(
            range_days=range_days,
            points=points,
            growth_pct=growth_pct(points),
            stale=any(s.stale for s in series.values()),
            estimated=any(s.estimated for s in series.values()),
            unpriced_coin_ids=[
                c for c in coin_ids
                if c not in series and portfolio.positions[c].current_price is None
            ],
        )
        if self._cache is not None and not history.estimated:
            self._cache.set(key, history.to_payload(), VALUE_HISTORY_TTL)
        return history

    async def get_allocation(self) -> list[AllocationSlice]:
        """Share of current value per priced position."""
        async with self._lock:
            return allocation(self._ledger.load())

    async def import_portfolio(
        self,
        data: Union[str, bytes, dict],
        refresh_prices: bool = True,
    ) -> ImportSummary:
        """Replace the ledger with an exported document, then optionally re-price it."""
        async with self._lock:
            summary = self._importer.import_document(data)
        if refresh_prices and summary.position_count:
            await self.refresh()
        return summary

    async def export_portfolio(self) -> str:
        async with self._lock:
            return self._exporter.export_json()

    async def _price_coins(self, coin_ids: list[str]) -> Portfolio:
        quotes = await self._market.get_quotes_bulk(coin_ids)
        missing = [c for c in coin_ids if c not in quotes]
        if missing:
            logger.warning("No price available for %s; left unpriced", ", ".join(missing))

        async with self._lock:
            portfolio = self._ledger.load()
            if apply_quotes(portfolio, quotes):
                portfolio = self._ledger.save(portfolio)
            return portfolio

    async def _series_or_none(self, coin_id: str, range_days: int) -> Optional[PriceSeries]:
        try:
            return await self._market.get_series(coin_id, range_days)
        except NoDataAvailableError as exc:
            logger.warning("No price history for %s: %s", coin_id, exc.message)
            return None
