"""Market data service: cached, rate-limited, coalesced access to providers."""

import asyncio
import functools
import logging
import random
import re
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar

from coinfolio.core.coalescer import RequestCoalescer
from coinfolio.core.exceptions import (
    MalformedResponseError,
    NoDataAvailableError,
    ProviderError,
    ProviderNotFoundError,
    RateLimitedError,
    TransientNetworkError,
)
from coinfolio.core.rate_limiter import RateLimiter
from coinfolio.core.retry import RetryPolicy, with_retry
from coinfolio.core.timezone import now_utc, to_epoch_ms
from coinfolio.domain.models import PriceSource
from coinfolio.domain.views import PricePoint, PriceSeries, PriceTick, Quote
from coinfolio.providers.market_data_provider import MarketDataProvider, PriceFeedProvider
from coinfolio.services.tiered_cache import TieredCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOP_QUOTES_KEY = "top_quotes"
MAX_SEARCH_RESULTS = 10
CONTRACT_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# Estimated series samples stay within +/- this fraction of the last price
ESTIMATE_SPREAD = 0.05

_NO_RETRY = RetryPolicy(max_attempts=1)


def quote_key(coin_id: str) -> str:
    return f"quote:{coin_id}"


def series_key(coin_id: str, range_days: int) -> str:
    return f"series:{coin_id}:{range_days}"


def search_key(query: str) -> str:
    return f"search:{query.strip().lower()}"


def is_contract_address(query: str) -> bool:
    return bool(CONTRACT_ADDRESS_RE.match(query.strip()))


@dataclass(frozen=True)
class CacheTtls:
    """Fresh-cache lifetime per data category, in seconds."""

    top_quotes: float = 5 * 60
    quote: float = 5 * 60
    series: float = 30 * 60
    search: float = 60 * 60


class MarketDataService:
    """
    Service for market data: top lists, quotes, series and search.

    Each logical request goes cache -> coalesced live fetch (rate-limited,
    retried, run in a worker thread under a hard timeout) -> best-effort
    secondary price enrichment -> cache write. When the live fetch fails the
    stale shadow is served and flagged; with nothing to serve the request
    ends in NoDataAvailableError.
    """

    def __init__(
        self,
        primary: MarketDataProvider,
        cache: TieredCache,
        secondary: Optional[PriceFeedProvider] = None,
        rate_limiter: Optional[RateLimiter] = None,
        coalescer: Optional[RequestCoalescer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        ttls: Optional[CacheTtls] = None,
        request_timeout: float = 12.0,
        max_rate_limit_wait: Optional[float] = 5.0,
        bulk_chunk_size: int = 50,
        bulk_batch_spacing: float = 1.0,
        allow_estimated_series: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._primary = primary
        self._secondary = secondary
        self._cache = cache
        self._limiter = rate_limiter or RateLimiter({})
        self._coalescer = coalescer or RequestCoalescer()
        self._retry = retry_policy or RetryPolicy()
        self._ttls = ttls or CacheTtls()
        self._timeout = request_timeout
        self._max_wait = max_rate_limit_wait
        self._chunk_size = max(1, bulk_chunk_size)
        self._spacing = bulk_batch_spacing
        self._allow_estimated = allow_estimated_series
        self._sleep = sleep
        self._rng = rng
        # coin id -> key of the bulk chunk currently fetching it
        self._bulk_keys: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get_top_quotes(self, limit: int = 100) -> list[Quote]:
        """Top coins by market cap. Falls back to the stale list on failure."""
        cached = self._cache.get(TOP_QUOTES_KEY)
        if cached is not None and cached["limit"] >= limit:
            return [Quote.from_payload(p) for p in cached["quotes"][:limit]]

        async def fetch() -> list[Quote]:
            quotes = await self._call(self._primary, self._primary.fetch_top_quotes, limit)
            return await self._enrich(quotes)

        try:
            quotes = await self._coalescer.dedupe(f"{TOP_QUOTES_KEY}:{limit}", fetch)
        except ProviderError as exc:
            stale = self._stale_or_raise(TOP_QUOTES_KEY, exc, "top quotes")
            return [Quote.from_payload(p, stale=True) for p in stale["quotes"][:limit]]

        payload = {"limit": limit, "quotes": [q.to_payload() for q in quotes]}
        shadow = self._cache.get_stale(TOP_QUOTES_KEY)
        if shadow is not None and shadow["limit"] > limit:
            # A shorter list must not shrink the longer fallback list
            self._cache.set(TOP_QUOTES_KEY, payload, self._ttls.top_quotes)
        else:
            self._cache.write_through(TOP_QUOTES_KEY, payload, self._ttls.top_quotes)
        for quote in quotes:
            self._cache.set(quote_key(quote.coin_id), quote.to_payload(), self._ttls.quote)
        return quotes

    async def get_quote(self, coin_id: str) -> Optional[Quote]:
        """
        Quote for one coin.

        Returns None when the provider does not know the coin. Raises
        NoDataAvailableError when the fetch fails and no stale copy exists.
        A bulk fetch already covering the coin is joined instead of issuing
        a second request.
        """
        key = quote_key(coin_id)
        cached = self._cache.get(key)
        if cached is not None:
            return Quote.from_payload(cached)

        bulk_key = self._bulk_keys.get(coin_id)
        if (
            not self._coalescer.is_in_flight(key)
            and bulk_key is not None
            and self._coalescer.is_in_flight(bulk_key)
        ):
            return await self._quote_from_bulk(coin_id, self._coalescer.join(bulk_key))

        async def fetch() -> Quote:
            quote = await self._call(self._primary, self._primary.fetch_quote, coin_id)
            return (await self._enrich([quote]))[0]

        try:
            quote = await self._coalescer.dedupe(key, fetch)
        except ProviderNotFoundError:
            logger.info("No market data for coin %s", coin_id)
            return None
        except ProviderError as exc:
            return Quote.from_payload(self._stale_or_raise(key, exc, f"coin {coin_id}"), stale=True)

        self._cache.write_through(key, quote.to_payload(), self._ttls.quote)
        return quote

    async def get_quotes_bulk(self, coin_ids: list[str]) -> dict[str, Quote]:
        """
        Quotes for many coins, fetched in spaced chunks.

        Coins with a single-quote fetch already running join it rather than
        being requested again. Coins from a failed fetch fall back to their
        stale copies; coins with no data at all are omitted.
        """
        wanted = list(dict.fromkeys(c for c in coin_ids if c))
        result: dict[str, Quote] = {}
        missing = []
        joined: dict[str, asyncio.Future] = {}
        for coin_id in wanted:
            key = quote_key(coin_id)
            cached = self._cache.get(key)
            if cached is not None:
                result[coin_id] = Quote.from_payload(cached)
            elif self._coalescer.is_in_flight(key):
                joined[coin_id] = self._coalescer.join(key)
            else:
                missing.append(coin_id)

        chunks = [missing[i:i + self._chunk_size] for i in range(0, len(missing), self._chunk_size)]
        for index, chunk in enumerate(chunks):
            if index > 0 and self._spacing > 0:
                await self._sleep(self._spacing)
            key = "bulk:" + ",".join(sorted(chunk))
            for coin_id in chunk:
                self._bulk_keys[coin_id] = key
            try:
                fetched = await self._coalescer.dedupe(key, functools.partial(self._fetch_bulk_chunk, chunk))
            except ProviderError as exc:
                logger.warning("Bulk quote fetch failed for %d coins: %s", len(chunk), exc.message)
                self._fill_stale(chunk, result)
                continue
            finally:
                for coin_id in chunk:
                    if self._bulk_keys.get(coin_id) == key:
                        del self._bulk_keys[coin_id]

            for coin_id, quote in fetched.items():
                self._cache.write_through(quote_key(coin_id), quote.to_payload(), self._ttls.quote)
                result[coin_id] = quote

        for coin_id, pending in joined.items():
            try:
                quote = await pending
            except ProviderNotFoundError:
                continue
            except ProviderError as exc:
                logger.warning("Quote fetch for %s failed: %s", coin_id, exc.message)
                self._fill_stale([coin_id], result)
                continue
            self._cache.write_through(quote_key(coin_id), quote.to_payload(), self._ttls.quote)
            result[coin_id] = quote

        return {coin_id: result[coin_id] for coin_id in wanted if coin_id in result}

    async def get_series(self, coin_id: str, range_days: int) -> PriceSeries:
        """
        Price history for `range_days`.

        Primary chart, then secondary candles, then the stale shadow, then an
        `estimated` series around the last known price (never cached).
        """
        key = series_key(coin_id, range_days)
        cached = self._cache.get(key)
        if cached is not None:
            return PriceSeries.from_payload(cached)

        try:
            series = await self._coalescer.dedupe(
                key, functools.partial(self._fetch_series_live, coin_id, range_days)
            )
        except ProviderError as exc:
            stale = self._cache.get_stale(key)
            if stale is not None:
                self._log_stale(key, exc)
                return PriceSeries.from_payload(stale, stale=True)
            if self._allow_estimated:
                estimated = await self._estimated_series(coin_id, range_days)
                if estimated is not None:
                    logger.warning("Serving estimated series for %s (%dd): %s", coin_id, range_days, exc.message)
                    return estimated
            raise NoDataAvailableError(f"{coin_id} price history") from exc

        self._cache.write_through(key, series.to_payload(), self._ttls.series)
        return series

    async def search(self, query: str) -> list[Quote]:
        """Search coins by name, symbol or contract address (at most 10 results)."""
        text = query.strip()
        if not text:
            return []

        key = search_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return [Quote.from_payload(p) for p in cached]

        try:
            results = await self._coalescer.dedupe(key, functools.partial(self._search_live, text))
        except ProviderError as exc:
            stale = self._stale_or_raise(key, exc, f"search '{text}'")
            return [Quote.from_payload(p, stale=True) for p in stale]

        self._cache.write_through(key, [q.to_payload() for q in results], self._ttls.search)
        return results

    # ------------------------------------------------------------------
    # Live fetch helpers
    # ------------------------------------------------------------------

    async def _call(
        self,
        provider: Any,
        fn: Callable[..., T],
        *args: Any,
        policy: Optional[RetryPolicy] = None,
        weight: int = 1,
    ) -> T:
        """Run one blocking provider call with rate limiting, timeout and retry."""
        provider_id = provider.provider_id

        async def attempt() -> T:
            await self._limiter.acquire(provider_id, max_wait=self._max_wait, weight=weight)
            try:
                return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise TransientNetworkError(
                    provider_id, f"no response within {self._timeout:.0f}s"
                ) from exc
            except RateLimitedError as exc:
                self._limiter.penalize(provider_id, exc.retry_after)
                raise
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                # A payload shape the adapter did not expect
                raise MalformedResponseError(
                    provider_id, f"{getattr(fn, '__name__', 'call')}: {type(exc).__name__}: {exc}"
                ) from exc

        return await with_retry(policy or self._retry, attempt, sleep=self._sleep, rng=self._rng)

    async def _enrich(self, quotes: list[Quote]) -> list[Quote]:
        """Overlay secondary prices where available; failures leave quotes as they are."""
        if self._secondary is None or not quotes:
            return quotes
        symbols = sorted({q.symbol for q in quotes if q.symbol})
        if not symbols:
            return quotes
        try:
            ticks = await self._call(
                self._secondary,
                self._secondary.fetch_prices,
                symbols,
                policy=_NO_RETRY,
                weight=self._secondary.prices_weight(symbols),
            )
        except ProviderError as exc:
            logger.warning("Price enrichment skipped: %s", exc.message)
            return quotes
        return [_apply_tick(q, ticks.get(q.symbol)) for q in quotes]

    async def _quote_from_bulk(self, coin_id: str, pending: asyncio.Future) -> Optional[Quote]:
        key = quote_key(coin_id)
        try:
            fetched = await pending
        except ProviderError as exc:
            return Quote.from_payload(self._stale_or_raise(key, exc, f"coin {coin_id}"), stale=True)
        quote = fetched.get(coin_id)
        if quote is None:
            logger.info("No market data for coin %s", coin_id)
            return None
        self._cache.write_through(key, quote.to_payload(), self._ttls.quote)
        return quote

    async def _fetch_bulk_chunk(self, chunk: list[str]) -> dict[str, Quote]:
        quotes = await self._call(self._primary, self._primary.fetch_quotes_bulk, chunk)
        enriched = await self._enrich(list(quotes.values()))
        return {q.coin_id: q for q in enriched}

    async def _fetch_series_live(self, coin_id: str, range_days: int) -> PriceSeries:
        try:
            return await self._call(self._primary, self._primary.fetch_series, coin_id, range_days)
        except ProviderError as exc:
            primary_error = exc

        quote = await self._last_known_quote(coin_id) if self._secondary is not None else None
        if quote is None or not quote.symbol:
            raise primary_error
        logger.info(
            "Primary series for %s unavailable (%s); trying %s candles",
            coin_id,
            primary_error.message,
            self._secondary.provider_id,
        )
        candles = await self._call(
            self._secondary, self._secondary.fetch_candles, quote.symbol, range_days
        )
        return replace(candles, coin_id=coin_id)

    async def _search_live(self, text: str) -> list[Quote]:
        if is_contract_address(text):
            return await self._search_contract(text)

        lowered = text.lower()
        top = self._cache.get(TOP_QUOTES_KEY)
        if top is not None:
            matches = [
                Quote.from_payload(p)
                for p in top["quotes"]
                if lowered in p["name"].lower() or lowered in p["symbol"].lower()
            ]
            if matches:
                return matches[:MAX_SEARCH_RESULTS]

        hits = await self._call(self._primary, self._primary.search, text)
        return await self._hydrate_hits(hits[:MAX_SEARCH_RESULTS])

    async def _search_contract(self, address: str) -> list[Quote]:
        try:
            quote = await self._call(self._primary, self._primary.lookup_contract, address)
            return await self._enrich([quote])
        except ProviderNotFoundError:
            logger.info("Contract %s not found directly; searching platforms", address)

        hits = await self._call(self._primary, self._primary.search, address)
        lowered = address.lower()
        matched = [h for h in hits if lowered in (v.lower() for v in h.platforms.values())]
        return await self._hydrate_hits(matched[:MAX_SEARCH_RESULTS])

    async def _hydrate_hits(self, hits: list) -> list[Quote]:
        if not hits:
            return []
        quotes = await self.get_quotes_bulk([h.coin_id for h in hits])
        results = []
        for hit in hits:
            quote = quotes.get(hit.coin_id)
            if quote is None:
                # Listed by search but unpriced; still worth showing
                quote = Quote(
                    coin_id=hit.coin_id,
                    symbol=hit.symbol,
                    name=hit.name,
                    current_price=None,
                    as_of=now_utc(),
                    source=self._primary.provider_id,
                    image=hit.thumb,
                    market_cap_rank=hit.market_cap_rank,
                )
            elif quote.image is None and hit.thumb:
                quote = replace(quote, image=hit.thumb)
            results.append(quote)
        return results

    async def _last_known_quote(self, coin_id: str) -> Optional[Quote]:
        key = quote_key(coin_id)
        payload = self._cache.get(key) or self._cache.get_stale(key)
        if payload is not None:
            return Quote.from_payload(payload)
        try:
            return await self.get_quote(coin_id)
        except NoDataAvailableError:
            return None

    async def _estimated_series(self, coin_id: str, range_days: int) -> Optional[PriceSeries]:
        quote = await self._last_known_quote(coin_id)
        if quote is None or quote.current_price is None:
            return None
        return build_estimated_series(coin_id, range_days, quote.current_price)

    # ------------------------------------------------------------------
    # Fallback helpers
    # ------------------------------------------------------------------

    def _stale_or_raise(self, key: str, exc: ProviderError, what: str) -> Any:
        stale = self._cache.get_stale(key)
        if stale is None:
            logger.error("Live fetch for %s failed with no stale copy: %s", what, exc.message)
            raise NoDataAvailableError(what) from exc
        self._log_stale(key, exc)
        return stale

    def _fill_stale(self, coin_ids: list[str], result: dict[str, Quote]) -> None:
        for coin_id in coin_ids:
            stale = self._cache.get_stale(quote_key(coin_id))
            if stale is not None:
                result[coin_id] = Quote.from_payload(stale, stale=True)

    @staticmethod
    def _log_stale(key: str, exc: ProviderError) -> None:
        logger.warning("Serving stale data for %s: %s", key, exc.message)


def _apply_tick(quote: Quote, tick: Optional[PriceTick]) -> Quote:
    if tick is None:
        return quote
    return replace(
        quote,
        current_price=tick.price,
        change_24h_pct=tick.change_24h_pct if tick.change_24h_pct is not None else quote.change_24h_pct,
        source=tick.source,
    )


def build_estimated_series(coin_id: str, range_days: int, last_price: Decimal) -> PriceSeries:
    """
    Synthetic series around `last_price`, seeded by coin id.

    Hourly points for a one-day range, daily points otherwise. The last point
    is exactly `last_price`. The result is flagged `estimated`.
    """
    rng = random.Random(coin_id)
    if range_days <= 1:
        count, step = 24, timedelta(hours=1)
    else:
        count, step = min(range_days, 365), timedelta(days=1)

    end = now_utc()
    points = []
    for i in range(count - 1):
        factor = Decimal(str(1 + rng.uniform(-ESTIMATE_SPREAD, ESTIMATE_SPREAD)))
        points.append(PricePoint(
            timestamp_ms=to_epoch_ms(end - step * (count - 1 - i)),
            price=last_price * factor,
        ))
    points.append(PricePoint(timestamp_ms=to_epoch_ms(end), price=last_price))

    return PriceSeries(
        coin_id=coin_id,
        range_days=range_days,
        source=PriceSource.ESTIMATE.value,
        points=points,
        estimated=True,
    )
