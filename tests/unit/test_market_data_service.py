"""
Unit tests for MarketDataService.

Tests cover:
- Cache hits and population of per-coin quotes from the top list
- Coalescing of concurrent identical requests
- Secondary price enrichment and its failure handling
- Stale fallback, 429 handling and NoDataAvailableError
- Bulk chunking and per-coin stale fallback
- Series fallback chain (candles, stale, estimated)
- Search by name/symbol, provider search and contract address
- Malformed provider payloads treated as provider failures
- Single-flight across single and bulk quote requests, and caller cancellation
- Weighted rate-limit permits and the longest top list kept as fallback
"""

import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from coinfolio.core.exceptions import (
    MalformedResponseError,
    NoDataAvailableError,
    RateLimitedError,
    TransientNetworkError,
)
from coinfolio.core.rate_limiter import RateLimiter
from coinfolio.core.retry import RetryPolicy
from coinfolio.domain.views import PricePoint, SearchHit
from coinfolio.providers.binance_provider import BinanceProvider
from coinfolio.services.market_data_service import (
    TOP_QUOTES_KEY,
    build_estimated_series,
    is_contract_address,
    quote_key,
    series_key,
)
from tests.conftest import FakeMarketProvider, make_quote, run

CONTRACT = "0x" + "ab" * 20

POINTS = [
    PricePoint(timestamp_ms=1718400000000, price=Decimal("14000")),
    PricePoint(timestamp_ms=1718486400000, price=Decimal("15000")),
]


# =============================================================================
# TOP QUOTES AND SINGLE QUOTES
# =============================================================================


class TestTopQuotes:
    """Tests for get_top_quotes caching."""

    def test_second_call_is_served_from_cache(self, market_data_service, fake_provider):
        """
        GIVEN a top list fetched once
        WHEN it is requested again within the TTL
        THEN the provider is not called again
        """
        first = run(market_data_service.get_top_quotes(4))
        second = run(market_data_service.get_top_quotes(4))

        assert [q.coin_id for q in first] == ["bitcoin", "ethereum", "solana", "dogecoin"]
        assert [q.coin_id for q in second] == [q.coin_id for q in first]
        assert len(fake_provider.calls_to("fetch_top_quotes")) == 1

    def test_smaller_limit_reuses_larger_cached_list(self, market_data_service, fake_provider):
        run(market_data_service.get_top_quotes(4))

        quotes = run(market_data_service.get_top_quotes(2))

        assert [q.coin_id for q in quotes] == ["bitcoin", "ethereum"]
        assert len(fake_provider.calls_to("fetch_top_quotes")) == 1

    def test_larger_limit_refetches(self, market_data_service, fake_provider):
        run(market_data_service.get_top_quotes(2))
        run(market_data_service.get_top_quotes(4))

        assert [c[1] for c in fake_provider.calls_to("fetch_top_quotes")] == [2, 4]

    def test_top_list_populates_quote_cache(self, market_data_service, fake_provider):
        """
        GIVEN a fetched top list
        WHEN a coin from it is quoted
        THEN no single-quote request is made
        """
        run(market_data_service.get_top_quotes(4))

        quote = run(market_data_service.get_quote("solana"))

        assert quote.current_price == Decimal("150")
        assert fake_provider.calls_to("fetch_quote") == []

    def test_failure_without_stale_raises(self, market_data_service, fake_provider):
        fake_provider.fail_always(TransientNetworkError("fake", "down"))

        with pytest.raises(NoDataAvailableError):
            run(market_data_service.get_top_quotes(4))


class TestGetQuote:
    """Tests for get_quote."""

    def test_unknown_coin_returns_none(self, market_data_service):
        assert run(market_data_service.get_quote("not-a-coin")) is None

    def test_concurrent_requests_share_one_fetch(self, service_factory, fake_feed):
        """
        GIVEN a slow provider
        WHEN five callers ask for the same quote at once
        THEN exactly one outbound request is made and all get the same price
        """
        provider = FakeMarketProvider(delay=0.05)
        service = service_factory(provider, fake_feed)

        async def scenario():
            return await asyncio.gather(*(service.get_quote("bitcoin") for _ in range(5)))

        quotes = run(scenario())

        assert len(provider.calls_to("fetch_quote")) == 1
        assert len(fake_feed.calls) == 1
        assert {q.current_price for q in quotes} == {Decimal("15100")}

    def test_enrichment_overrides_price_and_source(self, market_data_service):
        quote = run(market_data_service.get_quote("bitcoin"))

        assert quote.current_price == Decimal("15100")
        assert quote.change_24h_pct == Decimal("2.0")
        assert quote.source == "binance"
        assert quote.name == "Bitcoin"

    def test_coin_without_secondary_price_keeps_primary(self, market_data_service):
        quote = run(market_data_service.get_quote("solana"))

        assert quote.current_price == Decimal("150")
        assert quote.source == "fake"

    def test_enrichment_failure_is_ignored_and_not_retried(self, market_data_service, fake_feed):
        """
        GIVEN the secondary feed is down
        WHEN a quote is requested
        THEN the primary price is returned after a single secondary attempt
        """
        fake_feed.error = TransientNetworkError("fakefeed", "down")

        quote = run(market_data_service.get_quote("bitcoin"))

        assert quote.current_price == Decimal("15000")
        assert quote.source == "fake"
        assert len(fake_feed.calls) == 1

    def test_transient_failures_are_retried(self, market_data_service, fake_provider, recording_sleep):
        fake_provider.fail_next(
            TransientNetworkError("fake", "reset"),
            TransientNetworkError("fake", "reset"),
        )

        quote = run(market_data_service.get_quote("ethereum"))

        assert quote.current_price == Decimal("3010")
        assert len(fake_provider.calls_to("fetch_quote")) == 3
        assert recording_sleep.calls == [1.0, 1.5]

    def test_failure_serves_stale_copy(self, market_data_service, fake_provider, tiered_cache):
        """
        GIVEN a quote fetched earlier whose fresh copy has expired
        WHEN the provider is down
        THEN the stale copy is returned flagged as stale
        """
        run(market_data_service.get_quote("bitcoin"))
        tiered_cache.invalidate(quote_key("bitcoin"))
        fake_provider.fail_always(TransientNetworkError("fake", "down"))

        quote = run(market_data_service.get_quote("bitcoin"))

        assert quote.stale is True
        assert quote.current_price == Decimal("15100")

    def test_429_with_stale_copy_serves_stale(self, market_data_service, fake_provider, tiered_cache):
        """
        GIVEN a stale copy and a provider answering 429
        WHEN the quote is requested
        THEN the provider is put on cooldown and the stale copy is served
        """
        run(market_data_service.get_quote("bitcoin"))
        tiered_cache.invalidate(quote_key("bitcoin"))
        calls_before = len(fake_provider.calls_to("fetch_quote"))
        fake_provider.fail_next(RateLimitedError("fake", retry_after=120))

        quote = run(market_data_service.get_quote("bitcoin"))

        assert quote.stale is True
        # The cooldown exceeds the allowed wait, so no second attempt reaches the provider
        assert len(fake_provider.calls_to("fetch_quote")) == calls_before + 1

    def test_failure_without_stale_raises_no_data(self, market_data_service, fake_provider):
        fake_provider.fail_always(TransientNetworkError("fake", "down"))

        with pytest.raises(NoDataAvailableError):
            run(market_data_service.get_quote("bitcoin"))

    def test_hung_provider_times_out(self, service_factory):
        provider = FakeMarketProvider(delay=0.5)
        service = service_factory(provider, request_timeout=0.05, retry_policy=RetryPolicy(max_attempts=1))

        with pytest.raises(NoDataAvailableError):
            run(service.get_quote("bitcoin"))


# =============================================================================
# BULK QUOTES
# =============================================================================


class TestQuotesBulk:
    """Tests for get_quotes_bulk."""

    def test_fetches_in_spaced_chunks(self, service_factory, fake_provider, recording_sleep):
        """
        GIVEN a chunk size of 2
        WHEN four coins are requested
        THEN two requests are made with one spacing pause between them
        """
        service = service_factory(fake_provider, bulk_chunk_size=2)

        quotes = run(service.get_quotes_bulk(["bitcoin", "ethereum", "solana", "dogecoin"]))

        assert list(quotes) == ["bitcoin", "ethereum", "solana", "dogecoin"]
        assert [c[1] for c in fake_provider.calls_to("fetch_quotes_bulk")] == [
            ("bitcoin", "ethereum"),
            ("solana", "dogecoin"),
        ]
        assert recording_sleep.calls == [1.0]

    def test_cached_coins_are_not_refetched(self, market_data_service, fake_provider):
        run(market_data_service.get_quote("bitcoin"))

        run(market_data_service.get_quotes_bulk(["bitcoin", "solana"]))

        assert [c[1] for c in fake_provider.calls_to("fetch_quotes_bulk")] == [("solana",)]

    def test_unknown_coins_are_omitted(self, market_data_service):
        quotes = run(market_data_service.get_quotes_bulk(["bitcoin", "not-a-coin", "bitcoin"]))

        assert list(quotes) == ["bitcoin"]

    def test_failed_chunk_falls_back_per_coin(self, market_data_service, fake_provider, tiered_cache):
        """
        GIVEN a stale copy for bitcoin only
        WHEN the bulk fetch fails
        THEN bitcoin is served stale and ethereum is omitted
        """
        run(market_data_service.get_quotes_bulk(["bitcoin"]))
        tiered_cache.invalidate(quote_key("bitcoin"))
        fake_provider.fail_always(TransientNetworkError("fake", "down"))

        quotes = run(market_data_service.get_quotes_bulk(["bitcoin", "ethereum"]))

        assert list(quotes) == ["bitcoin"]
        assert quotes["bitcoin"].stale is True


# =============================================================================
# SERIES
# =============================================================================


class TestSeries:
    """Tests for get_series and its fallback chain."""

    def test_primary_series_is_cached(self, market_data_service, fake_provider, tiered_cache):
        fake_provider.series["bitcoin"] = POINTS

        first = run(market_data_service.get_series("bitcoin", 7))
        second = run(market_data_service.get_series("bitcoin", 7))

        assert [p.price for p in first.points] == [Decimal("14000"), Decimal("15000")]
        assert second.points == first.points
        assert len(fake_provider.calls_to("fetch_series")) == 1
        assert tiered_cache.get_stale(series_key("bitcoin", 7)) is not None

    def test_falls_back_to_secondary_candles(self, market_data_service, fake_feed):
        """
        GIVEN the primary has no chart for bitcoin
        WHEN the series is requested
        THEN candles for the coin's symbol are served under the coin id
        """
        fake_feed.candles["BTC"] = POINTS

        series = run(market_data_service.get_series("bitcoin", 30))

        assert series.coin_id == "bitcoin"
        assert series.source == "binance"
        assert ("fetch_candles", "BTC", 30) in fake_feed.calls

    def test_falls_back_to_stale_series(self, service_factory, fake_provider, tiered_cache):
        service = service_factory(fake_provider)
        fake_provider.series["bitcoin"] = POINTS
        run(service.get_series("bitcoin", 7))
        tiered_cache.invalidate(series_key("bitcoin", 7))
        fake_provider.fail_always(TransientNetworkError("fake", "down"))

        series = run(service.get_series("bitcoin", 7))

        assert series.stale is True
        assert series.points == POINTS

    def test_falls_back_to_estimated_series(self, service_factory, fake_provider, tiered_cache):
        """
        GIVEN no chart, no candles and no stale copy
        WHEN the series is requested
        THEN an estimated series ending at the current price is returned and not cached
        """
        service = service_factory(fake_provider)

        series = run(service.get_series("bitcoin", 7))

        assert series.estimated is True
        assert len(series.points) == 7
        assert series.points[-1].price == Decimal("15000")
        assert tiered_cache.get(series_key("bitcoin", 7)) is None
        assert tiered_cache.get_stale(series_key("bitcoin", 7)) is None

    def test_estimates_disabled_raises(self, service_factory, fake_provider):
        service = service_factory(fake_provider, allow_estimated_series=False)

        with pytest.raises(NoDataAvailableError):
            run(service.get_series("bitcoin", 7))

    def test_unknown_coin_raises(self, market_data_service):
        with pytest.raises(NoDataAvailableError):
            run(market_data_service.get_series("not-a-coin", 7))


class TestBuildEstimatedSeries:
    """Tests for the synthetic series builder."""

    def test_points_stay_within_spread(self):
        series = build_estimated_series("bitcoin", 30, Decimal("100"))

        assert len(series.points) == 30
        assert all(Decimal("95") <= p.price <= Decimal("105") for p in series.points)
        assert [p.timestamp_ms for p in series.points] == sorted(p.timestamp_ms for p in series.points)

    def test_one_day_range_is_hourly(self):
        series = build_estimated_series("bitcoin", 1, Decimal("100"))

        assert len(series.points) == 24
        assert series.points[1].timestamp_ms - series.points[0].timestamp_ms == 3_600_000

    def test_same_coin_gives_same_shape(self):
        a = build_estimated_series("solana", 7, Decimal("100"))
        b = build_estimated_series("solana", 7, Decimal("100"))

        assert [p.price for p in a.points] == [p.price for p in b.points]


# =============================================================================
# SEARCH
# =============================================================================


class TestSearch:
    """Tests for search."""

    def test_blank_query_returns_nothing(self, market_data_service, fake_provider):
        assert run(market_data_service.search("   ")) == []
        assert fake_provider.calls == []

    def test_matches_cached_top_list_first(self, market_data_service, fake_provider):
        run(market_data_service.get_top_quotes(4))

        results = run(market_data_service.search("eth"))

        assert [q.coin_id for q in results] == ["ethereum"]
        assert fake_provider.calls_to("search") == []

    def test_provider_hits_are_priced(self, market_data_service, fake_provider):
        """
        GIVEN provider search hits for a priced and an unpriced coin
        WHEN searching
        THEN both are returned, the unknown one without a price
        """
        fake_provider.search_hits = [
            SearchHit(coin_id="bitcoin", symbol="BTC", name="Bitcoin"),
            SearchHit(coin_id="newcoin", symbol="NEW", name="New Coin", thumb="https://img/new.png"),
        ]

        results = run(market_data_service.search("coin"))

        assert [q.coin_id for q in results] == ["bitcoin", "newcoin"]
        assert results[0].current_price == Decimal("15100")
        assert results[1].current_price is None
        assert results[1].image == "https://img/new.png"

    def test_results_are_capped_at_ten(self, market_data_service, fake_provider):
        fake_provider.search_hits = [
            SearchHit(coin_id=f"coin-{i}", symbol=f"C{i}", name=f"Coin {i}") for i in range(15)
        ]

        assert len(run(market_data_service.search("coin"))) == 10

    def test_results_are_cached(self, market_data_service, fake_provider):
        fake_provider.search_hits = [SearchHit(coin_id="bitcoin", symbol="BTC", name="Bitcoin")]

        run(market_data_service.search("Bit"))
        run(market_data_service.search("bit"))

        assert len(fake_provider.calls_to("search")) == 1

    def test_contract_address_lookup(self, market_data_service, fake_provider):
        fake_provider.contracts[CONTRACT] = make_quote("usd-coin", "USDC", "1.00")

        results = run(market_data_service.search(CONTRACT))

        assert [q.coin_id for q in results] == ["usd-coin"]
        assert fake_provider.calls_to("search") == []

    def test_contract_address_falls_back_to_platform_match(self, market_data_service, fake_provider):
        fake_provider.search_hits = [
            SearchHit(coin_id="other", symbol="OTH", name="Other", platforms={"ethereum": "0x" + "cd" * 20}),
            SearchHit(coin_id="pepe", symbol="PEPE", name="Pepe", platforms={"ethereum": CONTRACT}),
        ]

        results = run(market_data_service.search(CONTRACT.upper().replace("0X", "0x")))

        assert [q.coin_id for q in results] == ["pepe"]

    @pytest.mark.parametrize(
        "query,expected",
        [(CONTRACT, True), ("0x123", False), ("bitcoin", False), ("0x" + "g" * 40, False)],
    )
    def test_is_contract_address(self, query, expected):
        assert is_contract_address(query) is expected


# =============================================================================
# MALFORMED PAYLOADS
# =============================================================================


def binance_client(klines) -> MagicMock:
    """Binance JSON client answering tickers for BTC and the given klines payload."""
    client = MagicMock()

    def get_json(path, params=None):
        if path == "ticker/24hr":
            return {"symbol": "BTCUSDT", "lastPrice": "15100", "priceChangePercent": "2.0", "closeTime": 1718467260000}
        if path == "klines":
            return klines
        raise AssertionError(f"unexpected path {path}")

    client.get_json.side_effect = get_json
    return client


class TestMalformedPayloads:
    """Payloads an adapter cannot read fall back like any other provider failure."""

    def test_unreadable_candles_fall_back_to_estimated_series(self, service_factory, fake_provider):
        """
        GIVEN no primary chart and candles whose open time is not a number
        WHEN the series is requested
        THEN an estimated series around the last price is served
        """
        secondary = BinanceProvider(binance_client([["not-a-ts", "1", "1", "1", "100", "0"]]))
        service = service_factory(fake_provider, secondary)

        series = run(service.get_series("bitcoin", 7))

        assert series.estimated is True
        assert series.points[-1].price == Decimal("15100")

    def test_unreadable_candles_fall_back_to_stale_series(self, service_factory, fake_provider, tiered_cache):
        secondary = BinanceProvider(binance_client([["not-a-ts", "1", "1", "1", "100", "0"]]))
        service = service_factory(fake_provider, secondary)
        tiered_cache.set_stale(
            series_key("bitcoin", 7),
            {"coin_id": "bitcoin", "range_days": 7, "source": "fake", "points": [[1718400000000, "14000"]]},
        )

        series = run(service.get_series("bitcoin", 7))

        assert series.stale is True
        assert [p.price for p in series.points] == [Decimal("14000")]

    def test_adapter_value_error_serves_stale_quote_without_retry(
        self, market_data_service, fake_provider, tiered_cache
    ):
        """
        GIVEN a stale bitcoin quote
        WHEN the adapter raises ValueError while reading the payload
        THEN the stale quote is served after a single attempt
        """
        run(market_data_service.get_quote("bitcoin"))
        tiered_cache.invalidate(quote_key("bitcoin"))
        calls_before = len(fake_provider.calls_to("fetch_quote"))
        fake_provider.fail_next(ValueError("invalid literal for int()"))

        quote = run(market_data_service.get_quote("bitcoin"))

        assert quote.stale is True
        assert len(fake_provider.calls_to("fetch_quote")) == calls_before + 1

    def test_adapter_attribute_error_in_search_is_no_data(self, market_data_service, fake_provider):
        fake_provider.fail_next(AttributeError("'list' object has no attribute 'items'"))

        with pytest.raises(NoDataAvailableError) as excinfo:
            run(market_data_service.search("xyz"))

        assert isinstance(excinfo.value.__cause__, MalformedResponseError)


# =============================================================================
# SINGLE-FLIGHT ACROSS REQUEST PATHS
# =============================================================================


class TestSingleFlight:
    """Concurrent quote requests for one coin share one outbound call."""

    @staticmethod
    def outbound(provider: FakeMarketProvider) -> list[tuple]:
        return provider.calls_to("fetch_quote") + provider.calls_to("fetch_quotes_bulk")

    def test_bulk_joins_running_single_quote(self, service_factory, fake_feed):
        """
        GIVEN a slow provider
        WHEN a single quote and a bulk request for the same coin overlap
        THEN one outbound request serves both
        """
        provider = FakeMarketProvider(delay=0.1)
        service = service_factory(provider, fake_feed)

        async def scenario():
            return await asyncio.gather(
                service.get_quote("bitcoin"),
                service.get_quotes_bulk(["bitcoin"]),
            )

        quote, bulk = run(scenario())

        assert len(self.outbound(provider)) == 1
        assert quote.current_price == Decimal("15100")
        assert bulk["bitcoin"].current_price == Decimal("15100")

    def test_single_quote_joins_running_bulk(self, service_factory, fake_feed):
        provider = FakeMarketProvider(delay=0.1)
        service = service_factory(provider, fake_feed)

        async def scenario():
            return await asyncio.gather(
                service.get_quotes_bulk(["bitcoin", "ethereum"]),
                service.get_quote("ethereum"),
            )

        bulk, quote = run(scenario())

        assert self.outbound(provider) == [("fetch_quotes_bulk", ("bitcoin", "ethereum"))]
        assert quote.current_price == Decimal("3010")
        assert set(bulk) == {"bitcoin", "ethereum"}

    def test_joined_unknown_coin_is_none(self, service_factory, fake_feed):
        provider = FakeMarketProvider(delay=0.1)
        service = service_factory(provider, fake_feed)

        async def scenario():
            return await asyncio.gather(
                service.get_quotes_bulk(["bitcoin", "not-a-coin"]),
                service.get_quote("not-a-coin"),
            )

        bulk, quote = run(scenario())

        assert quote is None
        assert list(bulk) == ["bitcoin"]
        assert len(self.outbound(provider)) == 1

    def test_cancelled_caller_leaves_result_to_survivor(
        self, service_factory, fake_feed, tiered_cache, monkeypatch
    ):
        """
        GIVEN two callers waiting on one slow quote fetch
        WHEN one of them is cancelled
        THEN the other gets the quote, one request is made and only the survivor writes the cache
        """
        provider = FakeMarketProvider(delay=0.1)
        service = service_factory(provider, fake_feed)
        writes = []
        write_through = tiered_cache.write_through

        def recording_write(key, value, ttl):
            writes.append(key)
            write_through(key, value, ttl)

        monkeypatch.setattr(tiered_cache, "write_through", recording_write)

        async def scenario():
            doomed = asyncio.ensure_future(service.get_quote("bitcoin"))
            survivor = asyncio.ensure_future(service.get_quote("bitcoin"))
            await asyncio.sleep(0.02)
            doomed.cancel()
            quote = await survivor
            with pytest.raises(asyncio.CancelledError):
                await doomed
            return quote

        quote = run(scenario())

        assert quote.current_price == Decimal("15100")
        assert len(provider.calls_to("fetch_quote")) == 1
        assert writes == [quote_key("bitcoin")]


# =============================================================================
# RATE-LIMIT WEIGHTS AND TOP-LIST FALLBACK
# =============================================================================


class TestEnrichmentWeight:
    """Secondary requests are charged at the weight the feed reports."""

    def test_enrichment_is_charged_its_weight(self, service_factory, fake_provider, fake_feed, recording_sleep):
        limiter = RateLimiter({"fake": 1000, "fakefeed": 1000}, sleep=recording_sleep)
        fake_feed.prices_weight = lambda symbols: 80
        service = service_factory(fake_provider, fake_feed, rate_limiter=limiter)

        run(service.get_quote("bitcoin"))

        assert limiter.used_weight("fakefeed") == 80
        assert limiter.used_weight("fake") == 1


class TestTopListFallback:
    """A shorter top list never shrinks the stale fallback."""

    def test_shorter_fetch_keeps_longer_stale_list(self, market_data_service, fake_provider, tiered_cache, fake_clock):
        """
        GIVEN a stale list of 4 coins
        WHEN a list of 2 is fetched after the fresh copy expired and the provider then fails
        THEN a request for 4 is still served from the stale list of 4
        """
        run(market_data_service.get_top_quotes(4))
        fake_clock.advance(10 * 60)
        run(market_data_service.get_top_quotes(2))
        fake_provider.fail_always(TransientNetworkError("fake", "down"))

        quotes = run(market_data_service.get_top_quotes(4))

        assert [q.coin_id for q in quotes] == ["bitcoin", "ethereum", "solana", "dogecoin"]
        assert all(q.stale for q in quotes)
        assert tiered_cache.get(TOP_QUOTES_KEY)["limit"] == 2
