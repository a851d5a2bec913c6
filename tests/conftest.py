"""
Pytest configuration and fixtures for coinfolio tests.

This module provides:
- In-memory SQLite database fixtures
- Fake primary / secondary market data providers with call recording
- Fake clock and sleep helpers for rate limiting, retry and cache tests
- Service and repository fixtures
- FastAPI test client wired to fakes
"""

import asyncio
import threading
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import pytest
from sqlalchemy import create_engine, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from fastapi.testclient import TestClient

from coinfolio.main import app
from coinfolio.api.deps import get_portfolio_service
from coinfolio.config.settings import Settings, set_settings, reset_settings
from coinfolio.core.coalescer import RequestCoalescer
from coinfolio.core.exceptions import ProviderNotFoundError
from coinfolio.core.rate_limiter import RateLimiter
from coinfolio.core.retry import RetryPolicy
from coinfolio.core.timezone import UTC
from coinfolio.domain.models import TransactionType
from coinfolio.domain.views import PricePoint, PriceSeries, PriceTick, Quote, SearchHit
from coinfolio.repositories import InMemoryKeyValueStore, KeyValueLedgerRepository
from coinfolio.repositories.sqlalchemy.database import Base, reset_database
# Import ORM models to register them with Base before creating tables
from coinfolio.repositories.sqlalchemy import orm_models  # noqa: F401
from coinfolio.repositories.sqlalchemy import SqlAlchemyKeyValueStore
from coinfolio.services import (
    CacheTtls,
    LedgerService,
    MarketDataService,
    PortfolioService,
    TieredCache,
    TransactionCreate,
)


# =============================================================================
# TIME HELPERS
# =============================================================================


def utc_datetime(
    year: int,
    month: int,
    day: int,
    hour: int = 10,
    minute: int = 0,
    second: int = 0,
) -> datetime:
    """Create an aware UTC datetime."""
    return UTC.localize(datetime(year, month, day, hour, minute, second))


@pytest.fixture
def fixed_now() -> datetime:
    """Fixed 'now' timestamp for deterministic tests."""
    return utc_datetime(2024, 6, 15, 14, 30, 0)


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and optionally advances a clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="function")
def test_engine():
    """Create test database engine with shared in-memory SQLite."""
    reset_settings()

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Session:
    """Create test database session."""
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# REPOSITORY FIXTURES
# =============================================================================


@pytest.fixture
def kv_store(test_session) -> SqlAlchemyKeyValueStore:
    """Provide a SQLite-backed KeyValueStore."""
    return SqlAlchemyKeyValueStore(test_session)


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def ledger_repo(memory_store) -> KeyValueLedgerRepository:
    return KeyValueLedgerRepository(memory_store)


# =============================================================================
# MARKET DATA FIXTURES
# =============================================================================


def make_quote(
    coin_id: str,
    symbol: str,
    price: Optional[str],
    change: Optional[str] = "1.5",
    source: str = "fake",
    name: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> Quote:
    """Helper to build a Quote with Decimal fields."""
    return Quote(
        coin_id=coin_id,
        symbol=symbol,
        name=name or coin_id.title(),
        current_price=Decimal(price) if price is not None else None,
        as_of=as_of or utc_datetime(2024, 6, 15, 16, 0, 0),
        source=source,
        change_24h_pct=Decimal(change) if change is not None else None,
        image=f"https://img.example/{coin_id}.png",
    )


class FakeMarketProvider:
    """
    Deterministic primary provider for testing.

    Each method records its calls. Errors queued with `fail_next` are raised
    (one per call) before any data is returned; `fail_always` makes every
    call fail.
    """

    provider_id = "fake"

    QUOTES = {
        "bitcoin": ("BTC", "15000"),
        "ethereum": ("ETH", "3000"),
        "solana": ("SOL", "150"),
        "dogecoin": ("DOGE", "0.10"),
    }

    def __init__(self, delay: float = 0.0):
        self.calls: list[tuple] = []
        self._errors: deque[Exception] = deque()
        self._always: Optional[Exception] = None
        self._delay = delay
        self._lock = threading.Lock()
        self.search_hits: list[SearchHit] = []
        self.contracts: dict[str, Quote] = {}
        self.series: dict[str, list[PricePoint]] = {}

    def fail_next(self, *errors: Exception) -> None:
        self._errors.extend(errors)

    def fail_always(self, error: Optional[Exception]) -> None:
        self._always = error

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def _record(self, *call) -> None:
        with self._lock:
            self.calls.append(call)
            if self._always is not None:
                raise self._always
            if self._errors:
                raise self._errors.popleft()
        if self._delay:
            threading.Event().wait(self._delay)

    def _quote(self, coin_id: str) -> Optional[Quote]:
        if coin_id not in self.QUOTES:
            return None
        symbol, price = self.QUOTES[coin_id]
        return make_quote(coin_id, symbol, price)

    def fetch_top_quotes(self, limit: int) -> list[Quote]:
        self._record("fetch_top_quotes", limit)
        return [self._quote(c) for c in list(self.QUOTES)[:limit]]

    def fetch_quote(self, coin_id: str) -> Quote:
        self._record("fetch_quote", coin_id)
        quote = self._quote(coin_id)
        if quote is None:
            raise ProviderNotFoundError(self.provider_id, f"coin {coin_id}")
        return quote

    def fetch_quotes_bulk(self, coin_ids: list[str]) -> dict[str, Quote]:
        self._record("fetch_quotes_bulk", tuple(coin_ids))
        return {c: self._quote(c) for c in coin_ids if c in self.QUOTES}

    def fetch_series(self, coin_id: str, range_days: int) -> PriceSeries:
        self._record("fetch_series", coin_id, range_days)
        if coin_id not in self.series:
            raise ProviderNotFoundError(self.provider_id, f"series {coin_id}")
        return PriceSeries(coin_id=coin_id, range_days=range_days, source="fake", points=self.series[coin_id])

    def search(self, query: str) -> list[SearchHit]:
        self._record("search", query)
        return list(self.search_hits)

    def lookup_contract(self, address: str, platform: str = "ethereum") -> Quote:
        self._record("lookup_contract", address)
        if address.lower() not in self.contracts:
            raise ProviderNotFoundError(self.provider_id, f"contract {address}")
        return self.contracts[address.lower()]


class FakePriceFeed:
    """Deterministic secondary provider keyed by symbol."""

    provider_id = "fakefeed"

    def __init__(self, prices: Optional[dict[str, str]] = None):
        self.prices = prices if prices is not None else {"BTC": "15100", "ETH": "3010"}
        self.calls: list[tuple] = []
        self.error: Optional[Exception] = None
        self.candles: dict[str, list[PricePoint]] = {}

    def prices_weight(self, symbols: list[str]) -> int:
        return 1

    def fetch_prices(self, symbols: list[str]) -> dict[str, PriceTick]:
        self.calls.append(("fetch_prices", tuple(symbols)))
        if self.error is not None:
            raise self.error
        return {
            s: PriceTick(
                symbol=s,
                price=Decimal(self.prices[s]),
                change_24h_pct=Decimal("2.0"),
                as_of=utc_datetime(2024, 6, 15, 16, 1, 0),
                source="binance",
            )
            for s in symbols
            if s in self.prices
        }

    def fetch_candles(self, symbol: str, range_days: int) -> PriceSeries:
        self.calls.append(("fetch_candles", symbol, range_days))
        if self.error is not None:
            raise self.error
        if symbol not in self.candles:
            raise ProviderNotFoundError(self.provider_id, f"pair for {symbol}")
        return PriceSeries(coin_id=symbol, range_days=range_days, source="binance", points=self.candles[symbol])


@pytest.fixture
def fake_provider() -> FakeMarketProvider:
    return FakeMarketProvider()


@pytest.fixture
def fake_feed() -> FakePriceFeed:
    return FakePriceFeed()


@pytest.fixture
def tiered_cache(fake_clock) -> TieredCache:
    """Cache with in-memory tiers and a manual clock."""
    return TieredCache(
        scoped_store=InMemoryKeyValueStore(),
        stale_store=InMemoryKeyValueStore(),
        hot_max_entries=100,
        clock=fake_clock,
    )


@pytest.fixture
def service_factory(tiered_cache, recording_sleep) -> Callable[..., MarketDataService]:
    """Factory for MarketDataService wired to fakes (no real sleeping)."""

    def _create(
        primary: FakeMarketProvider,
        secondary: Optional[FakePriceFeed] = None,
        **overrides,
    ) -> MarketDataService:
        options = dict(
            primary=primary,
            secondary=secondary,
            cache=tiered_cache,
            rate_limiter=RateLimiter({"fake": 1000, "fakefeed": 1000}, sleep=recording_sleep),
            coalescer=RequestCoalescer(grace_seconds=0),
            retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=1.5, jitter=0),
            ttls=CacheTtls(),
            request_timeout=5.0,
            bulk_chunk_size=50,
            bulk_batch_spacing=1.0,
            sleep=recording_sleep,
        )
        options.update(overrides)
        return MarketDataService(**options)

    return _create


@pytest.fixture
def market_data_service(service_factory, fake_provider, fake_feed) -> MarketDataService:
    """Provide MarketDataService with fake primary and secondary providers."""
    return service_factory(fake_provider, fake_feed)


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def ledger_service(ledger_repo) -> LedgerService:
    """Provide LedgerService over an in-memory store."""
    return LedgerService(ledger_repo)


@pytest.fixture
def portfolio_service(ledger_service, market_data_service, tiered_cache) -> PortfolioService:
    return PortfolioService(ledger_service, market_data_service, cache=tiered_cache)


# =============================================================================
# API TEST CLIENT FIXTURE
# =============================================================================


@pytest.fixture
def client(test_session, fake_provider, fake_feed, recording_sleep) -> TestClient:
    """Provide FastAPI test client with services on the test database and fake providers."""
    set_settings(Settings(database_url="sqlite:///:memory:", _env_file=None))
    reset_database()

    store = SqlAlchemyKeyValueStore(test_session)
    ledger = LedgerService(KeyValueLedgerRepository(store))
    cache = TieredCache(scoped_store=InMemoryKeyValueStore(), stale_store=store)
    market = MarketDataService(
        primary=fake_provider,
        secondary=fake_feed,
        cache=cache,
        rate_limiter=RateLimiter({"fake": 1000, "fakefeed": 1000}, sleep=recording_sleep),
        coalescer=RequestCoalescer(grace_seconds=0),
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0, jitter=0),
        sleep=recording_sleep,
    )
    service = PortfolioService(ledger, market, cache=cache)

    app.dependency_overrides[get_portfolio_service] = lambda: service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    reset_database()
    reset_settings()


# =============================================================================
# HELPER FUNCTIONS (exported for use in tests)
# =============================================================================


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


def assert_decimal_equal(
    actual: Decimal,
    expected: Decimal,
    tolerance: Decimal = Decimal("0.01"),
) -> None:
    """Assert two Decimals are equal within tolerance."""
    diff = abs(actual - expected)
    assert diff <= tolerance, f"Expected {expected}, got {actual} (diff={diff})"


def buy(amount: str, price: str, when: Optional[datetime] = None, note: Optional[str] = None) -> TransactionCreate:
    """Helper to create BUY transaction data."""
    return TransactionCreate(
        tx_type=TransactionType.BUY,
        amount=Decimal(amount),
        price=Decimal(price),
        timestamp=when,
        note=note,
    )


def sell(amount: str, price: str, when: Optional[datetime] = None) -> TransactionCreate:
    """Helper to create SELL transaction data."""
    return TransactionCreate(
        tx_type=TransactionType.SELL,
        amount=Decimal(amount),
        price=Decimal(price),
        timestamp=when,
    )
