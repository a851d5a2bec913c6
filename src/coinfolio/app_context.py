"""Application context: builds and owns the long-lived service graph.

Market data state (hot cache, rate-limit windows, in-flight requests) and the
ledger lock must outlive a single request, so the API resolves its services
from one AppContext instead of building them per request.
"""

from pathlib import Path
from typing import Optional

from coinfolio.config.settings import Settings, set_settings, get_settings
from coinfolio.core.coalescer import RequestCoalescer
from coinfolio.core.rate_limiter import RateLimiter
from coinfolio.core.retry import RetryPolicy
from coinfolio.providers import (
    BinanceProvider,
    CoinGeckoProvider,
    JsonHttpClient,
    MarketDataProvider,
    PriceFeedProvider,
    StubMarketDataProvider,
    build_session,
)
from coinfolio.repositories import InMemoryKeyValueStore, KeyValueLedgerRepository
from coinfolio.repositories.sqlalchemy import SqlAlchemyKeyValueStore
from coinfolio.repositories.sqlalchemy.database import (
    init_db_with_path,
    reset_database,
    get_session,
)
from coinfolio.services import (
    CacheTtls,
    LedgerService,
    MarketDataService,
    PortfolioService,
    TieredCache,
)
from coinfolio.transfer import PortfolioExporter, PortfolioImporter


class AppContext:
    """
    Application context providing in-process access to all services.

    Providers can be injected (tests, offline use); otherwise they are built
    from settings, with the stub provider standing in when `offline_mode` is on.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        primary: Optional[MarketDataProvider] = None,
        secondary: Optional[PriceFeedProvider] = None,
    ):
        self._data_dir = data_dir
        self._session = None
        self._initialized = False
        self._primary = primary
        self._secondary = secondary

        # Service instances (lazy initialized)
        self._kv_store: Optional[SqlAlchemyKeyValueStore] = None
        self._cache: Optional[TieredCache] = None
        self._ledger_service: Optional[LedgerService] = None
        self._market_data_service: Optional[MarketDataService] = None
        self._portfolio_service: Optional[PortfolioService] = None

    def initialize(self, data_dir: Optional[Path] = None) -> None:
        """Point the context at a data directory and (re)create the database."""
        if data_dir:
            self._data_dir = data_dir

        settings = get_settings().model_copy(update={"data_dir": self._data_dir})
        set_settings(settings)

        reset_database()
        init_db_with_path(settings.get_data_dir() / "coinfolio.db")

        self.close()
        self._reset_services()
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def data_dir(self) -> Path:
        return get_settings().get_data_dir()

    def _get_session(self):
        if self._session is None:
            self._session = get_session()
        return self._session

    def _reset_services(self) -> None:
        self._kv_store = None
        self._cache = None
        self._ledger_service = None
        self._market_data_service = None
        self._portfolio_service = None

    @property
    def kv_store(self) -> SqlAlchemyKeyValueStore:
        """Durable store holding the ledger document and stale cache shadows."""
        if self._kv_store is None:
            self._kv_store = SqlAlchemyKeyValueStore(self._get_session())
        return self._kv_store

    @property
    def ledger(self) -> LedgerService:
        if self._ledger_service is None:
            self._ledger_service = LedgerService(KeyValueLedgerRepository(self.kv_store))
        return self._ledger_service

    @property
    def cache(self) -> TieredCache:
        """Market data and derived-view cache; the stale shadow lives in the durable store."""
        if self._cache is None:
            settings = get_settings()
            self._cache = TieredCache(
                scoped_store=InMemoryKeyValueStore(),
                stale_store=self.kv_store,
                hot_max_entries=settings.hot_cache_max_entries,
                stale_ttl=settings.stale_ttl_seconds,
            )
        return self._cache

    @property
    def market_data(self) -> MarketDataService:
        if self._market_data_service is None:
            settings = get_settings()
            primary, secondary = self._build_providers(settings)
            limiter = RateLimiter(
                budgets={
                    "coingecko": settings.coingecko_requests_per_minute,
                    "binance": settings.binance_requests_per_minute,
                },
                default_budget=settings.coingecko_requests_per_minute,
            )
            self._market_data_service = MarketDataService(
                primary=primary,
                secondary=secondary,
                cache=self.cache,
                rate_limiter=limiter,
                coalescer=RequestCoalescer(grace_seconds=settings.coalesce_grace_seconds),
                retry_policy=RetryPolicy(
                    max_attempts=settings.retry_max_attempts,
                    base_delay=settings.retry_base_delay_seconds,
                    multiplier=settings.retry_multiplier,
                    jitter=settings.retry_jitter,
                ),
                ttls=CacheTtls(
                    top_quotes=settings.top_quotes_ttl_seconds,
                    quote=settings.quote_ttl_seconds,
                    series=settings.series_ttl_seconds,
                    search=settings.search_ttl_seconds,
                ),
                request_timeout=settings.request_timeout_seconds,
                max_rate_limit_wait=settings.max_rate_limit_wait_seconds,
                bulk_chunk_size=settings.bulk_chunk_size,
                bulk_batch_spacing=settings.bulk_batch_spacing_seconds,
                allow_estimated_series=settings.allow_estimated_series,
            )
        return self._market_data_service

    @property
    def portfolio(self) -> PortfolioService:
        if self._portfolio_service is None:
            self._portfolio_service = PortfolioService(
                ledger_service=self.ledger,
                market_data_service=self.market_data,
                importer=PortfolioImporter(self.ledger),
                exporter=PortfolioExporter(self.ledger),
                cache=self.cache,
            )
        return self._portfolio_service

    def _build_providers(self, settings: Settings):
        if self._primary is not None:
            return self._primary, self._secondary
        if settings.offline_mode:
            return StubMarketDataProvider(), None

        session = build_session()
        primary = CoinGeckoProvider(
            JsonHttpClient(
                "coingecko",
                settings.coingecko_base_url,
                session=session,
                timeout=settings.request_timeout_seconds,
            ),
            vs_currency=settings.vs_currency,
        )
        secondary = BinanceProvider(
            JsonHttpClient(
                "binance",
                settings.binance_base_url,
                session=session,
                timeout=settings.request_timeout_seconds,
            )
        )
        return primary, secondary

    def close(self) -> None:
        """Clean up resources."""
        if self._session:
            self._session.close()
            self._session = None


# Global application context (one per process)
_app_context: Optional[AppContext] = None


def get_app_context() -> AppContext:
    """Get or create the global application context."""
    global _app_context
    if _app_context is None:
        _app_context = AppContext()
    return _app_context


def set_app_context(context: Optional[AppContext]) -> None:
    """Set (or clear) the global application context."""
    global _app_context
    _app_context = context
