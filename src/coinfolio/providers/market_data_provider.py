"""Market data provider protocols."""

from typing import Protocol

from coinfolio.domain.views import PriceSeries, PriceTick, Quote, SearchHit


class MarketDataProvider(Protocol):
    """
    Primary provider: full quotes, series, search and contract lookup.

    Calls are blocking and raise ProviderError subclasses on failure; the
    market data service runs them off the event loop. Coins the provider
    does not know are omitted from bulk results rather than raising.
    """

    provider_id: str

    def fetch_top_quotes(self, limit: int) -> list[Quote]:
        """Top coins by market cap, best first."""
        ...

    def fetch_quote(self, coin_id: str) -> Quote:
        """Quote for one coin. Raises ProviderNotFoundError if unknown."""
        ...

    def fetch_quotes_bulk(self, coin_ids: list[str]) -> dict[str, Quote]:
        """Quotes for several coins in one request, keyed by coin id."""
        ...

    def fetch_series(self, coin_id: str, range_days: int) -> PriceSeries:
        """Historical price series over the last `range_days` days."""
        ...

    def search(self, query: str) -> list[SearchHit]:
        """Free-text coin search."""
        ...

    def lookup_contract(self, address: str, platform: str = "ethereum") -> Quote:
        """Resolve a token contract address to a quote."""
        ...


class PriceFeedProvider(Protocol):
    """Secondary provider: fresher prices keyed by ticker symbol."""

    provider_id: str

    def fetch_prices(self, symbols: list[str]) -> dict[str, PriceTick]:
        """Latest price ticks keyed by upper-case symbol; unknown symbols omitted."""
        ...

    def prices_weight(self, symbols: list[str]) -> int:
        """Rate-limit weight of one `fetch_prices` call for `symbols`."""
        ...

    def fetch_candles(self, symbol: str, range_days: int) -> PriceSeries:
        """Close-price series for `symbol`. `coin_id` of the result is the symbol."""
        ...
