"""Market data providers module."""

from coinfolio.providers.market_data_provider import MarketDataProvider, PriceFeedProvider
from coinfolio.providers.http_client import JsonHttpClient, build_session
from coinfolio.providers.coingecko_provider import CoinGeckoProvider
from coinfolio.providers.binance_provider import BinanceProvider
from coinfolio.providers.stub_provider import StubMarketDataProvider

__all__ = [
    "MarketDataProvider",
    "PriceFeedProvider",
    "JsonHttpClient",
    "build_session",
    "CoinGeckoProvider",
    "BinanceProvider",
    "StubMarketDataProvider",
]
