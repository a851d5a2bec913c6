"""Service layer - business logic orchestration."""

from coinfolio.services.tiered_cache import TieredCache, CacheEntry
from coinfolio.services.valuation_engine import value_position, aggregate, revalue
from coinfolio.services.ledger_service import LedgerService, TransactionCreate, TransactionUpdate
from coinfolio.services.market_data_service import MarketDataService, CacheTtls
from coinfolio.services.portfolio_service import PortfolioService

__all__ = [
    "TieredCache",
    "CacheEntry",
    "value_position",
    "aggregate",
    "revalue",
    "LedgerService",
    "TransactionCreate",
    "TransactionUpdate",
    "MarketDataService",
    "CacheTtls",
    "PortfolioService",
]
