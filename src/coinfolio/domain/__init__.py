"""Domain layer - ledger models and market/valuation views."""

from coinfolio.domain.models import (
    Transaction,
    TransactionType,
    PriceSource,
    CoinPosition,
    Portfolio,
)

__all__ = [
    "Transaction",
    "TransactionType",
    "PriceSource",
    "CoinPosition",
    "Portfolio",
]
