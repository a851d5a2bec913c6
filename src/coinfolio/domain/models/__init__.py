"""Domain models package."""

from coinfolio.domain.models.enums import TransactionType, PriceSource
from coinfolio.domain.models.transaction import Transaction
from coinfolio.domain.models.position import CoinPosition, Portfolio

__all__ = [
    "TransactionType",
    "PriceSource",
    "Transaction",
    "CoinPosition",
    "Portfolio",
]
