"""Enumerations for domain models."""

from enum import Enum


class TransactionType(str, Enum):
    """Types of ledger transactions."""

    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: str) -> "TransactionType":
        """Accept any casing ("BUY", "Buy", "buy")."""
        return cls(str(value).strip().lower())


class PriceSource(str, Enum):
    """Where a price figure came from."""

    COINGECKO = "coingecko"
    BINANCE = "binance"
    STUB = "stub"
    ESTIMATE = "estimate"
