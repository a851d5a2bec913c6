"""Repository layer - data access abstractions and implementations."""

from coinfolio.repositories.protocols import KeyValueStore, LedgerRepository
from coinfolio.repositories.ledger_repo import KeyValueLedgerRepository
from coinfolio.repositories.memory import InMemoryKeyValueStore

__all__ = [
    "KeyValueStore",
    "LedgerRepository",
    "KeyValueLedgerRepository",
    "InMemoryKeyValueStore",
]
