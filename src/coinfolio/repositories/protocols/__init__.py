"""Repository protocol definitions (interfaces)."""

from coinfolio.repositories.protocols.kv_store import KeyValueStore
from coinfolio.repositories.protocols.ledger_repo import LedgerRepository

__all__ = [
    "KeyValueStore",
    "LedgerRepository",
]
