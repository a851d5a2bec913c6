"""In-process repository implementations."""

from coinfolio.repositories.memory.kv_store import InMemoryKeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
]
