"""Key-value store protocol (local-storage semantics)."""

from typing import Protocol, Optional


class KeyValueStore(Protocol):
    """
    Interface for a synchronous string key-value store.

    Each `set` replaces the whole value for a key atomically; there are no
    transactions across keys.
    """

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store (or replace) a value."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key; no-op when absent."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with `prefix`."""
        ...
