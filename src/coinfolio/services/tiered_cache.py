"""Hot / scoped / durable-stale cache for market data payloads."""

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from coinfolio.repositories.protocols import KeyValueStore

logger = logging.getLogger(__name__)

STALE_PREFIX = "stale:"
DEFAULT_STALE_TTL = 24 * 60 * 60


@dataclass
class CacheEntry:
    """A cached payload with its fetch time (epoch seconds) and TTL."""

    value: Any
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl

    def to_json(self) -> str:
        return json.dumps({"value": self.value, "fetched_at": self.fetched_at, "ttl": self.ttl})

    @classmethod
    def from_json(cls, raw: str) -> Optional["CacheEntry"]:
        try:
            data = json.loads(raw)
            return cls(value=data["value"], fetched_at=float(data["fetched_at"]), ttl=float(data["ttl"]))
        except (ValueError, KeyError, TypeError):
            return None


class TieredCache:
    """
    Three-tier cache keyed by strings such as ``quote:bitcoin``.

    - hot: in-process LRU map, bounded by `hot_max_entries`
    - scoped: a KeyValueStore that outlives the hot map for the session;
      hits are promoted into the hot tier
    - stale: a durable KeyValueStore holding the last good value per key for
      `stale_ttl` seconds, read only through `get_stale`

    Values must be JSON-compatible.
    """

    def __init__(
        self,
        scoped_store: KeyValueStore,
        stale_store: KeyValueStore,
        hot_max_entries: int = 1000,
        stale_ttl: float = DEFAULT_STALE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._hot: OrderedDict[str, CacheEntry] = OrderedDict()
        self._scoped = scoped_store
        self._stale = stale_store
        self._hot_max = hot_max_entries
        self._stale_ttl = stale_ttl
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        """Return a fresh value from the hot or scoped tier, or None."""
        now = self._clock()

        entry = self._hot.get(key)
        if entry is not None:
            if entry.is_fresh(now):
                self._hot.move_to_end(key)
                return entry.value
            del self._hot[key]

        raw = self._scoped.get(key)
        if raw is None:
            return None
        entry = CacheEntry.from_json(raw)
        if entry is None or not entry.is_fresh(now):
            self._scoped.delete(key)
            return None
        self._put_hot(key, entry)
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store a fresh value in the hot and scoped tiers."""
        entry = CacheEntry(value=value, fetched_at=self._clock(), ttl=ttl)
        self._put_hot(key, entry)
        self._scoped.set(key, entry.to_json())

    def get_stale(self, key: str) -> Optional[Any]:
        """Return the last good value for `key` if it is within the stale retention."""
        raw = self._stale.get(STALE_PREFIX + key)
        if raw is None:
            return None
        entry = CacheEntry.from_json(raw)
        if entry is None or not entry.is_fresh(self._clock()):
            self._stale.delete(STALE_PREFIX + key)
            return None
        return entry.value

    def set_stale(self, key: str, value: Any) -> None:
        entry = CacheEntry(value=value, fetched_at=self._clock(), ttl=self._stale_ttl)
        self._stale.set(STALE_PREFIX + key, entry.to_json())

    def write_through(self, key: str, value: Any, ttl: float) -> None:
        """Store a freshly fetched value in every tier."""
        self.set(key, value, ttl)
        try:
            self.set_stale(key, value)
        except Exception:
            # The fresh tiers are already populated; a failed shadow write only loses a fallback
            logger.exception("Failed to write stale shadow for %s", key)

    def invalidate(self, key: str) -> None:
        """Drop the fresh copies of `key`; the stale shadow is kept."""
        self._hot.pop(key, None)
        self._scoped.delete(key)

    def clear_hot(self) -> None:
        self._hot.clear()

    def clear(self) -> None:
        """Drop everything, including stale shadows."""
        self._hot.clear()
        for key in self._scoped.keys():
            self._scoped.delete(key)
        for key in self._stale.keys(STALE_PREFIX):
            self._stale.delete(key)

    def _put_hot(self, key: str, entry: CacheEntry) -> None:
        self._hot[key] = entry
        self._hot.move_to_end(key)
        while len(self._hot) > self._hot_max:
            self._hot.popitem(last=False)
