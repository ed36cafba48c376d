"""Operation cache for semantic query results.

Eviction is by insertion order: once the cache is full, the entry that was
inserted first goes, regardless of how recently it was read. Re-putting a
key moves it to the newest position.
"""

from collections import OrderedDict
from typing import Any, NamedTuple

from forest_vectors.observability.metrics import CACHE_SIZE, track_cache_lookup


class CacheKey(NamedTuple):
    """``(operation, project_id, query_text)``."""

    operation: str
    project_id: str
    query_text: str


class OperationCache:
    """Bounded, insertion-ordered result cache with hit/miss counters."""

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._entries: OrderedDict[CacheKey, list[Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def hit_rate(self) -> float:
        """Hits over lookups, 0.0 before any lookup."""
        total = self._hits + self._misses
        return self._hits / total if total else 0.0

    def keys(self) -> list[CacheKey]:
        """Keys from oldest to newest insertion."""
        return list(self._entries)

    def get(self, key: CacheKey) -> list[Any] | None:
        """Look up a result, counting the hit or miss."""
        value = self._entries.get(key)
        if value is None:
            self._misses += 1
            track_cache_lookup(hit=False, size=self.size)
            return None
        self._hits += 1
        track_cache_lookup(hit=True, size=self.size)
        return list(value)

    def put(self, key: CacheKey, value: list[Any]) -> None:
        """Store a result as the newest entry, evicting the oldest when full."""
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[key] = list(value)
        CACHE_SIZE.set(self.size)

    def invalidate_project(self, project_id: str) -> int:
        """Drop every entry for a project. Counters are untouched."""
        stale = [k for k in self._entries if k.project_id == project_id]
        for key in stale:
            del self._entries[key]
        CACHE_SIZE.set(self.size)
        return len(stale)

    def invalidate_operation(self, operation: str) -> int:
        """Drop every entry of one operation kind. Counters are untouched."""
        stale = [k for k in self._entries if k.operation == operation]
        for key in stale:
            del self._entries[key]
        CACHE_SIZE.set(self.size)
        return len(stale)

    def clear(self) -> None:
        """Drop all entries and reset both counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        CACHE_SIZE.set(0)
