"""
Bounded TTL cache for single-entity lookups.

The webhook sync path resolves the same users, organizations, groups,
brands and forms over and over while a burst of events arrives for related
tickets. Lookups go through a size-bounded, expiring cache that also
remembers "not found" answers, so a deleted user is not re-requested on
every event.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")

# Stored in place of a value for lookups that found nothing
_ABSENT = object()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class BoundedTTLCache(Generic[K, V]):
    """
    Thread-safe LRU cache with a size limit and time-to-live.

    Example:
        users = BoundedTTLCache[str, dict](max_size=5000, ttl_seconds=300)

        user = users.get_or_load("42", lambda: source.get_user(42))
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_size: Entries kept before the least recently used is evicted
            ttl_seconds: Lifetime of an entry (0 = never expires)
            clock: Monotonic time source (injectable for tests)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._entries: OrderedDict[K, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _expired(self, entry: CacheEntry) -> bool:
        return self.ttl_seconds > 0 and self._clock() >= entry.expires_at

    def _lookup(self, key: K) -> Any:
        """Raw entry value, _ABSENT for a cached miss, or None when not cached."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry):
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def _store(self, key: K, value: Any) -> None:
        expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds > 0 else float("inf")
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def get(self, key: K) -> V | None:
        """Cached value, or None when missing, expired, or cached as absent."""
        value = self._lookup(key)
        return None if value is _ABSENT else value

    def set(self, key: K, value: V | None) -> None:
        """Cache `value`; None is remembered as "looked up, not found"."""
        self._store(key, _ABSENT if value is None else value)

    def get_or_load(self, key: K, loader: Callable[[], V | None]) -> V | None:
        """
        Return the cached value for `key`, calling `loader` on a miss.

        Both found and not-found results are cached. Exceptions from
        `loader` propagate and nothing is cached.
        """
        cached = self._lookup(key)
        if cached is _ABSENT:
            return None
        if cached is not None:
            return cached

        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: K) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            stale = [key for key, entry in self._entries.items() if self._expired(entry)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
            "evictions": self._evictions,
        }


class LookupCache:
    """One BoundedTTLCache per related-entity kind used by ticket sync."""

    KINDS = ("users", "organizations", "groups", "brands", "ticket_forms")

    def __init__(
        self,
        max_size: int = 5000,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._caches: dict[str, BoundedTTLCache[str, dict[str, Any]]] = {
            kind: BoundedTTLCache(max_size=max_size, ttl_seconds=ttl_seconds, clock=clock)
            for kind in self.KINDS
        }

    def lookup(
        self,
        kind: str,
        entity_id: Any,
        loader: Callable[[], dict[str, Any] | None],
    ) -> dict[str, Any] | None:
        return self._caches[kind].get_or_load(str(entity_id), loader)

    def clear(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def get_stats(self) -> dict[str, Any]:
        return {kind: cache.get_stats() for kind, cache in self._caches.items()}
