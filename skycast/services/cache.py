"""
LRUCache - Bounded in-memory cache with TTL and least-recently-used eviction.

Features:
- Fixed capacity, evicting the least recently touched key on insert
- Recency tracked by a logical access counter, not wall-clock time
- Lazy expiry on read, plus an explicit cleanup sweep
- Operations never await, so each one is atomic on the event loop
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Replaced, never mutated, on re-set."""

    value: T
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """Check if entry is past its TTL."""
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Snapshot of the unexpired part of the cache."""

    size: int = 0
    max_size: int = 0
    oldest_entry: float | None = None
    newest_entry: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "oldest_entry": self.oldest_entry,
            "newest_entry": self.newest_entry,
        }


class LRUCache(Generic[T]):
    """
    TTL + LRU cache keyed by opaque strings.

    Usage:
        cache = LRUCache(max_size=50, default_ttl=timedelta(minutes=5))

        cache.set("paris", data)
        value = cache.get("paris")  # None on miss or expiry
    """

    def __init__(
        self,
        max_size: int = 50,
        default_ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        if max_size < 0:
            raise ValueError(f"max_size must be >= 0, got {max_size}")

        self._entries: dict[str, CacheEntry[T]] = {}
        self._access_order: dict[str, int] = {}
        self._access_counter = 0
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._evictions = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def evictions(self) -> int:
        """Number of entries removed to make room."""
        return self._evictions

    def __len__(self) -> int:
        # Raw count, may include expired entries not yet touched.
        return len(self._entries)

    def get(self, key: str) -> T | None:
        """
        Get value from cache.

        Returns the value if present and unexpired, None otherwise.
        An expired entry is removed as a side effect.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            self._remove(key)
            self._log(f"EXPIRED: {key[:50]}")
            return None

        self._touch(key)
        return entry.value

    def set(self, key: str, value: T, ttl: timedelta | None = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache, stored as-is
            ttl: Time to live (uses default if not specified). Zero or
                negative makes the entry expired on the next read.
        """
        if self._max_size == 0:
            return

        ttl = ttl if ttl is not None else self._default_ttl
        now = self._clock()
        entry = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + ttl.total_seconds(),
        )

        if key not in self._entries and len(self._entries) >= self._max_size:
            self._evict_lru()

        self._entries[key] = entry
        self._touch(key)
        self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    def has(self, key: str) -> bool:
        """Check if key is present and unexpired without updating recency."""
        entry = self._entries.get(key)
        if entry is None:
            return False

        if entry.is_expired(self._clock()):
            self._remove(key)
            return False

        return True

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._entries:
            self._remove(key)
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._access_order.clear()
        self._access_counter = 0
        self._log(f"CLEAR: {count} entries removed")

    def cleanup(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired_keys:
            self._remove(key)

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def keys(self) -> list[str]:
        """Get all unexpired keys, dropping expired ones found on the way."""
        now = self._clock()
        valid_keys = []
        for key, entry in list(self._entries.items()):
            if entry.is_expired(now):
                self._remove(key)
            else:
                valid_keys.append(key)
        return valid_keys

    def stats(self) -> CacheStats:
        """Recompute statistics over unexpired entries."""
        now = self._clock()
        stats = CacheStats(max_size=self._max_size)

        for key, entry in list(self._entries.items()):
            if entry.is_expired(now):
                self._remove(key)
                continue

            stats.size += 1
            if stats.oldest_entry is None or entry.created_at < stats.oldest_entry:
                stats.oldest_entry = entry.created_at
            if stats.newest_entry is None or entry.created_at > stats.newest_entry:
                stats.newest_entry = entry.created_at

        return stats

    def _touch(self, key: str) -> None:
        self._access_counter += 1
        self._access_order[key] = self._access_counter

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)
        self._access_order.pop(key, None)

    def _evict_lru(self) -> None:
        """Evict the entry with the lowest recency rank."""
        if not self._access_order:
            return

        # Ranks are unique, so insertion order only matters for equal ranks.
        lru_key = min(self._access_order, key=self._access_order.__getitem__)
        self._remove(lru_key)
        self._evictions += 1
        self._log(f"EVICT: {lru_key[:50]}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[LRUCache] {message}")
