"""In-memory cache store implementation."""

import asyncio
import fnmatch
import logging
import time
from typing import Any, Callable

from quotagate.cache.base import CacheEntry, CacheStore

logger = logging.getLogger(__name__)


class InMemoryCache(CacheStore):
    """
    In-memory cache store using a simple dictionary.

    Writes replace whole entries, so readers never observe a partial update.
    Expired entries are dropped lazily on lookup and in bulk by ``sweep``.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 900.0,
        max_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize in-memory cache.

        Args:
            default_ttl_seconds: Default TTL for cache entries
            max_size: Maximum number of entries (None = unlimited)
            clock: Monotonic time source in seconds
        """
        self._store: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evictions": 0,
            "expired": 0,
        }

    @property
    def name(self) -> str:
        return "memory"

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    async def lookup(self, key: str) -> CacheEntry | None:
        """Get the live entry for a key."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.is_expired(self._clock()):
                del self._store[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None

            self._stats["hits"] += 1
            return entry

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
    ) -> CacheEntry:
        """Store a payload, replacing any existing entry."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl

        async with self._lock:
            # Evict if at max size
            if self._max_size and key not in self._store and len(self._store) >= self._max_size:
                self._evict_oldest()

            entry = CacheEntry(
                key=key,
                value=value,
                stored_at=self._clock(),
                ttl_seconds=ttl,
            )
            self._store[key] = entry
            self._stats["sets"] += 1
            return entry

    async def delete(self, key: str) -> bool:
        """Delete an entry."""
        async with self._lock:
            if key in self._store:
                del self._store[key]
                return True
            return False

    async def clear(self, pattern: str | None = None) -> int:
        """Clear cache entries matching pattern."""
        async with self._lock:
            if pattern is None:
                count = len(self._store)
                self._store.clear()
                return count

            keys_to_delete = [
                k for k in self._store.keys()
                if fnmatch.fnmatch(k, pattern)
            ]
            for key in keys_to_delete:
                del self._store[key]
            return len(keys_to_delete)

    async def sweep(self) -> int:
        """Remove all expired entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [
                k for k, v in self._store.items()
                if v.is_expired(now)
            ]
            for key in expired_keys:
                del self._store[key]
            self._stats["expired"] += len(expired_keys)

            if expired_keys:
                logger.debug(f"Swept {len(expired_keys)} expired cache entries")

            return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the oldest entry (caller must hold lock)."""
        if not self._store:
            return

        oldest_key = min(
            self._store.keys(),
            key=lambda k: self._store[k].stored_at
        )
        del self._store[oldest_key]
        self._stats["evictions"] += 1

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "size": len(self._store),
            "hit_rate": round(self._stats["hits"] / lookups, 3) if lookups else 0.0,
        }

    async def health_check(self) -> dict[str, Any]:
        """Return health status with cache statistics."""
        async with self._lock:
            now = self._clock()
            total_entries = len(self._store)
            expired_entries = sum(1 for v in self._store.values() if v.is_expired(now))

        return {
            "backend": self.name,
            "total_entries": total_entries,
            "expired_entries": expired_entries,
            "max_size": self._max_size,
        }

    def size(self) -> int:
        """Get current number of entries (sync method for convenience)."""
        return len(self._store)
