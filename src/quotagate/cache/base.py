"""Abstract base class for cache stores."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """
    A cached payload and when it was stored.

    Attributes:
        key: Cache key (opaque, encodes endpoint and parameters)
        value: Cached payload
        stored_at: Clock reading when the entry was written
        ttl_seconds: Time-to-live in seconds
    """

    key: str
    value: Any
    stored_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        """Clock reading at which the entry stops being a hit."""
        return self.stored_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        """An entry is a valid hit only while ``now - stored_at < ttl``."""
        return now - self.stored_at >= self.ttl_seconds

    def age_seconds(self, now: float) -> float:
        """Get age of entry in seconds."""
        return now - self.stored_at

    def ttl_remaining(self, now: float) -> float:
        """Get remaining TTL in seconds."""
        return max(0.0, self.expires_at - now)


class CacheStore(ABC):
    """
    Abstract base class for cache stores.

    Implement this class to plug a different store into the gateway.
    Stores hold no persistent state; contents are lost on restart.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this store.

        Returns:
            Store name (e.g., 'memory')
        """
        ...

    @abstractmethod
    async def lookup(self, key: str) -> CacheEntry | None:
        """
        Get the live entry for a key.

        Args:
            key: Cache key

        Returns:
            CacheEntry, or None if absent or expired
        """
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
    ) -> CacheEntry:
        """
        Store a payload, replacing any existing entry.

        Args:
            key: Cache key
            value: Payload to cache
            ttl_seconds: Time-to-live in seconds (None = use default)

        Returns:
            The stored entry
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete an entry.

        Args:
            key: Cache key

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def clear(self, pattern: str | None = None) -> int:
        """
        Clear cache entries.

        Args:
            pattern: Optional glob pattern to match keys (e.g., "/v2/aggs/*")
                    None = clear all entries

        Returns:
            Number of entries cleared
        """
        ...

    @abstractmethod
    async def sweep(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        ...

    async def get(self, key: str) -> Any | None:
        """
        Get a payload from the cache.

        Expired and absent entries are both reported as None.
        """
        entry = await self.lookup(key)
        return entry.value if entry is not None else None

    async def exists(self, key: str) -> bool:
        """Check if a key holds a live entry."""
        return await self.lookup(key) is not None

    def stats(self) -> dict[str, Any]:
        """Get store statistics, if the store keeps any."""
        return {}

    async def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the store.

        Returns:
            Dict with health status info
        """
        return {"backend": self.name}
