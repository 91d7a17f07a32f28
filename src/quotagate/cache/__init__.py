"""
Cache module for upstream payloads.

Provides a TTL cache store keyed by opaque request keys. Contents live
only for the lifetime of the process.
"""

from quotagate.cache.base import CacheEntry, CacheStore
from quotagate.cache.memory import InMemoryCache

__all__ = [
    "CacheEntry",
    "CacheStore",
    "InMemoryCache",
]
