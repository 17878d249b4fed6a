"""
Proxy caching package.

Holds the in-memory response cache. Entries live for a fixed TTL and are
never persisted across restarts.
"""

from .cache_store import CacheEntry, CacheStore

__all__ = ["CacheEntry", "CacheStore"]
