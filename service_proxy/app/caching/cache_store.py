"""
In-memory TTL cache with single-flight population.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from shared.logging import get_logger


# Where a resolved payload came from; mirrored in the X-Cache header.
FROM_CACHE = "HIT"
PRODUCED = "MISS"
JOINED = "SHARED"


@dataclass(frozen=True)
class CacheEntry:
    """Cached payload and the monotonic time it was stored."""

    payload: Any
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.stored_at


class CacheStore:
    """
    Bounded-TTL response cache shared by all request tasks.

    Entries expire lazily: an expired entry is dropped the next time it is
    read. Capacity is unbounded unless ``max_entries`` is given, in which case
    the oldest insertion is evicted first.

    ``single_flight`` runs at most one producer per key at a time. The lock
    only guards the entry map and the in-flight table; producers run outside
    it, so different keys never wait on each other.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        *,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self.logger = get_logger("proxy.cache")

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}
        self._lock = asyncio.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` or None."""
        async with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    async def put(self, key: str, payload: Any) -> CacheEntry:
        """Store ``payload`` under ``key``, replacing any previous entry."""
        async with self._lock:
            return self._store(key, payload)

    async def clear(self) -> int:
        """Drop every entry; in-flight producers are left to finish."""
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self.logger.info("Cache cleared", entries=count)
        return count

    async def single_flight(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached payload for ``key`` or produce it exactly once.

        Concurrent callers for the same key share one producer run and receive
        its result or its exception. Only successful results are stored. A
        caller that is cancelled stops waiting, but the producer and its cache
        write carry on for the remaining waiters.
        """
        payload, _ = await self.resolve(key, producer)
        return payload

    async def resolve(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Tuple[Any, str]:
        """Like ``single_flight`` but also report ``FROM_CACHE``, ``PRODUCED`` or ``JOINED``."""
        async with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                return entry.payload, FROM_CACHE

            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._produce(key, producer))
                task.add_done_callback(_retrieve_exception)
                self._in_flight[key] = task
                origin = PRODUCED
            else:
                self.logger.debug("Joining in-flight fetch", key=key)
                origin = JOINED

        return await asyncio.shield(task), origin

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def stats(self) -> Dict[str, Any]:
        """Return counters describing cache usage."""
        return {
            "entries": len(self._entries),
            "in_flight": len(self._in_flight),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "expirations": self._expirations,
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
        }

    def __len__(self) -> int:
        return len(self._entries)

    async def _produce(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        try:
            payload = await producer()
            async with self._lock:
                self._store(key, payload)
            return payload
        finally:
            self._in_flight.pop(key, None)

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.age(self._clock()) >= self.ttl_seconds:
            del self._entries[key]
            self._expirations += 1
            self.logger.debug("Cache entry expired", key=key)
            return None
        return entry

    def _store(self, key: str, payload: Any) -> CacheEntry:
        entry = CacheEntry(payload=payload, stored_at=self._clock())
        self._entries.pop(key, None)
        self._entries[key] = entry

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                self.logger.debug("Cache entry evicted", key=evicted_key)
        return entry


def _retrieve_exception(task: "asyncio.Future[Any]") -> None:
    # Mark the exception as observed when every waiter has gone away.
    if not task.cancelled():
        task.exception()
