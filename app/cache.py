"""In-memory TTL cache with single-flight loading."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """A cached value and the absolute time it stops being served."""

    value: V
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class TTLCache(Generic[K, V]):
    """Memory-only cache whose entries expire a fixed time after insertion.

    There is no background sweeper: an expired entry is evicted by the read
    that discovers it. Concurrent loads of the same key are coalesced so only
    one loader runs per key at a time.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._in_flight: dict[K, asyncio.Task[V]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def put(self, key: K, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self._ttl)

    def get(self, key: K, default: V | None = None) -> V | None:
        entry = self._lookup(key)
        return default if entry is None else entry.value

    def contains(self, key: K) -> bool:
        return self._lookup(key) is not None

    __contains__ = contains

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, key: K) -> CacheEntry[V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_fresh(self._clock()):
            return entry
        del self._entries[key]
        return None

    def in_flight(self, key: K) -> bool:
        return key in self._in_flight

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value or run ``loader`` once for all waiters.

        Only successful loads are cached. A failure is delivered to every
        caller currently waiting on the key; the next call starts afresh.
        """

        entry = self._lookup(key)
        if entry is not None:
            logger.debug("Cache hit for %s", key)
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            logger.debug("Cache miss for %s", key)

            async def _load() -> V:
                try:
                    value = await loader()
                    self.put(key, value)
                    return value
                finally:
                    self._in_flight.pop(key, None)

            task = asyncio.ensure_future(_load())
            self._in_flight[key] = task
        else:
            logger.debug("Joining in-flight load for %s", key)

        # A caller giving up must not cancel the load other callers await.
        return await asyncio.shield(task)
