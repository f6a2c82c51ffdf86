"""Short-lived in-process cache of campaign condition catalogs.

Catalogs change far less often than events arrive, so a snapshot may be served
for up to ``ttl_seconds`` after it was loaded. Entries are bounded in count and
the oldest one is evicted when a new campaign would overflow the cache. One
instance is built per process and handed to the evaluator explicitly.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Awaitable, Callable, Generic, TypeVar
from uuid import UUID

from loguru import logger

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class _CacheEntry(Generic[T]):
    value: T
    loaded_at: float


@dataclass
class CatalogCacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "evictions": self.evictions}


class ConditionCatalogCache(Generic[T]):
    def __init__(
        self,
        *,
        ttl_seconds: float = 60.0,
        max_entries: int = 500,
        clock: Clock | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[UUID, _CacheEntry[T]] = OrderedDict()
        self._lock = Lock()
        self._stats = CatalogCacheStats()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, campaign_id: UUID) -> T | None:
        """Return the cached catalog if it is still fresh."""

        now = self._clock()
        with self._lock:
            entry = self._entries.get(campaign_id)
            if entry is None:
                self._stats.misses += 1
                return None
            if now - entry.loaded_at >= self._ttl_seconds:
                del self._entries[campaign_id]
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            return entry.value

    def put(self, campaign_id: UUID, value: T) -> None:
        with self._lock:
            self._entries.pop(campaign_id, None)
            while len(self._entries) >= self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug("Evicted condition catalog from cache", campaign_id=str(evicted))
            self._entries[campaign_id] = _CacheEntry(value=value, loaded_at=self._clock())

    async def get_or_load(self, campaign_id: UUID, loader: Callable[[UUID], Awaitable[T]]) -> T:
        """Serve a fresh entry or read through ``loader`` and populate the cache."""

        cached = self.get(campaign_id)
        if cached is not None:
            return cached
        value = await loader(campaign_id)
        self.put(campaign_id, value)
        return value

    def invalidate(self, campaign_id: UUID) -> bool:
        with self._lock:
            return self._entries.pop(campaign_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CatalogCacheStats:
        with self._lock:
            return CatalogCacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
            )


__all__ = ["CatalogCacheStats", "ConditionCatalogCache"]
