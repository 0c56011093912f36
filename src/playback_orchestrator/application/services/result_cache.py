"""Bounded, TTL-expiring cache evicted in insertion order.

Eviction removes the entry that was inserted earliest; reading never
refreshes an entry's position. Expiry is checked lazily on read, with
``prune_expired`` and ``evict_oldest`` available for memory pressure.
Every method is synchronous, so mutations cannot interleave on one loop.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from playback_orchestrator.domain.shared.datetime_utils import Clock
from playback_orchestrator.domain.shared.messages import LogTemplates

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    inserted_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    expirations: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups * 100 if lookups else 0.0


class ResultCache(Generic[V]):
    def __init__(
        self,
        max_size: int = 100,
        ttl_s: float = 300.0,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._expirations += 1
            self._misses += 1
            logger.debug(LogTemplates.CACHE_EXPIRED, key)
            return None

        self._hits += 1
        return entry.value

    def set(self, key: str, value: V, ttl_s: float | None = None) -> None:
        """Store ``value``; re-setting a key counts as a fresh insertion."""
        now = self._clock()
        self._entries.pop(key, None)

        while len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._evictions += 1
            logger.debug(LogTemplates.CACHE_EVICTED, oldest)

        ttl = self.ttl_s if ttl_s is None else ttl_s
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, expires_at=now + ttl)

    def has(self, key: str) -> bool:
        """Presence check that neither counts as a lookup nor removes expired entries."""
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        if count:
            logger.info(LogTemplates.CACHE_CLEARED, count)
        return count

    def prune_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        if expired:
            logger.debug(LogTemplates.CACHE_PRUNED, len(expired))
        return len(expired)

    def evict_oldest(self, count: int) -> int:
        """Evict up to ``count`` earliest-inserted entries."""
        victims = list(self._entries)[: max(0, count)]
        for key in victims:
            del self._entries[key]
        self._evictions += len(victims)
        return len(victims)

    def evict_fraction(self, percent: float) -> int:
        """Evict the oldest ``percent`` of entries, rounding up."""
        if not self._entries or percent <= 0:
            return 0
        return self.evict_oldest(math.ceil(len(self._entries) * percent / 100))

    def keys(self) -> list[str]:
        return list(self._entries)

    def get_stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            expirations=self._expirations,
        )

    def reset_stats(self) -> None:
        self._hits = self._misses = self._evictions = self._expirations = 0

    async def warm(
        self,
        keys: Iterable[str],
        loader: Callable[[str], Awaitable[V | None]],
    ) -> int:
        """Load and store each key not already present; failures are logged and skipped."""
        loaded = 0
        for key in keys:
            if self.has(key):
                continue
            try:
                value = await loader(key)
            except Exception as e:
                logger.warning(LogTemplates.CACHE_WARM_FAILED, key, e)
                continue
            if value is not None:
                self.set(key, value)
                loaded += 1
        return loaded
