from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from ..config import CacheOptions

logger = logging.getLogger("foundry_client")

V = TypeVar("V")

Clock = Callable[[], float]

MIN_SWEEP_INTERVAL_S = 30.0

_MISSING: Any = object()


@dataclass(slots=True)
class CacheEntry:
    value: Any
    created_at: float
    ttl: float
    access_count: int
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    size: int
    max_size: int
    evictions: int


class TTLCache:
    """In-process cache with per-entry TTL and least-recently-used eviction.

    When disabled the cache is transparent: ``get`` always misses, ``set``
    does nothing and ``get_or_set`` always calls the factory.

    Expired entries are removed lazily on ``get`` and by a periodic sweep
    that starts with the first ``set`` made inside a running event loop.

    ``get_or_set`` is not exclusive. Two tasks missing the same key before
    either factory completes will both call the factory, and the last write
    wins. Factories used here are idempotent reads, so this is accepted.
    """

    def __init__(
        self,
        options: CacheOptions | None = None,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        opts = options or CacheOptions()
        self._enabled = opts.enabled
        self._default_ttl = opts.ttl_seconds
        self._max_size = opts.max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweep_task: asyncio.Task[None] | None = None

        if self._enabled:
            logger.info(
                "Cache initialized (ttl=%ss, max_size=%d)",
                self._default_ttl,
                self._max_size,
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def sweep_interval(self) -> float:
        return max(self._default_ttl / 4, MIN_SWEEP_INTERVAL_S)

    def __len__(self) -> int:
        return len(self._entries)

    # -- Access -----------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if not self._enabled:
            return

        now = self._clock()
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._evict_least_recently_used()

        self._entries[key] = CacheEntry(
            value=value,
            created_at=now,
            ttl=self._default_ttl if ttl is None else ttl,
            access_count=0,
            last_accessed=now,
        )
        logger.debug("Cache set %s (size=%d)", key, len(self._entries))
        self._ensure_sweeper()

    def delete(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        logger.debug("Cache deleted %s", key)
        return True

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        logger.info("Cache cleared (previous size=%d)", size)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[V]],
        ttl: float | None = None,
    ) -> V:
        if not self._enabled:
            return await factory()

        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        value = await factory()
        self.set(key, value, ttl)
        return value

    def keys(self) -> list[str]:
        return list(self._entries)

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses
        hit_rate = self._hits / total if total else 0.0
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            hit_rate=round(hit_rate, 2),
            size=len(self._entries),
            max_size=self._max_size,
            evictions=self._evictions,
        )

    # -- Expiration -------------------------------------------------------

    def prune(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(
                "Cache sweep removed %d entries (remaining=%d)",
                len(expired),
                len(self._entries),
            )
        return len(expired)

    async def close(self) -> None:
        """Stop the background sweep."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    # -- Private ----------------------------------------------------------

    def _lookup(self, key: str) -> Any:
        if not self._enabled:
            return _MISSING

        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("Cache miss %s", key)
            return _MISSING

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._misses += 1
            logger.debug("Cache expired %s (age=%.3fs)", key, now - entry.created_at)
            return _MISSING

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._hits += 1
        logger.debug("Cache hit %s (access_count=%d)", key, entry.access_count)
        return entry.value

    def _evict_least_recently_used(self) -> None:
        # Entries are kept in access order, oldest first.
        key, entry = self._entries.popitem(last=False)
        self._evictions += 1
        logger.debug(
            "Cache evicted %s (idle=%.3fs)", key, self._clock() - entry.last_accessed
        )

    def _ensure_sweeper(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sweep_task = loop.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.prune()
            except Exception:
                logger.exception("Cache sweep failed")
