"""
Keyed TTL cache with whole-cache refresh.

One network read returns the accounts for every key (e.g. all token accounts
of the wallet, grouped by coin), so a refresh always replaces the whole map.
Freshness is decided per call: each caller passes the maximum age it
tolerates, and 0 forces a new read.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Generic, TypeVar

from serum_gateway.domain.models import CacheEntry
from serum_gateway.observability.logging import LOG_TAG_CACHE, get_logger
from serum_gateway.observability.metrics import record_cache_refresh, update_cache_age
from serum_gateway.utils.tasks import consume_result

logger = get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class KeyedTtlCache(Generic[K, V]):
    """
    Map of key -> CacheEntry refreshed as a whole.

    Concurrent callers that accept cached data share one in-flight read.
    A zero-age caller always starts its own read. A read that started before
    the data currently installed never overwrites it.
    Refresh failures are logged and the last good data is served; they only
    propagate while the cache has never been filled.
    """

    def __init__(
        self,
        name: str,
        fetch_all: Callable[[], Awaitable[Mapping[K, list[V]]]],
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._fetch_all = fetch_all
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._refreshed_at: float | None = None
        self._has_value = False
        self._generations = itertools.count(1)
        self._installed_generation = 0
        self._inflight: asyncio.Task[dict[K, CacheEntry[V]]] | None = None

    @property
    def refreshed_at(self) -> float | None:
        return self._refreshed_at

    async def get(self, key: K, max_age_seconds: float) -> list[V]:
        entries = await self._entries_within(max_age_seconds)
        entry = entries.get(key)
        return list(entry.accounts) if entry is not None else []

    async def get_all(self, max_age_seconds: float) -> dict[K, list[V]]:
        entries = await self._entries_within(max_age_seconds)
        return {key: list(entry.accounts) for key, entry in entries.items()}

    def invalidate(self) -> None:
        """Mark the data stale. It stays available as a fallback for failed refreshes."""
        self._refreshed_at = None

    async def _entries_within(self, max_age_seconds: float) -> dict[K, CacheEntry[V]]:
        if max_age_seconds > 0 and self._refreshed_at is not None:
            age = self._clock() - self._refreshed_at
            if age <= max_age_seconds:
                update_cache_age(self.name, age)
                return self._entries
        return await self._refresh(force=max_age_seconds <= 0)

    async def _refresh(self, *, force: bool) -> dict[K, CacheEntry[V]]:
        task = self._inflight
        if force or task is None or task.done():
            task = asyncio.create_task(self._load(), name=f"cache_refresh:{self.name}")
            task.add_done_callback(consume_result)
            self._inflight = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if not self._has_value:
                raise
            logger.warning(f"{LOG_TAG_CACHE} {self.name}: serving stale data after failed refresh")
            return self._entries

    async def _load(self) -> dict[K, CacheEntry[V]]:
        generation = next(self._generations)
        try:
            data = await self._fetch_all()
        except Exception as e:
            record_cache_refresh(self.name, success=False)
            logger.warning(f"{LOG_TAG_CACHE} {self.name} refresh failed: {e}")
            raise

        now = self._clock()
        entries = {key: CacheEntry(list(values), now) for key, values in data.items()}
        record_cache_refresh(self.name, success=True)

        if generation > self._installed_generation:
            self._entries = entries
            self._refreshed_at = now
            self._has_value = True
            self._installed_generation = generation
            logger.debug(f"{LOG_TAG_CACHE} {self.name} refreshed: {len(entries)} keys")
        else:
            logger.debug(f"{LOG_TAG_CACHE} {self.name}: dropped out-of-order refresh result")
            return self._entries
        return entries
