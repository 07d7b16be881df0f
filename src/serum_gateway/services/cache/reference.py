"""
Block reference cache.

Holds the single recent block reference used to sign transactions, with a
hard TTL (refresh awaited) and a soft TTL at half of it (refresh started in
the background, stale value served).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace

from serum_gateway.domain.models import BlockReference
from serum_gateway.observability.logging import LOG_TAG_CACHE, get_logger
from serum_gateway.observability.metrics import record_cache_refresh, update_cache_age
from serum_gateway.utils.tasks import consume_result

logger = get_logger(__name__)

CACHE_NAME = "block_reference"


class BlockReferenceCache:
    def __init__(
        self,
        fetch: Callable[[], Awaitable[BlockReference]],
        ttl_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._clock = clock
        self.hard_ttl_seconds = float(ttl_seconds)
        self.soft_ttl_seconds = self.hard_ttl_seconds / 2
        self._current: BlockReference | None = None
        self._refresh_task: asyncio.Task[BlockReference] | None = None

    @property
    def current(self) -> BlockReference | None:
        return self._current

    def age(self) -> float | None:
        if self._current is None:
            return None
        return self._clock() - self._current.fetched_at

    async def get(self) -> BlockReference:
        """
        Return a usable block reference.

        Older than the hard TTL (or never fetched): refresh and wait.
        Older than the soft TTL: start a background refresh, return current.
        A failed refresh keeps the previous value; it only propagates when
        there is nothing to fall back to.
        """
        current = self._current
        age = self.age()

        if current is None or age > self.hard_ttl_seconds:
            return await self._refresh_and_wait()

        if age > self.soft_ttl_seconds:
            self._ensure_refresh()

        update_cache_age(CACHE_NAME, age)
        return current

    async def refresh(self) -> BlockReference:
        """Force a refresh (joins one already in flight)."""
        return await self._refresh_and_wait()

    async def _refresh_and_wait(self) -> BlockReference:
        task = self._ensure_refresh()
        try:
            # Shielded: a caller timing out must not cancel the shared refresh
            return await asyncio.shield(task)
        except Exception:
            if self._current is None:
                raise
            logger.warning(
                f"{LOG_TAG_CACHE} Serving expired block reference "
                f"(age={self.age():.1f}s) after failed refresh"
            )
            return self._current

    def _ensure_refresh(self) -> asyncio.Task[BlockReference]:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._do_refresh(), name="block_reference_refresh")
            self._refresh_task.add_done_callback(consume_result)
        return self._refresh_task

    async def _do_refresh(self) -> BlockReference:
        try:
            fetched = await self._fetch()
        except Exception as e:
            record_cache_refresh(CACHE_NAME, success=False)
            logger.warning(f"{LOG_TAG_CACHE} Block reference refresh failed: {e}")
            raise

        fresh = replace(fetched, fetched_at=self._clock())
        self._current = fresh
        record_cache_refresh(CACHE_NAME, success=True)
        logger.debug(f"{LOG_TAG_CACHE} Block reference refreshed: {fresh.value}")
        return fresh
