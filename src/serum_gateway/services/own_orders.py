"""
Own-Order Index.

Per-market snapshot of the wallet's resting orders, keyed by exchange order
id. Snapshots are replaced wholesale by a refresh and have no TTL of their
own: readers either accept what is there or ask for a refresh.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from serum_gateway.domain.models import Market, OwnOrder
from serum_gateway.observability.logging import get_logger
from serum_gateway.observability.metrics import record_cache_refresh
from serum_gateway.utils.tasks import BackgroundTasks

logger = get_logger(__name__)

OrderLoader = Callable[[Market], Awaitable[list[OwnOrder]]]


@dataclass(slots=True)
class OwnOrderSnapshot:
    orders: dict[str, OwnOrder] = field(default_factory=dict)
    fetched_at: float | None = None


class OwnOrderIndex:
    def __init__(
        self,
        load_orders: OrderLoader,
        markets: Iterable[Market],
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._load_orders = load_orders
        self._markets = list(markets)
        self._clock = clock
        self._snapshots: dict[str, OwnOrderSnapshot] = {}
        self._generations = itertools.count(1)
        self._installed: dict[str, int] = {}
        self._scheduled: dict[str, asyncio.Task] = {}
        self._background = BackgroundTasks("own_orders")

    @property
    def markets(self) -> list[Market]:
        return list(self._markets)

    def snapshot(self, market: Market) -> dict[str, OwnOrder]:
        snap = self._snapshots.get(market.key)
        return dict(snap.orders) if snap else {}

    def fetched_at(self, market: Market) -> float | None:
        snap = self._snapshots.get(market.key)
        return snap.fetched_at if snap else None

    async def refresh(self, market: Market) -> dict[str, OwnOrder]:
        """Load the market's resting orders and replace its snapshot."""
        generation = next(self._generations)
        fetched_at = self._clock()
        try:
            orders = await self._load_orders(market)
        except Exception as e:
            record_cache_refresh("own_orders", success=False)
            logger.warning(f"Own orders refresh failed for {market.key}: {e}")
            raise
        record_cache_refresh("own_orders", success=True)

        by_id = {order.order_id: order for order in orders}
        if generation > self._installed.get(market.key, 0):
            self._snapshots[market.key] = OwnOrderSnapshot(by_id, fetched_at)
            self._installed[market.key] = generation
        return dict(by_id)

    async def refresh_all(self) -> dict[str, OwnOrder]:
        """Refresh every market concurrently; returns the union of all snapshots."""
        results = await asyncio.gather(*(self.refresh(market) for market in self._markets))
        merged: dict[str, OwnOrder] = {}
        for orders in results:
            merged.update(orders)
        return merged

    def lookup(self, order_id_or_client_id: str, market: Market) -> OwnOrder | None:
        """
        Find an order by exchange order id, falling back to a client id scan.

        Returns None when the order is not in the current snapshot.
        """
        snap = self._snapshots.get(market.key)
        if snap is None:
            return None
        key = str(order_id_or_client_id)
        order = snap.orders.get(key)
        if order is not None:
            return order
        for candidate in snap.orders.values():
            if candidate.client_order_id and candidate.client_order_id == key:
                return candidate
        return None

    def invalidate(self, market: Market) -> None:
        self._snapshots.pop(market.key, None)
        # Results of refreshes started before now must not resurrect the old state
        self._installed[market.key] = next(self._generations)

    def schedule_refresh(self, market: Market) -> asyncio.Task:
        """Refresh in the background; joins a scheduled refresh that is still running."""
        task = self._scheduled.get(market.key)
        if task is None or task.done():
            task = self._background.spawn(self.refresh(market), name=f"own_orders_refresh:{market.key}")
            self._scheduled[market.key] = task
        return task

    async def close(self) -> None:
        await self._background.close()
        self._scheduled.clear()
