"""
Unit tests for OwnOrderIndex.

Snapshots are replaced wholesale, lookups fall back from order id to client
id, and a refresh that started earlier never installs over a later one.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from serum_gateway.domain.models import Market, OwnOrder, Side
from serum_gateway.services.own_orders import OwnOrderIndex
from tests.mocks import FakeClock

XY = Market("X", "Y")
SOLY = Market("SOL", "Y")


def make_order(order_id: str, client_id: str | None = None, market: Market = XY, account: str = "OO_A") -> OwnOrder:
    return OwnOrder(
        order_id=order_id,
        client_order_id=client_id,
        market_key=market.key,
        side=Side.BUY,
        price=Decimal("1.5"),
        quantity=Decimal("10"),
        open_orders_address=account,
    )


class ScriptedLoader:
    def __init__(self, orders: dict[str, list[OwnOrder]] | None = None):
        self.orders = orders or {}
        self.calls: list[str] = []

    async def __call__(self, market: Market) -> list[OwnOrder]:
        self.calls.append(market.key)
        await asyncio.sleep(0)
        return list(self.orders.get(market.key, []))


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_installs_snapshot_keyed_by_order_id(self):
        clock = FakeClock()
        loader = ScriptedLoader({XY.key: [make_order("1", "c1"), make_order("2", "c2")]})
        index = OwnOrderIndex(loader, [XY], clock=clock)

        orders = await index.refresh(XY)

        assert set(orders) == {"1", "2"}
        assert set(index.snapshot(XY)) == {"1", "2"}
        assert index.fetched_at(XY) == clock.now

    @pytest.mark.asyncio
    async def test_refresh_replaces_snapshot_wholesale(self):
        loader = ScriptedLoader({XY.key: [make_order("1"), make_order("2")]})
        index = OwnOrderIndex(loader, [XY], clock=FakeClock())
        await index.refresh(XY)

        loader.orders[XY.key] = [make_order("2")]
        await index.refresh(XY)

        assert set(index.snapshot(XY)) == {"2"}

    @pytest.mark.asyncio
    async def test_refresh_all_merges_markets(self):
        loader = ScriptedLoader({XY.key: [make_order("1")], SOLY.key: [make_order("9", market=SOLY)]})
        index = OwnOrderIndex(loader, [XY, SOLY], clock=FakeClock())

        orders = await index.refresh_all()

        assert set(orders) == {"1", "9"}
        assert sorted(loader.calls) == sorted([XY.key, SOLY.key])

    @pytest.mark.asyncio
    async def test_earlier_refresh_finishing_last_is_not_installed(self):
        gates = [asyncio.Event(), asyncio.Event()]
        snapshots = [[make_order("old")], [make_order("new")]]
        calls = 0

        async def loader(market: Market) -> list[OwnOrder]:
            nonlocal calls
            index_ = calls
            calls += 1
            await gates[index_].wait()
            return snapshots[index_]

        index = OwnOrderIndex(loader, [XY], clock=FakeClock())
        slow = asyncio.create_task(index.refresh(XY))
        await asyncio.sleep(0)
        fast = asyncio.create_task(index.refresh(XY))
        await asyncio.sleep(0)

        gates[1].set()
        await fast
        gates[0].set()
        await slow

        assert set(index.snapshot(XY)) == {"new"}

    @pytest.mark.asyncio
    async def test_invalidate_drops_snapshot_and_in_flight_result(self):
        gate = asyncio.Event()

        async def loader(market: Market) -> list[OwnOrder]:
            await gate.wait()
            return [make_order("1")]

        index = OwnOrderIndex(loader, [XY], clock=FakeClock())
        pending = asyncio.create_task(index.refresh(XY))
        await asyncio.sleep(0)

        index.invalidate(XY)
        gate.set()
        await pending

        assert index.snapshot(XY) == {}
        assert index.fetched_at(XY) is None


class TestLookup:
    @pytest.mark.asyncio
    async def test_lookup_by_order_id_then_client_id(self):
        loader = ScriptedLoader({XY.key: [make_order("1", "555")]})
        index = OwnOrderIndex(loader, [XY], clock=FakeClock())
        await index.refresh(XY)

        assert index.lookup("1", XY).order_id == "1"
        assert index.lookup("555", XY).order_id == "1"
        assert index.lookup("404", XY) is None

    def test_lookup_without_snapshot_is_none(self):
        index = OwnOrderIndex(ScriptedLoader(), [XY], clock=FakeClock())
        assert index.lookup("1", XY) is None


class TestScheduledRefresh:
    @pytest.mark.asyncio
    async def test_schedule_refresh_joins_running_refresh(self):
        loader = ScriptedLoader({XY.key: [make_order("1")]})
        index = OwnOrderIndex(loader, [XY], clock=FakeClock())

        first = index.schedule_refresh(XY)
        second = index.schedule_refresh(XY)
        assert first is second

        await first
        assert loader.calls == [XY.key]
        assert set(index.snapshot(XY)) == {"1"}
        await index.close()

    @pytest.mark.asyncio
    async def test_failed_background_refresh_does_not_raise(self):
        async def loader(market: Market) -> list[OwnOrder]:
            raise RuntimeError("boom")

        index = OwnOrderIndex(loader, [XY], clock=FakeClock())
        task = index.schedule_refresh(XY)
        await asyncio.gather(task, return_exceptions=True)

        assert index.snapshot(XY) == {}
        await index.close()
