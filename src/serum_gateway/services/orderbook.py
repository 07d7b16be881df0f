"""
Live L2 order books.

The first request for a market loads both book sides once and subscribes to
account changes on the bids and asks accounts; every change is decoded by
the SDK and replaces that side.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from serum_gateway.domain.models import L2OrderBook, MarketInfo, OrderBookSide
from serum_gateway.observability.logging import get_logger
from serum_gateway.ports.dex import DexSdkPort
from serum_gateway.ports.rpc import RpcPort, Subscription

logger = get_logger(__name__)

BIDS = "bids"
ASKS = "asks"


class OrderBookStream:
    def __init__(
        self,
        rpc: RpcPort,
        sdk: DexSdkPort,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._rpc = rpc
        self._sdk = sdk
        self._clock = clock
        self._books: dict[str, dict[str, OrderBookSide]] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def is_subscribed(self, market_key: str) -> bool:
        return market_key in self._subscriptions

    async def get(self, info: MarketInfo) -> L2OrderBook:
        valid_at = self._clock()
        await self.subscribe(info)
        sides = self._books[info.market.key]
        bids, asks = sides[BIDS], sides[ASKS]
        return L2OrderBook(
            market=info.market,
            bids=list(bids.levels),
            asks=list(asks.levels),
            valid_at=valid_at,
            received_at=min(bids.received_at, asks.received_at),
        )

    async def subscribe(self, info: MarketInfo) -> None:
        key = info.market.key
        if key in self._subscriptions:
            return
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._subscriptions:
                return

            bids, asks = await self._sdk.load_order_book(info)
            now = self._clock()
            self._books[key] = {
                BIDS: OrderBookSide(bids, now),
                ASKS: OrderBookSide(asks, now),
            }

            subscriptions: list[Subscription] = []
            if info.bids_address and info.asks_address:
                try:
                    for side, address in ((BIDS, info.bids_address), (ASKS, info.asks_address)):
                        subscriptions.append(
                            await self._rpc.subscribe_account_change(address, self._on_change(info, side))
                        )
                except Exception:
                    # Both sides or neither; the next request retries from scratch
                    await self._close_all(subscriptions)
                    raise
            else:
                logger.warning(f"Market {key} has no book addresses; order book will not stream updates")
            self._subscriptions[key] = subscriptions
            logger.info(f"Subscribed to order book updates for {key}")

    def _on_change(self, info: MarketInfo, side: str) -> Callable[[bytes, int | None], None]:
        def callback(data: bytes, slot: int | None) -> None:
            try:
                levels = self._sdk.decode_order_book(info, data)
            except Exception as e:
                logger.warning(f"Could not decode {side} update for {info.market.key} (slot {slot}): {e}")
                return
            self._books[info.market.key][side] = OrderBookSide(levels, self._clock())

        return callback

    async def _close_all(self, subscriptions: list[Subscription]) -> None:
        for subscription in subscriptions:
            try:
                await subscription.close()
            except Exception as e:
                logger.debug(f"Closing order book subscription failed: {e}")

    async def close(self) -> None:
        for subscriptions in self._subscriptions.values():
            await self._close_all(subscriptions)
        self._subscriptions.clear()
        self._books.clear()
