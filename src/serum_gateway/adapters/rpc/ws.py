"""
JSON-RPC pub/sub over a single websocket.

Subscriptions are tracked locally so they can be re-established after a
reconnect; notifications are routed by the server-assigned subscription id.
"""

from __future__ import annotations

import asyncio
import itertools
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import websockets

from serum_gateway.domain.errors import NetworkUnavailableError, RpcRequestError
from serum_gateway.observability.logging import get_logger
from serum_gateway.ports.rpc import Subscription
from serum_gateway.utils import json_dumps, json_loads

logger = get_logger(__name__)

NotificationHandler = Callable[[dict[str, Any]], None]


def get_reconnect_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_factor: float = 0.15,
) -> float:
    """Exponential backoff with +/- jitter_factor random jitter."""
    delay = min(max_delay, base_delay * (2**attempt))
    jitter = delay * jitter_factor * (random.random() * 2 - 1)
    return max(0, delay + jitter)


@dataclass(slots=True, eq=False)
class _ActiveSubscription:
    method: str
    unsubscribe_method: str
    params: list[Any]
    handler: NotificationHandler
    one_shot: bool = False
    server_id: int | None = None
    closed: bool = field(default=False)


class WsSubscription(Subscription):
    def __init__(self, client: WsSubscriptionClient, active: _ActiveSubscription):
        self._client = client
        self._active = active

    @property
    def server_id(self) -> int | None:
        return self._active.server_id

    async def close(self) -> None:
        await self._client.unsubscribe(self._active)


class WsSubscriptionClient:
    def __init__(
        self,
        url: str,
        *,
        request_timeout_seconds: float = 10.0,
        reconnect_delay_seconds: float = 1.0,
        max_reconnect_delay_seconds: float = 30.0,
    ):
        self.url = url
        self._request_timeout = request_timeout_seconds
        self._reconnect_delay = reconnect_delay_seconds
        self._max_reconnect_delay = max_reconnect_delay_seconds
        self._ids = itertools.count(1)
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._connected = asyncio.Event()
        self._closing = False
        self._pending: dict[int, asyncio.Future] = {}
        # Subscribe request id -> subscription awaiting its server id
        self._subscribing: dict[int, _ActiveSubscription] = {}
        self._active: list[_ActiveSubscription] = []
        self._by_server_id: dict[int, _ActiveSubscription] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._closing = False
            self._task = asyncio.create_task(self._run(), name="rpc_ws")
            logger.info(f"RPC websocket task started for {self.url}")

    async def close(self) -> None:
        self._closing = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self._fail_pending(NetworkUnavailableError("Websocket closed"))
        self._active.clear()
        self._by_server_id.clear()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def subscribe(
        self,
        method: str,
        unsubscribe_method: str,
        params: list[Any],
        handler: NotificationHandler,
        *,
        one_shot: bool = False,
    ) -> WsSubscription:
        await self.start()
        active = _ActiveSubscription(method, unsubscribe_method, params, handler, one_shot)
        self._active.append(active)
        try:
            await self._send_subscribe(active)
        except BaseException:
            self._forget(active)
            raise
        return WsSubscription(self, active)

    async def unsubscribe(self, active: _ActiveSubscription) -> None:
        if active.closed:
            return
        server_id = active.server_id
        self._forget(active)
        if server_id is None or self._ws is None or not self.is_connected:
            return
        try:
            await self._ws.send(
                json_dumps(
                    {
                        "jsonrpc": "2.0",
                        "id": next(self._ids),
                        "method": active.unsubscribe_method,
                        "params": [server_id],
                    }
                )
            )
        except Exception as e:
            logger.debug(f"{active.unsubscribe_method}({server_id}) failed: {e}")

    def _forget(self, active: _ActiveSubscription) -> None:
        active.closed = True
        if active in self._active:
            self._active.remove(active)
        if active.server_id is not None and self._by_server_id.get(active.server_id) is active:
            del self._by_server_id[active.server_id]

    async def _send_subscribe(self, active: _ActiveSubscription) -> None:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=self._request_timeout)
        except asyncio.TimeoutError:
            raise NetworkUnavailableError(f"{active.method}: websocket not connected") from None

        request_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._subscribing[request_id] = active
        try:
            await self._ws.send(
                json_dumps({"jsonrpc": "2.0", "id": request_id, "method": active.method, "params": active.params})
            )
            await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError:
            raise NetworkUnavailableError(f"{active.method}: no subscription confirmation") from None
        except websockets.ConnectionClosed as e:
            raise NetworkUnavailableError(f"{active.method}: websocket closed: {e}") from e
        finally:
            self._pending.pop(request_id, None)
            self._subscribing.pop(request_id, None)

    async def _resubscribe_all(self) -> None:
        for active in list(self._active):
            if active.closed:
                continue
            active.server_id = None
            try:
                await self._send_subscribe(active)
            except Exception as e:
                logger.warning(f"Resubscribing {active.method} failed: {e}")

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            resubscriber: asyncio.Task | None = None
            try:
                async with websockets.connect(self.url, ping_interval=15, ping_timeout=10) as ws:
                    self._ws = ws
                    self._by_server_id.clear()
                    self._connected.set()
                    if attempt > 0:
                        logger.info(f"RPC websocket reconnected after {attempt} attempts")
                    attempt = 0
                    if self._active:
                        resubscriber = asyncio.create_task(self._resubscribe_all(), name="rpc_ws_resubscribe")
                    async for raw in ws:
                        self._dispatch(raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"RPC websocket error: {e}")
            finally:
                self._connected.clear()
                self._ws = None
                if resubscriber is not None:
                    resubscriber.cancel()
                self._fail_pending(NetworkUnavailableError("Websocket disconnected"))

            if self._closing:
                break
            delay = get_reconnect_delay(attempt, self._reconnect_delay, self._max_reconnect_delay)
            logger.debug(f"RPC websocket reconnecting after {delay:.1f}s (attempt {attempt + 1})")
            await asyncio.sleep(delay)
            attempt += 1

    def _fail_pending(self, exc: Exception) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = json_loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON websocket frame")
            return
        if not isinstance(message, dict):
            return

        if "id" in message and message.get("id") is not None:
            future = self._pending.get(message["id"])
            if future is None or future.done():
                return
            if message.get("error"):
                error = message["error"]
                future.set_exception(RpcRequestError(str(error.get("message", error)), code=error.get("code")))
                return
            active = self._subscribing.get(message["id"])
            if active is not None:
                # Register before any later frame is dispatched so no notification is dropped
                try:
                    server_id = int(message.get("result"))
                except (TypeError, ValueError):
                    future.set_exception(RpcRequestError(f"{active.method} returned {message.get('result')!r}"))
                    return
                if not active.closed:
                    active.server_id = server_id
                    self._by_server_id[server_id] = active
            future.set_result(message.get("result"))
            return

        params = message.get("params")
        if not isinstance(params, dict):
            return
        active = self._by_server_id.get(params.get("subscription"))
        if active is None:
            return
        if active.one_shot:
            # Server drops one-shot subscriptions after the first notification
            self._forget(active)
        try:
            active.handler(params.get("result") or {})
        except Exception as e:
            logger.warning(f"{active.method} notification handler failed: {e}")
