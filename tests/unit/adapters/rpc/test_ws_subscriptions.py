"""
Unit tests for WsSubscriptionClient message routing (no real socket).
"""

from __future__ import annotations

import asyncio
import json

import pytest

from serum_gateway.adapters.rpc.ws import WsSubscriptionClient, _ActiveSubscription, get_reconnect_delay
from serum_gateway.domain.errors import RpcRequestError


class FakeSocket:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))


async def _until(predicate, rounds: int = 20) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)


def connected_client() -> tuple[WsSubscriptionClient, FakeSocket]:
    client = WsSubscriptionClient("ws://rpc.test", request_timeout_seconds=1)
    socket = FakeSocket()
    client._ws = socket
    client._connected.set()
    # Pretend the connection loop is already running
    client._task = asyncio.get_running_loop().create_future()
    return client, socket


def test_reconnect_delay_grows_and_caps():
    assert 0.85 <= get_reconnect_delay(0, 1.0, 30.0) <= 1.15
    assert 3.4 <= get_reconnect_delay(2, 1.0, 30.0) <= 4.6
    assert get_reconnect_delay(10, 1.0, 30.0) <= 30.0 * 1.15


@pytest.mark.asyncio
async def test_subscribe_confirms_and_routes_notifications():
    client, socket = connected_client()
    received: list[dict] = []

    pending = asyncio.create_task(
        client.subscribe("accountSubscribe", "accountUnsubscribe", ["ADDR"], received.append)
    )
    await _until(lambda: socket.sent)
    request = socket.sent[0]
    client._dispatch(json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": 42}))
    subscription = await pending

    assert subscription.server_id == 42
    client._dispatch(
        json.dumps({"jsonrpc": "2.0", "method": "accountNotification", "params": {"subscription": 42, "result": {"value": 1}}})
    )
    assert received == [{"value": 1}]

    await subscription.close()
    assert socket.sent[-1]["method"] == "accountUnsubscribe"
    assert socket.sent[-1]["params"] == [42]


@pytest.mark.asyncio
async def test_notification_right_behind_confirmation_is_delivered():
    """
    GIVEN: the first notification is dispatched in the same read burst as the
           subscribe confirmation
    WHEN: the subscribing coroutine has not resumed yet
    THEN: the notification still reaches the handler
    """
    client, socket = connected_client()
    received: list[dict] = []
    pending = asyncio.create_task(
        client.subscribe("signatureSubscribe", "signatureUnsubscribe", ["sig"], received.append, one_shot=True)
    )
    await _until(lambda: socket.sent)

    client._dispatch(json.dumps({"jsonrpc": "2.0", "id": socket.sent[0]["id"], "result": 9}))
    client._dispatch(
        json.dumps({"method": "signatureNotification", "params": {"subscription": 9, "result": {"value": {"err": None}}}})
    )
    subscription = await pending

    assert received == [{"value": {"err": None}}]
    assert subscription.server_id == 9


@pytest.mark.asyncio
async def test_non_integer_subscription_id_raises():
    client, socket = connected_client()
    pending = asyncio.create_task(client.subscribe("accountSubscribe", "accountUnsubscribe", ["ADDR"], print))
    await _until(lambda: socket.sent)
    client._dispatch(json.dumps({"id": socket.sent[0]["id"], "result": "not-an-id"}))

    with pytest.raises(RpcRequestError):
        await pending
    assert client._active == []

@pytest.mark.asyncio
async def test_one_shot_subscription_is_forgotten_after_first_notification():
    client, _ = connected_client()
    received: list[dict] = []
    active = _ActiveSubscription("signatureSubscribe", "signatureUnsubscribe", ["sig"], received.append, one_shot=True)
    active.server_id = 7
    client._active.append(active)
    client._by_server_id[7] = active

    notification = json.dumps({"method": "signatureNotification", "params": {"subscription": 7, "result": {"value": {"err": None}}}})
    client._dispatch(notification)
    client._dispatch(notification)

    assert len(received) == 1
    assert active.closed is True


@pytest.mark.asyncio
async def test_subscribe_error_response_raises():
    client, socket = connected_client()
    pending = asyncio.create_task(client.subscribe("accountSubscribe", "accountUnsubscribe", ["BAD"], print))
    await _until(lambda: socket.sent)
    client._dispatch(json.dumps({"id": socket.sent[0]["id"], "error": {"code": -32602, "message": "Invalid param"}}))

    with pytest.raises(RpcRequestError):
        await pending
    assert client._active == []
