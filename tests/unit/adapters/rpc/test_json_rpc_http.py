"""
Unit tests for JsonRpcHttpClient.

The aiohttp session is mocked; responses are scripted per call.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from serum_gateway.adapters.rpc.http import JsonRpcHttpClient
from serum_gateway.domain.errors import NetworkUnavailableError, RpcRequestError


def response(status: int, body: dict | str) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=body if isinstance(body, str) else json.dumps(body))

    context = AsyncMock()
    context.__aenter__ = AsyncMock(return_value=mock_response)
    context.__aexit__ = AsyncMock(return_value=None)
    return context


def make_client(*responses, retries: int = 5) -> tuple[JsonRpcHttpClient, MagicMock]:
    session = MagicMock()
    session.post = MagicMock(side_effect=list(responses))
    client = JsonRpcHttpClient(
        "http://rpc.test",
        max_rate_limit_retries=retries,
        initial_backoff_seconds=0,
        session=session,
    )
    return client, session


@pytest.mark.asyncio
async def test_call_returns_result_and_sends_json_rpc_payload():
    client, session = make_client(response(200, {"jsonrpc": "2.0", "id": 1, "result": {"value": 5}}))

    result = await client.call("getBalance", ["Owner"])

    assert result == {"value": 5}
    payload = json.loads(session.post.call_args.kwargs["data"])
    assert payload["method"] == "getBalance"
    assert payload["params"] == ["Owner"]
    assert payload["jsonrpc"] == "2.0"


@pytest.mark.asyncio
async def test_rate_limit_is_retried():
    client, session = make_client(
        response(429, "Too Many Requests"),
        response(429, "Too Many Requests"),
        response(200, {"jsonrpc": "2.0", "id": 1, "result": "ok"}),
    )

    assert await client.call("getSlot") == "ok"
    assert session.post.call_count == 3


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_retries():
    client, session = make_client(*(response(429, "slow down") for _ in range(3)), retries=2)

    with pytest.raises(NetworkUnavailableError):
        await client.call("getSlot")
    assert session.post.call_count == 3


@pytest.mark.asyncio
async def test_json_rpc_error_object_raises_rpc_error():
    client, _ = make_client(
        response(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32002, "message": "Blockhash not found"}})
    )

    with pytest.raises(RpcRequestError) as exc_info:
        await client.call("sendTransaction", ["AAA"])

    assert exc_info.value.code == -32002
    assert "Blockhash not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_http_error_status_is_network_error():
    client, _ = make_client(response(503, "unavailable"))

    with pytest.raises(NetworkUnavailableError):
        await client.call("getSlot")


@pytest.mark.asyncio
async def test_connection_error_is_network_error():
    session = MagicMock()
    session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
    client = JsonRpcHttpClient("http://rpc.test", session=session)

    with pytest.raises(NetworkUnavailableError):
        await client.call("getSlot")
