"""
JSON-RPC over HTTP.

One pooled aiohttp session per client. HTTP 429 is retried with doubling
backoff; transport failures surface as NetworkUnavailableError.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import aiohttp

from serum_gateway.domain.errors import NetworkUnavailableError, RpcRequestError
from serum_gateway.observability.logging import get_logger
from serum_gateway.utils import json_dumps, json_loads

logger = get_logger(__name__)


class JsonRpcHttpClient:
    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        max_rate_limit_retries: int = 5,
        initial_backoff_seconds: float = 0.5,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self._timeout_seconds = timeout_seconds
        self._max_rate_limit_retries = max_rate_limit_retries
        self._initial_backoff_seconds = initial_backoff_seconds
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def initialize(self) -> None:
        """Create the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(
                limit=100,
                limit_per_host=20,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
            )
            self._owns_session = True
            logger.info(f"RPC HTTP session initialized for {self.url}")

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Make a JSON-RPC call and return its `result`.

        Raises:
            NetworkUnavailableError: transport failure, HTTP error status or
                rate limit still exceeded after all retries.
            RpcRequestError: the node returned a JSON-RPC error object.
        """
        if self._session is None:
            await self.initialize()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        body = json_dumps(payload)
        backoff = self._initial_backoff_seconds

        for attempt in range(self._max_rate_limit_retries + 1):
            try:
                async with self._session.post(
                    self.url, data=body, headers={"Content-Type": "application/json"}
                ) as resp:
                    if resp.status == 429:
                        if attempt >= self._max_rate_limit_retries:
                            raise NetworkUnavailableError(
                                f"{method}: rate limit exceeded after retries",
                                details={"status": 429},
                            )
                        logger.warning(
                            f"Server responded with 429 Too Many Requests. Retrying {method} after "
                            f"{backoff:.1f}s (attempt {attempt + 1}/{self._max_rate_limit_retries})"
                        )
                        await asyncio.sleep(backoff)
                        backoff *= 2
                        continue

                    text = await resp.text()
                    if resp.status >= 400:
                        raise NetworkUnavailableError(
                            f"{method}: HTTP {resp.status} {text[:200]}",
                            details={"status": resp.status},
                        )
            except aiohttp.ClientError as e:
                raise NetworkUnavailableError(f"{method}: connection error: {e}") from e
            except asyncio.TimeoutError as e:
                raise NetworkUnavailableError(f"{method}: request timed out") from e

            return self._parse(method, text)

        raise NetworkUnavailableError(f"{method}: max retries exceeded")

    @staticmethod
    def _parse(method: str, text: str) -> Any:
        try:
            data = json_loads(text)
        except ValueError as e:
            raise NetworkUnavailableError(f"{method}: invalid JSON response") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            raise RpcRequestError(
                f"{method}: {error.get('message', error)}",
                code=error.get("code"),
                details={"data": error.get("data")},
            )
        if not isinstance(data, dict) or "result" not in data:
            raise NetworkUnavailableError(f"{method}: malformed JSON-RPC response")
        return data["result"]
