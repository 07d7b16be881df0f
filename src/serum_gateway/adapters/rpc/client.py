"""
Solana RPC adapter implementing RpcPort.

HTTP JSON-RPC for requests, a websocket for signature and account
subscriptions.
"""

from __future__ import annotations

import base64
import time
from typing import Any

from serum_gateway.adapters.rpc.http import JsonRpcHttpClient
from serum_gateway.adapters.rpc.ws import WsSubscriptionClient
from serum_gateway.config.settings import RpcSettings
from serum_gateway.domain.errors import NetworkUnavailableError
from serum_gateway.domain.models import BlockReference, SignatureStatus
from serum_gateway.observability.logging import get_logger
from serum_gateway.ports.rpc import AccountCallback, RpcPort, SignatureCallback, Subscription

logger = get_logger(__name__)

COMMITMENT_LEVELS = {"processed": 0, "confirmed": 1, "finalized": 2}


def parse_signature_status(value: dict[str, Any] | None, commitment: str = "confirmed") -> SignatureStatus:
    """Map one getSignatureStatuses entry to a SignatureStatus."""
    if not value:
        return SignatureStatus.pending()
    if value.get("err"):
        return SignatureStatus.failed(value["err"])

    reached = value.get("confirmationStatus")
    if reached is not None:
        required = COMMITMENT_LEVELS.get(commitment, 1)
        if COMMITMENT_LEVELS.get(reached, -1) >= required:
            return SignatureStatus.confirmed()
        return SignatureStatus.pending()

    # Older nodes: confirmations is null once rooted
    confirmations = value.get("confirmations")
    if confirmations is None or confirmations > 0:
        return SignatureStatus.confirmed()
    return SignatureStatus.pending()


def decode_account_data(data: Any) -> bytes:
    """accountNotification data arrives as [payload, "base64"]."""
    if isinstance(data, list) and len(data) == 2 and data[1] == "base64":
        return base64.b64decode(data[0])
    if isinstance(data, str):
        return base64.b64decode(data)
    raise ValueError(f"Unsupported account data encoding: {data!r:.80}")


class SolanaRpcClient(RpcPort):
    def __init__(
        self,
        settings: RpcSettings,
        *,
        http: JsonRpcHttpClient | None = None,
        ws: WsSubscriptionClient | None = None,
    ):
        self._settings = settings
        self._commitment = settings.commitment
        self._http = http or JsonRpcHttpClient(
            settings.url,
            timeout_seconds=settings.request_timeout_seconds,
            max_rate_limit_retries=settings.max_rate_limit_retries,
            initial_backoff_seconds=settings.rate_limit_initial_backoff_seconds,
        )
        self._ws = ws or WsSubscriptionClient(
            settings.resolved_ws_url,
            request_timeout_seconds=settings.request_timeout_seconds,
            reconnect_delay_seconds=settings.ws_reconnect_delay_seconds,
            max_reconnect_delay_seconds=settings.ws_max_reconnect_delay_seconds,
        )

    async def initialize(self) -> None:
        await self._http.initialize()
        await self._ws.start()

    async def close(self) -> None:
        await self._ws.close()
        await self._http.close()

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        return await self._http.call(method, params)

    async def submit_raw_transaction(self, raw: bytes, *, skip_preflight: bool = True) -> str:
        encoded = base64.b64encode(raw).decode("ascii")
        signature = await self._http.call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self._commitment,
                },
            ],
        )
        if not isinstance(signature, str):
            raise NetworkUnavailableError(f"sendTransaction returned {signature!r}")
        return signature

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        result = await self._http.call("getSignatureStatuses", [[signature]])
        values = (result or {}).get("value") or [None]
        return parse_signature_status(values[0], self._commitment)

    async def subscribe_signature(self, signature: str, callback: SignatureCallback) -> Subscription:
        def on_notification(result: dict[str, Any]) -> None:
            value = result.get("value") or {}
            if value.get("err"):
                callback(SignatureStatus.failed(value["err"]))
            else:
                callback(SignatureStatus.confirmed())

        return await self._ws.subscribe(
            "signatureSubscribe",
            "signatureUnsubscribe",
            [signature, {"commitment": self._commitment}],
            on_notification,
            one_shot=True,
        )

    async def subscribe_account_change(self, address: str, callback: AccountCallback) -> Subscription:
        def on_notification(result: dict[str, Any]) -> None:
            value = result.get("value") or {}
            slot = (result.get("context") or {}).get("slot")
            callback(decode_account_data(value.get("data")), slot)

        return await self._ws.subscribe(
            "accountSubscribe",
            "accountUnsubscribe",
            [address, {"encoding": "base64", "commitment": self._commitment}],
            on_notification,
        )

    async def get_recent_block_reference(self) -> BlockReference:
        result = await self._http.call("getLatestBlockhash", [{"commitment": self._commitment}])
        blockhash = ((result or {}).get("value") or {}).get("blockhash")
        if not blockhash:
            raise NetworkUnavailableError(f"getLatestBlockhash returned {result!r}")
        return BlockReference(value=blockhash, fetched_at=time.monotonic())

    async def get_balance(self, address: str) -> int:
        result = await self._http.call("getBalance", [address, {"commitment": self._commitment}])
        return int((result or {}).get("value") or 0)
