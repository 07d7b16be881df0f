"""
RPC Port: Abstract interface over the network's RPC primitives.

Implementations translate transport failures into NetworkUnavailableError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from serum_gateway.domain.models import BlockReference, SignatureStatus

SignatureCallback = Callable[[SignatureStatus], None]
AccountCallback = Callable[[bytes, int | None], None]


class Subscription(ABC):
    """Handle returned by subscribe_* calls."""

    @abstractmethod
    async def close(self) -> None:
        """Unsubscribe. Must be safe to call more than once."""
        ...


class RpcPort(ABC):
    """
    Network RPC operations used by the transaction engine and caches.

    All methods are async.
    """

    @abstractmethod
    async def submit_raw_transaction(self, raw: bytes, *, skip_preflight: bool = True) -> str:
        """
        Submit serialized signed bytes.

        Returns the submission id (transaction signature).
        Submitting identical bytes again is idempotent on the network side.
        """
        ...

    @abstractmethod
    async def get_signature_status(self, signature: str) -> SignatureStatus:
        """Poll the confirmation status of a signature."""
        ...

    @abstractmethod
    async def subscribe_signature(
        self, signature: str, callback: SignatureCallback
    ) -> Subscription:
        """
        Register a one-shot callback fired when the signature is confirmed.

        The callback receives CONFIRMED or FAILED(err).
        """
        ...

    @abstractmethod
    async def subscribe_account_change(
        self, address: str, callback: AccountCallback
    ) -> Subscription:
        """Register a callback fired with (account data, slot) on every change."""
        ...

    @abstractmethod
    async def get_recent_block_reference(self) -> BlockReference:
        """Fetch a fresh block reference (recent blockhash)."""
        ...

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance of an address in base units (lamports)."""
        ...

    @abstractmethod
    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Raw JSON-RPC call, available to SDK implementations."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
