"""
DEX SDK Port: Abstract interface for the order-book exchange SDK.

The SDK owns everything program-specific: transaction building, signing and
serialization, account decoding and order-book parsing. The gateway only
talks to it through domain types; SDK objects it must hand back later travel
opaquely (BuiltTransaction.transaction, OwnOrder.info, OpenOrdersAccount.info).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from serum_gateway.domain.models import (
    BlockReference,
    BuiltTransaction,
    FillEvent,
    Market,
    MarketInfo,
    OpenOrdersAccount,
    OwnOrder,
    PlaceOrderRequest,
    TokenAccount,
    Wallet,
)

Level = tuple[Decimal, Decimal]


class DexSdkPort(ABC):
    """Exchange SDK operations used by the facade and transaction engine."""

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @abstractmethod
    def load_wallet(self, private_key: str) -> Wallet:
        """Decode the configured private key into a signing wallet."""
        ...

    @abstractmethod
    async def load_market_info(
        self, market: Market, address: str, program_id: str
    ) -> MarketInfo:
        """Load on-chain market metadata (mints, lot sizes, book addresses)."""
        ...

    async def close(self) -> None:
        """Release SDK resources. Optional."""
        return None

    # =========================================================================
    # Accounts
    # =========================================================================

    @abstractmethod
    async def load_open_orders_accounts(
        self, owner: str, markets: list[MarketInfo]
    ) -> list[OpenOrdersAccount]:
        """All open-orders accounts of `owner` across `markets` in one read."""
        ...

    @abstractmethod
    async def load_token_accounts(self, owner: str) -> list[TokenAccount]:
        """All token accounts of `owner`."""
        ...

    @abstractmethod
    async def load_own_orders(
        self, market: MarketInfo, accounts: list[OpenOrdersAccount]
    ) -> list[OwnOrder]:
        """Resting orders on the book that belong to `accounts`."""
        ...

    # =========================================================================
    # Market Data
    # =========================================================================

    @abstractmethod
    async def load_order_book(self, market: MarketInfo) -> tuple[list[Level], list[Level]]:
        """Current (bids, asks) L2 levels, best first."""
        ...

    @abstractmethod
    def decode_order_book(self, market: MarketInfo, data: bytes) -> list[Level]:
        """Decode a raw bids/asks account into L2 levels."""
        ...

    @abstractmethod
    async def load_fills(self, market: MarketInfo) -> list[FillEvent]:
        """Recent fill events from the market's event queue."""
        ...

    # =========================================================================
    # Transactions
    # =========================================================================

    @abstractmethod
    async def build_place_order_transaction(
        self, market: MarketInfo, wallet: Wallet, request: PlaceOrderRequest
    ) -> BuiltTransaction:
        """
        Build a new-order transaction.

        When request.open_orders_address is None the SDK creates a new
        open-orders account and returns its keypair among the signers.
        """
        ...

    @abstractmethod
    async def build_cancel_by_client_id_transaction(
        self, market: MarketInfo, wallet: Wallet, open_orders_address: str, client_id: str
    ) -> BuiltTransaction:
        ...

    @abstractmethod
    async def build_cancel_transaction(
        self, market: MarketInfo, wallet: Wallet, order: OwnOrder
    ) -> BuiltTransaction:
        ...

    @abstractmethod
    async def build_settle_funds_transaction(
        self,
        market: MarketInfo,
        wallet: Wallet,
        account: OpenOrdersAccount,
        base_wallet: str,
        quote_wallet: str,
    ) -> BuiltTransaction:
        ...

    @abstractmethod
    def serialize_signed(
        self, built: BuiltTransaction, wallet: Wallet, block_reference: BlockReference
    ) -> bytes:
        """Attach the block reference, sign with wallet + extra signers, serialize."""
        ...
