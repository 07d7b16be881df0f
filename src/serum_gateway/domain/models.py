"""
Canonical Domain Models.

Quantities and prices use Decimal. SDK-specific objects are mapped to these
types by the DexSdkPort implementation; raw SDK payloads that the gateway
must hand back to the SDK (e.g. for cancellation) travel in `info`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

V = TypeVar("V")

# =============================================================================
# ENUMS
# =============================================================================


class Side(str, Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"

    @classmethod
    def from_string(cls, value: str) -> Side:
        """Parse side from various string formats."""
        normalized = str(value).lower().strip()
        if normalized in ("buy", "b", "bid", "1"):
            return cls.BUY
        if normalized in ("sell", "s", "ask", "-1"):
            return cls.SELL
        raise ValueError(f"Unknown side: {value}")


class OrderType(str, Enum):
    """Serum order types."""

    LIMIT = "limit"
    IOC = "ioc"
    POST_ONLY = "postOnly"

    @classmethod
    def from_string(cls, value: str | None) -> OrderType:
        if not value:
            return cls.LIMIT
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        raise ValueError(f"Unknown order type: {value}")


class Liquidity(str, Enum):
    TAKER = "T"
    MAKER = "M"


class ConfirmationState(str, Enum):
    """Signature status as reported by the network."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


# =============================================================================
# VALUE OBJECTS
# =============================================================================


@dataclass(frozen=True, slots=True)
class Market:
    """Trading pair, keyed as "COIN/QUOTE"."""

    coin: str
    price_currency: str

    @property
    def key(self) -> str:
        return f"{self.coin}/{self.price_currency}"

    @classmethod
    def from_key(cls, key: str) -> Market:
        coin, sep, price_currency = key.partition("/")
        if not sep or not coin or not price_currency:
            raise ValueError(f"Invalid market key: {key}")
        return cls(coin, price_currency)

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class MarketInfo:
    """On-chain market metadata loaded at startup."""

    market: Market
    address: str
    program_id: str
    base_mint: str
    quote_mint: str
    min_order_size: Decimal = Decimal("0")
    tick_size: Decimal = Decimal("0")
    bids_address: str | None = None
    asks_address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "coin": self.market.coin,
            "priceCurrency": self.market.price_currency,
            "address": self.address,
            "baseMint": self.base_mint,
            "quoteMint": self.quote_mint,
            "minOrderSize": self.min_order_size,
            "tickSize": self.tick_size,
            "programId": self.program_id,
        }


@dataclass(frozen=True, slots=True)
class BlockReference:
    """Recent block reference required to sign a transaction.

    `fetched_at` is the local clock reading when the value was obtained.
    """

    value: str
    fetched_at: float


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    accounts: list[V]
    fetched_at: float


@dataclass(frozen=True, slots=True)
class SignatureStatus:
    state: ConfirmationState
    error: Any = None

    @classmethod
    def pending(cls) -> SignatureStatus:
        return cls(ConfirmationState.PENDING)

    @classmethod
    def confirmed(cls) -> SignatureStatus:
        return cls(ConfirmationState.CONFIRMED)

    @classmethod
    def failed(cls, error: Any) -> SignatureStatus:
        return cls(ConfirmationState.FAILED, error)

    @property
    def is_final(self) -> bool:
        return self.state != ConfirmationState.PENDING


# =============================================================================
# ACCOUNTS
# =============================================================================


@dataclass(frozen=True, slots=True)
class Wallet:
    """Owner public key plus an opaque signer object understood by the SDK."""

    address: str
    signer: Any = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class TokenAccount:
    """Token holding of the wallet, amount already scaled by mint decimals."""

    address: str
    mint: str
    amount: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class OpenOrdersAccount:
    """Per-market account holding the wallet's resting orders and unsettled funds."""

    address: str
    market_key: str
    base_free: Decimal = Decimal("0")
    base_total: Decimal = Decimal("0")
    quote_free: Decimal = Decimal("0")
    quote_total: Decimal = Decimal("0")
    info: Any = field(default=None, repr=False, compare=False)

    @property
    def has_free_funds(self) -> bool:
        return self.base_free > 0 or self.quote_free > 0


@dataclass(frozen=True, slots=True)
class Balance:
    coin: str
    mint: str
    total: Decimal
    free: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"mintKey": self.mint, "coin": self.coin, "total": self.total, "free": self.free}


# =============================================================================
# ORDERS / MARKET DATA
# =============================================================================


@dataclass(frozen=True, slots=True)
class OwnOrder:
    """
    Resting order owned by the wallet.

    Created only by a bulk snapshot refresh of the Own-Order Index and never
    mutated afterwards.
    """

    order_id: str
    client_order_id: str | None
    market_key: str
    side: Side
    price: Decimal
    quantity: Decimal
    open_orders_address: str
    open_orders_slot: int = 0
    fee_tier: int = 0
    info: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        market = Market.from_key(self.market_key)
        return {
            "exchange": "serum",
            "coin": market.coin,
            "priceCurrency": market.price_currency,
            "side": self.side.value,
            "price": self.price,
            "quantity": self.quantity,
            "info": {
                "orderId": self.order_id,
                "clientId": self.client_order_id or "",
                "openOrdersAddress": self.open_orders_address,
                "openOrdersSlot": self.open_orders_slot,
                "feeTier": self.fee_tier,
            },
        }


@dataclass(slots=True)
class PendingTransaction:
    """Signed transaction awaiting confirmation. Owned by one engine call."""

    raw_bytes: bytes
    submission_id: str
    first_submitted_at: float
    resubmit_count: int = 0


@dataclass(frozen=True, slots=True)
class CancelTarget:
    account_address: str
    order: OwnOrder | None = None
    used_fallback: bool = False


@dataclass(frozen=True, slots=True)
class OrderBookSide:
    levels: list[tuple[Decimal, Decimal]]
    received_at: float


@dataclass(frozen=True, slots=True)
class L2OrderBook:
    market: Market
    bids: list[tuple[Decimal, Decimal]]
    asks: list[tuple[Decimal, Decimal]]
    valid_at: float
    received_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "bids": [list(level) for level in self.bids],
            "asks": [list(level) for level in self.asks],
            "market": {"coin": self.market.coin, "priceCurrency": self.market.price_currency},
            "validAt": self.valid_at,
            "receivedAt": self.received_at,
        }


@dataclass(frozen=True, slots=True)
class FillEvent:
    """Raw fill event from the market's event queue, as mapped by the SDK."""

    order_id: str
    open_orders_address: str
    side: Side
    price: Decimal
    quantity: Decimal
    maker: bool
    client_order_id: str | None = None
    fee: Decimal = Decimal("0")
    info: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Trade:
    market: Market
    trade_id: str
    order_id: str
    side: Side
    price: Decimal
    quantity: Decimal
    time: float
    info: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exchange": "serum",
            "coin": self.market.coin,
            "priceCurrency": self.market.price_currency,
            "id": self.trade_id,
            "orderId": self.order_id,
            "price": self.price,
            "quantity": self.quantity,
            "time": self.time,
            "side": self.side.value,
            "info": self.info,
        }


@dataclass(frozen=True, slots=True)
class Fill:
    market: Market
    order_id: str
    side: Side
    price: Decimal
    quantity: Decimal
    fee: Decimal
    time: float
    liquidity: Liquidity
    info: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exchange": "serum",
            "coin": self.market.coin,
            "priceCurrency": self.market.price_currency,
            "side": self.side.value,
            "price": self.price,
            "quantity": self.quantity,
            "time": self.time,
            "orderId": self.order_id,
            "fee": self.fee,
            "feeCurrency": self.market.price_currency,
            "liquidity": self.liquidity.value,
            "info": self.info,
        }


@dataclass(frozen=True, slots=True)
class PlaceOrderRequest:
    """Input to the SDK's place-order transaction builder."""

    market: Market
    side: Side
    price: Decimal
    quantity: Decimal
    order_type: OrderType
    client_id: int
    payer: str
    open_orders_address: str | None = None


@dataclass(frozen=True, slots=True)
class BuiltTransaction:
    """Unsigned transaction plus the extra signers it requires (besides the wallet)."""

    transaction: Any
    signers: list[Any] = field(default_factory=list)
