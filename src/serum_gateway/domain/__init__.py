"""
Domain Layer: Core entities, value objects, and the error taxonomy.

This layer has NO external dependencies (no SDK types, no transport types).
"""

from serum_gateway.domain.errors import (
    DomainError,
    NetworkUnavailableError,
    NoTargetAccountError,
    OrderNotFoundError,
    TransactionRejectedError,
    TransactionTimeoutError,
    ValidationError,
)
from serum_gateway.domain.models import (
    Balance,
    BlockReference,
    CancelTarget,
    ConfirmationState,
    Market,
    MarketInfo,
    OpenOrdersAccount,
    OrderType,
    OwnOrder,
    PendingTransaction,
    Side,
    SignatureStatus,
    TokenAccount,
)

__all__ = [
    "Balance",
    "BlockReference",
    "CancelTarget",
    "ConfirmationState",
    "DomainError",
    "Market",
    "MarketInfo",
    "NetworkUnavailableError",
    "NoTargetAccountError",
    "OpenOrdersAccount",
    "OrderNotFoundError",
    "OrderType",
    "OwnOrder",
    "PendingTransaction",
    "Side",
    "SignatureStatus",
    "TokenAccount",
    "TransactionRejectedError",
    "TransactionTimeoutError",
    "ValidationError",
]
