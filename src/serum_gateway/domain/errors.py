"""
Domain Error Taxonomy.

Every error raised by the gateway derives from DomainError so the HTTP
boundary can convert it into an error response.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """
    Base class for all domain errors.

    Includes structured error info for logging and debugging.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        market: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.market = market
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "market": self.market,
            "details": self.details,
        }


# =============================================================================
# Validation / Configuration Errors
# =============================================================================


class ValidationError(DomainError):
    """Invalid request input."""

    error_code = "VALIDATION_ERROR"


class UnknownMarketError(ValidationError):
    """Market not configured."""

    error_code = "UNKNOWN_MARKET"


class ConfigurationError(DomainError):
    """Settings or market metadata are inconsistent."""

    error_code = "CONFIGURATION_ERROR"


# =============================================================================
# Network Errors
# =============================================================================


class NetworkUnavailableError(DomainError):
    """RPC endpoint unreachable or transport failure."""

    error_code = "NETWORK_UNAVAILABLE"


class RpcRequestError(DomainError):
    """RPC node answered with a JSON-RPC error object."""

    error_code = "RPC_ERROR"

    def __init__(self, message: str, *, code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.code = code
        self.details["code"] = code


# =============================================================================
# Transaction Errors
# =============================================================================


class TransactionError(DomainError):
    """Base class for transaction lifecycle errors."""

    error_code = "TRANSACTION_ERROR"

    def __init__(self, message: str, *, submission_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.submission_id = submission_id
        if submission_id:
            self.details["submission_id"] = submission_id


class TransactionTimeoutError(TransactionError):
    """Confirmation not observed within the deadline."""

    error_code = "TRANSACTION_TIMEOUT"


class TransactionRejectedError(TransactionError):
    """Network confirmed the transaction with an error."""

    error_code = "TRANSACTION_REJECTED"

    def __init__(self, message: str, *, reason: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.details["reason"] = reason


# =============================================================================
# Account / Order Errors
# =============================================================================


class NoTargetAccountError(DomainError):
    """No open-orders account exists for the market."""

    error_code = "NO_TARGET_ACCOUNT"


class TokenAccountNotFoundError(DomainError):
    """Wallet holds no token account for the coin."""

    error_code = "TOKEN_ACCOUNT_NOT_FOUND"


class OrderNotFoundError(DomainError):
    """Order not found among own resting orders."""

    error_code = "ORDER_NOT_FOUND"
