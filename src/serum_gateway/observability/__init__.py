"""Observability: logging and metrics."""

from serum_gateway.observability.logging import (
    LOG_TAG_CACHE,
    LOG_TAG_HTTP,
    LOG_TAG_TX,
    get_logger,
    setup_logging,
)
from serum_gateway.observability.metrics import (
    record_cache_refresh,
    record_cancel_fallback,
    record_confirmation_observer,
    record_http_request,
    record_tx_outcome,
    record_tx_submission,
    update_cache_age,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "LOG_TAG_TX",
    "LOG_TAG_CACHE",
    "LOG_TAG_HTTP",
    # Metrics helpers
    "record_cache_refresh",
    "record_cancel_fallback",
    "record_confirmation_observer",
    "record_http_request",
    "record_tx_outcome",
    "record_tx_submission",
    "update_cache_age",
]
