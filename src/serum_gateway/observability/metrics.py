"""
Prometheus metrics for observability.

Covers the transaction lifecycle, cache refreshes and cancel targeting.

Usage:
    from serum_gateway.observability.metrics import record_tx_outcome

    record_tx_outcome(kind="place_order", outcome="confirmed", duration_seconds=1.2)
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Metric Definitions
# =============================================================================

tx_submissions_total = Counter(
    "serum_gateway_tx_submissions_total",
    "Raw transaction submissions, initial and resends",
    ["kind", "attempt"],  # attempt: initial, resend
)

tx_outcomes_total = Counter(
    "serum_gateway_tx_outcomes_total",
    "Terminal transaction outcomes",
    ["kind", "outcome"],  # outcome: confirmed, rejected, timeout, submit_failed
)

tx_confirmation_seconds = Histogram(
    "serum_gateway_tx_confirmation_seconds",
    "Time from first submission to terminal state",
    ["kind", "outcome"],
    buckets=(0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 8.0, 10.0, 15.0, 30.0),
)

tx_confirmation_observer_total = Counter(
    "serum_gateway_tx_confirmation_observer_total",
    "Which observer settled the confirmation race first",
    ["observer"],  # subscription, poll
)

cache_refresh_total = Counter(
    "serum_gateway_cache_refresh_total",
    "Cache refresh attempts",
    ["cache", "result"],  # result: ok, error
)

cache_age_seconds = Gauge(
    "serum_gateway_cache_age_seconds",
    "Age of the value served at the last read",
    ["cache"],
)

cancel_fallback_total = Counter(
    "serum_gateway_cancel_fallback_total",
    "Cancellations targeted with the lexicographic fallback account",
    ["market"],
)

http_requests_total = Counter(
    "serum_gateway_http_requests_total",
    "HTTP API requests",
    ["route", "status"],  # status: ok, error
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_tx_submission(kind: str, resend: bool = False) -> None:
    tx_submissions_total.labels(kind=kind, attempt="resend" if resend else "initial").inc()


def record_tx_outcome(kind: str, outcome: str, duration_seconds: float | None = None) -> None:
    """
    Record a terminal transaction outcome.

    Args:
        kind: Transaction kind ("place_order", "cancel", "settle", ...)
        outcome: "confirmed", "rejected", "timeout" or "submit_failed"
        duration_seconds: Time from first submission, when a submission happened
    """
    tx_outcomes_total.labels(kind=kind, outcome=outcome).inc()
    if duration_seconds is not None:
        tx_confirmation_seconds.labels(kind=kind, outcome=outcome).observe(duration_seconds)


def record_confirmation_observer(observer: str) -> None:
    tx_confirmation_observer_total.labels(observer=observer).inc()


def record_cache_refresh(cache: str, success: bool) -> None:
    cache_refresh_total.labels(cache=cache, result="ok" if success else "error").inc()


def update_cache_age(cache: str, age_seconds: float) -> None:
    cache_age_seconds.labels(cache=cache).set(age_seconds)


def record_cancel_fallback(market: str) -> None:
    cancel_fallback_total.labels(market=market).inc()


def record_http_request(route: str, success: bool) -> None:
    http_requests_total.labels(route=route, status="ok" if success else "error").inc()
