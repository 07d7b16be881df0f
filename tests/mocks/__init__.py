"""Mock package for testing."""

from tests.mocks.adapters import (
    OWNER,
    FakeClock,
    FakeDexSdk,
    FakeRpc,
    FakeSubscription,
    fast_transactions,
    make_market_info,
)

__all__ = [
    "OWNER",
    "FakeClock",
    "FakeDexSdk",
    "FakeRpc",
    "FakeSubscription",
    "fast_transactions",
    "make_market_info",
]
