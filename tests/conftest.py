import pytest

from serum_gateway.config.settings import (
    CacheSettings,
    MarketSettings,
    Settings,
)
from tests.mocks import FakeDexSdk, FakeRpc, fast_transactions, make_market_info


@pytest.fixture
def settings():
    """Settings for one X/Y market plus the native coin."""
    return Settings(
        env="test",
        markets=[
            MarketSettings(name="X/Y", address="MKT_X_Y", program_id="PROGRAM"),
            MarketSettings(name="SOL/Y", address="MKT_SOL_Y", program_id="PROGRAM"),
        ],
        coin_mints={"X": "MINT_X", "Y": "MINT_Y", "SOL": "MINT_SOL"},
        transactions=fast_transactions(),
        cache=CacheSettings(),
    )


@pytest.fixture
def market_infos():
    return [make_market_info("X", "Y"), make_market_info("SOL", "Y")]


@pytest.fixture
def sdk(market_infos):
    return FakeDexSdk(market_infos)


@pytest.fixture
def rpc():
    return FakeRpc()
