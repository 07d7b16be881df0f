"""
Unit tests for SerumExchange.

End-to-end flows through the facade with the in-memory RPC and SDK:
placement, cancellation, balances, settlement and market data.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from serum_gateway.domain.errors import (
    ConfigurationError,
    TokenAccountNotFoundError,
    UnknownMarketError,
    ValidationError,
)
from serum_gateway.domain.models import (
    FillEvent,
    Market,
    OpenOrdersAccount,
    OrderType,
    OwnOrder,
    Side,
    SignatureStatus,
    TokenAccount,
)
from serum_gateway.services.exchange import SerumExchange
from tests.mocks import OWNER, FakeRpc, make_market_info

XY = Market("X", "Y")
SOLY = Market("SOL", "Y")


def fund(sdk, *, oo_accounts=("OO_A",)):
    sdk.token_accounts = [
        TokenAccount("TA_X", "MINT_X", Decimal("50")),
        TokenAccount("TA_Y", "MINT_Y", Decimal("100")),
        TokenAccount("TA_UNKNOWN", "MINT_OTHER", Decimal("7")),
    ]
    sdk.open_orders_accounts = [OpenOrdersAccount(address, XY.key) for address in oo_accounts]


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_loads_wallet_and_markets(self, rpc, sdk, settings):
        exchange = await SerumExchange.create(rpc, sdk, settings)

        assert exchange.wallet.address == OWNER
        assert {m.key for m in exchange.markets} == {"X/Y", "SOL/Y"}
        await exchange.close()

    @pytest.mark.asyncio
    async def test_create_rejects_wrong_mint(self, rpc, sdk, settings):
        settings.coin_mints["X"] = "SOMETHING_ELSE"

        with pytest.raises(ConfigurationError) as exc_info:
            await SerumExchange.create(rpc, sdk, settings)

        assert "X on X/Y has wrong mint" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unknown_market_is_rejected(self, rpc, sdk, settings):
        exchange = await SerumExchange.create(rpc, sdk, settings)

        with pytest.raises(UnknownMarketError):
            exchange.market_info(Market("Z", "Y"))
        await exchange.close()


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_place_confirmed_order_appears_in_own_orders(self, sdk, settings):
        """
        GIVEN: market X/Y with funded token accounts and one open-orders account
        WHEN: a buy of 10 @ 1.5 is placed and confirmed on the second poll
        THEN: the client id is returned and the order is listed in own orders
        """
        rpc = FakeRpc(statuses=[SignatureStatus.pending(), SignatureStatus.confirmed()])
        fund(sdk)
        exchange = await SerumExchange.create(rpc, sdk, settings)

        client_id = await exchange.place_order(Side.BUY, XY, Decimal("10"), Decimal("1.5"), OrderType.LIMIT)
        orders = await exchange.get_own_orders(XY)

        assert rpc.poll_count >= 2
        assert [o.client_order_id for o in orders.values()] == [client_id]
        order = next(iter(orders.values()))
        assert order.quantity == Decimal("10")
        assert order.price == Decimal("1.5")
        assert order.open_orders_address == "OO_A"
        await exchange.close()

    @pytest.mark.asyncio
    async def test_confirmed_place_invalidates_own_orders_snapshot(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk)
        exchange = await SerumExchange.create(rpc, sdk, settings)
        await exchange.place_order(Side.BUY, XY, Decimal("1"), Decimal("2"))
        await exchange.get_own_orders(XY)
        assert len(exchange.own_order_index.snapshot(XY)) == 1

        await exchange.place_order(Side.BUY, XY, Decimal("1"), Decimal("3"))

        assert exchange.own_order_index.snapshot(XY) == {}
        assert len(await exchange.get_own_orders(XY)) == 2
        await exchange.close()

    @pytest.mark.asyncio
    async def test_buy_pays_from_quote_token_account(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=("OO_B", "OO_A"))
        exchange = await SerumExchange.create(rpc, sdk, settings)

        await exchange.place_order(Side.BUY, XY, Decimal("1"), Decimal("2"), client_id=42)

        _, request = sdk.built[-1]
        assert request.payer == "TA_Y"
        assert request.open_orders_address == "OO_A"
        assert request.client_id == 42
        await exchange.close()

    @pytest.mark.asyncio
    async def test_native_sell_pays_from_wallet(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk)
        exchange = await SerumExchange.create(rpc, sdk, settings)

        await exchange.place_order(Side.SELL, SOLY, Decimal("1"), Decimal("20"))

        _, request = sdk.built[-1]
        assert request.payer == OWNER
        # No SOL/Y open-orders account yet: the SDK creates one
        assert request.open_orders_address is None
        await exchange.close()

    @pytest.mark.asyncio
    async def test_missing_token_account_fails_before_submitting(self, rpc, sdk, settings):
        sdk.open_orders_accounts = [OpenOrdersAccount("OO_A", XY.key)]
        exchange = await SerumExchange.create(rpc, sdk, settings)

        with pytest.raises(TokenAccountNotFoundError):
            await exchange.place_order(Side.SELL, XY, Decimal("1"), Decimal("2"))

        assert rpc.submitted == []
        await exchange.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client_id", ["abc", -1, 1 << 64])
    async def test_invalid_client_id_is_rejected(self, rpc, sdk, settings, client_id):
        fund(sdk)
        exchange = await SerumExchange.create(rpc, sdk, settings)

        with pytest.raises(ValidationError):
            await exchange.place_order(Side.BUY, XY, Decimal("1"), Decimal("2"), client_id=client_id)
        await exchange.close()

    @pytest.mark.asyncio
    async def test_non_positive_quantity_is_rejected(self, rpc, sdk, settings):
        exchange = await SerumExchange.create(rpc, sdk, settings)

        with pytest.raises(ValidationError):
            await exchange.place_order(Side.BUY, XY, Decimal("0"), Decimal("2"))
        await exchange.close()


class TestCancelOrder:
    @pytest.mark.asyncio
    async def test_unknown_client_id_uses_fallback_account(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=("Bxxxx", "Axxxx"))
        exchange = await SerumExchange.create(rpc, sdk, settings)

        await exchange.cancel_order("12345", XY)

        assert sdk.built[-1] == ("cancel_by_client_id", "Axxxx", "12345")
        await exchange.close()

    @pytest.mark.asyncio
    async def test_indexed_order_targets_its_own_account(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=("Axxxx", "Bxxxx"))
        sdk.orders[XY.key] = [
            OwnOrder("501", "777", XY.key, Side.BUY, Decimal("1"), Decimal("2"), open_orders_address="Bxxxx")
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings)
        await exchange.get_own_orders(XY)

        await exchange.cancel_order("777", XY)

        assert sdk.built[-1] == ("cancel_by_client_id", "Bxxxx", "777")
        await exchange.close()

    @pytest.mark.asyncio
    async def test_cancel_by_order_id_uses_indexed_order(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk)
        exchange = await SerumExchange.create(rpc, sdk, settings)
        await exchange.place_order(Side.BUY, XY, Decimal("1"), Decimal("2"))
        order_id = sdk.orders[XY.key][0].order_id

        await exchange.cancel_order(order_id, XY, by_client_id=False)

        assert sdk.built[-1] == ("cancel", "OO_A", order_id)
        await exchange.close()

    @pytest.mark.asyncio
    async def test_confirmed_cancel_invalidates_own_orders_snapshot(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=("Axxxx",))
        sdk.orders[XY.key] = [
            OwnOrder("501", "777", XY.key, Side.BUY, Decimal("1"), Decimal("2"), open_orders_address="Axxxx")
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings)
        await exchange.get_own_orders(XY)
        assert "501" in exchange.own_order_index.snapshot(XY)

        await exchange.cancel_order("777", XY)

        assert exchange.own_order_index.snapshot(XY) == {}
        await exchange.close()


class TestBalancesAndSettlement:
    @pytest.mark.asyncio
    async def test_balances_sum_wallet_and_open_orders(self, sdk, settings):
        rpc = FakeRpc(lamports=2_500_000_000)
        fund(sdk, oo_accounts=())
        sdk.open_orders_accounts = [
            OpenOrdersAccount(
                "OO_A",
                XY.key,
                base_free=Decimal("1"),
                base_total=Decimal("3"),
                quote_free=Decimal("4"),
                quote_total=Decimal("4"),
            )
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings)

        balances = await exchange.get_balances()

        assert balances["X"].total == Decimal("53")
        assert balances["X"].free == Decimal("51")
        assert balances["Y"].total == Decimal("104")
        assert balances["SOL"].total == Decimal("2.5")
        assert balances["SOL"].mint == "MINT_SOL"
        assert "MINT_OTHER" not in {b.mint for b in balances.values()}
        await exchange.close()

    @pytest.mark.asyncio
    async def test_settle_only_accounts_with_free_funds(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=())
        sdk.open_orders_accounts = [
            OpenOrdersAccount("OO_EMPTY", XY.key),
            OpenOrdersAccount("OO_FULL", XY.key, quote_free=Decimal("5"), quote_total=Decimal("5")),
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings)

        submission_ids = await exchange.settle_funds(XY)

        assert len(submission_ids) == 1
        assert sdk.built == [("settle", "OO_FULL", "TA_X", "TA_Y")]
        await exchange.close()

    @pytest.mark.asyncio
    async def test_settle_invalidates_own_orders_snapshot(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=())
        sdk.open_orders_accounts = [
            OpenOrdersAccount("OO_FULL", XY.key, quote_free=Decimal("5"), quote_total=Decimal("5")),
        ]
        sdk.orders[XY.key] = [
            OwnOrder("501", "777", XY.key, Side.BUY, Decimal("1"), Decimal("2"), open_orders_address="OO_FULL")
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings)
        await exchange.get_own_orders(XY)
        assert exchange.own_order_index.snapshot(XY)

        await exchange.settle_funds(XY)

        assert exchange.own_order_index.snapshot(XY) == {}
        await exchange.close()

    @pytest.mark.asyncio
    async def test_settle_native_base_goes_to_wallet(self, sdk, settings):
        rpc = FakeRpc(statuses=[SignatureStatus.confirmed()])
        fund(sdk, oo_accounts=())
        sdk.open_orders_accounts = [OpenOrdersAccount("OO_SOL", SOLY.key, base_free=Decimal("1"))]
        exchange = await SerumExchange.create(rpc, sdk, settings)

        await exchange.settle_funds(SOLY)

        assert sdk.built == [("settle", "OO_SOL", OWNER, "TA_Y")]
        await exchange.close()

    @pytest.mark.asyncio
    async def test_nothing_to_settle(self, rpc, sdk, settings):
        fund(sdk)
        exchange = await SerumExchange.create(rpc, sdk, settings)

        assert await exchange.settle_funds(XY) == []
        assert rpc.submitted == []
        await exchange.close()


class TestMarketData:
    @pytest.mark.asyncio
    async def test_trades_exclude_maker_events(self, rpc, sdk, settings):
        sdk.fills[XY.key] = [
            FillEvent("1", "OO_OTHER", Side.BUY, Decimal("1.5"), Decimal("2"), maker=False),
            FillEvent("2", "OO_OTHER", Side.SELL, Decimal("1.5"), Decimal("2"), maker=True),
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings, wall_clock=lambda: 1700000000.0)

        trades = await exchange.get_trades(XY)

        assert [t.order_id for t in trades] == ["1"]
        assert trades[0].trade_id == "1|2|1700000000000"
        await exchange.close()

    @pytest.mark.asyncio
    async def test_fills_only_for_own_accounts(self, rpc, sdk, settings):
        fund(sdk)
        sdk.fills[XY.key] = [
            FillEvent("1", "OO_A", Side.BUY, Decimal("1.5"), Decimal("2"), maker=True, client_order_id="9"),
            FillEvent("2", "OO_OTHER", Side.SELL, Decimal("1.5"), Decimal("2"), maker=False),
        ]
        exchange = await SerumExchange.create(rpc, sdk, settings)

        fills = await exchange.get_fills()

        assert len(fills) == 1
        assert fills[0].liquidity.value == "M"
        assert fills[0].info["clientId"] == "9"
        await exchange.close()

    @pytest.mark.asyncio
    async def test_orderbook_streams_account_updates(self, rpc, sdk, settings):
        info = make_market_info("X", "Y")
        sdk.books[XY.key] = ([(Decimal("1.4"), Decimal("3"))], [(Decimal("1.6"), Decimal("2"))])
        exchange = await SerumExchange.create(rpc, sdk, settings)

        book = await exchange.get_orderbook(XY)
        assert book.bids == [(Decimal("1.4"), Decimal("3"))]

        rpc.account_callbacks[info.asks_address](b"1.55:7,1.7:1", 123)
        book = await exchange.get_orderbook(XY)

        assert book.asks == [(Decimal("1.55"), Decimal("7")), (Decimal("1.7"), Decimal("1"))]
        assert book.bids == [(Decimal("1.4"), Decimal("3"))]
        await exchange.close()
