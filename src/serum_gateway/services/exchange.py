"""
Exchange facade.

Single entry point used by the HTTP layer: order placement and cancellation,
own orders, balances, settlement and market data. Built once by the
application entry point with explicit dependencies.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal

from serum_gateway.config.settings import MarketSettings, Settings
from serum_gateway.domain.errors import (
    ConfigurationError,
    TokenAccountNotFoundError,
    UnknownMarketError,
    ValidationError,
)
from serum_gateway.domain.models import (
    Balance,
    BuiltTransaction,
    Fill,
    L2OrderBook,
    Liquidity,
    Market,
    MarketInfo,
    OpenOrdersAccount,
    OrderType,
    OwnOrder,
    PlaceOrderRequest,
    Side,
    TokenAccount,
    Trade,
    Wallet,
)
from serum_gateway.observability.logging import get_logger
from serum_gateway.ports.dex import DexSdkPort
from serum_gateway.ports.rpc import RpcPort
from serum_gateway.services.cache.keyed import KeyedTtlCache
from serum_gateway.services.cache.reference import BlockReferenceCache
from serum_gateway.services.orderbook import OrderBookStream
from serum_gateway.services.own_orders import OwnOrderIndex
from serum_gateway.services.resolution import CancelTargetResolver, first_by_address
from serum_gateway.services.transactions import TransactionEngine
from serum_gateway.utils.decimals import lamports_to_sol
from serum_gateway.utils.ids import make_client_order_id

logger = get_logger(__name__)


class SerumExchange:
    """Order management and market data for one wallet across the configured markets."""

    def __init__(
        self,
        rpc: RpcPort,
        sdk: DexSdkPort,
        wallet: Wallet,
        market_infos: list[MarketInfo],
        settings: Settings,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._rpc = rpc
        self._sdk = sdk
        self._wallet = wallet
        self._settings = settings
        self._wall_clock = wall_clock
        self._infos: dict[str, MarketInfo] = {info.market.key: info for info in market_infos}
        self._mint_coins = settings.mint_coins

        cache = settings.cache
        self._token_accounts: KeyedTtlCache[str, TokenAccount] = KeyedTtlCache(
            "token_accounts", self._fetch_token_accounts, clock=clock
        )
        self._open_orders: KeyedTtlCache[str, OpenOrdersAccount] = KeyedTtlCache(
            "open_orders_accounts", self._fetch_open_orders_accounts, clock=clock
        )
        self._block_references = BlockReferenceCache(
            rpc.get_recent_block_reference, cache.block_reference_ttl_seconds, clock=clock
        )
        self._engine = TransactionEngine(
            rpc, sdk, wallet, self._block_references, settings.transactions, clock=clock
        )
        self._index = OwnOrderIndex(self._load_own_orders, self.markets, clock=wall_clock)
        self._resolver = CancelTargetResolver(
            self._open_orders, self._index, max_age_seconds=cache.open_orders_max_age_seconds
        )
        self._orderbooks = OrderBookStream(rpc, sdk, clock=wall_clock)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @classmethod
    async def create(cls, rpc: RpcPort, sdk: DexSdkPort, settings: Settings, **kwargs) -> SerumExchange:
        """Load the wallet and every configured market, validating mints."""
        wallet = sdk.load_wallet(settings.wallet.private_key)
        infos = await asyncio.gather(*(cls._load_market(sdk, settings, m) for m in settings.markets))
        logger.info(f"Loaded {len(infos)} markets for wallet {wallet.address}")
        return cls(rpc, sdk, wallet, list(infos), settings, **kwargs)

    @staticmethod
    async def _load_market(sdk: DexSdkPort, settings: Settings, params: MarketSettings) -> MarketInfo:
        market = Market.from_key(params.name)
        info = await sdk.load_market_info(market, params.address, params.program_id)
        for coin, actual in ((market.coin, info.base_mint), (market.price_currency, info.quote_mint)):
            expected = settings.coin_mints.get(coin)
            if expected != actual:
                raise ConfigurationError(
                    f"{coin} on {market.key} has wrong mint. Our mint: {expected} Serum's mint {actual}",
                    market=market.key,
                )
        return info

    async def close(self) -> None:
        await self._index.close()
        await self._orderbooks.close()
        await self._sdk.close()

    @property
    def wallet(self) -> Wallet:
        return self._wallet

    @property
    def markets(self) -> list[Market]:
        return [info.market for info in self._infos.values()]

    @property
    def own_order_index(self) -> OwnOrderIndex:
        return self._index

    @property
    def block_references(self) -> BlockReferenceCache:
        return self._block_references

    def market_info(self, market: Market) -> MarketInfo:
        info = self._infos.get(market.key)
        if info is None:
            raise UnknownMarketError(f"Unknown market {market.key}", market=market.key)
        return info

    # =========================================================================
    # Cache loaders
    # =========================================================================

    async def _fetch_token_accounts(self) -> dict[str, list[TokenAccount]]:
        accounts = await self._sdk.load_token_accounts(self._wallet.address)
        by_coin: dict[str, list[TokenAccount]] = {}
        for account in accounts:
            coin = self._mint_coins.get(account.mint)
            if coin is None:
                continue
            by_coin.setdefault(coin, []).append(account)
        return by_coin

    async def _fetch_open_orders_accounts(self) -> dict[str, list[OpenOrdersAccount]]:
        accounts = await self._sdk.load_open_orders_accounts(
            self._wallet.address, list(self._infos.values())
        )
        by_market: dict[str, list[OpenOrdersAccount]] = {}
        for account in accounts:
            by_market.setdefault(account.market_key, []).append(account)
        return by_market

    async def _load_own_orders(self, market: Market) -> list[OwnOrder]:
        info = self.market_info(market)
        accounts = await self._open_orders.get(market.key, self._settings.cache.open_orders_max_age_seconds)
        if not accounts:
            return []
        return await self._sdk.load_own_orders(info, accounts)

    # =========================================================================
    # Orders
    # =========================================================================

    async def place_order(
        self,
        side: Side,
        market: Market,
        quantity: Decimal,
        price: Decimal,
        order_type: OrderType = OrderType.LIMIT,
        client_id: int | str | None = None,
    ) -> str:
        """
        Place an order and wait for confirmation.

        Returns the client order id (generated when not supplied).
        """
        info = self.market_info(market)
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", market=market.key)
        if price <= 0:
            raise ValidationError("Price must be positive", market=market.key)
        resolved_client_id = _parse_client_id(client_id) if client_id is not None else make_client_order_id()

        logger.info(
            f"Order parameters: {side.value}, {market.coin}, {market.price_currency}, "
            f"{quantity}, {price}, {order_type.value}"
        )
        payer, open_orders_address = await asyncio.gather(
            self._payer_for(market, side), self._open_orders_account_to_use(market)
        )
        request = PlaceOrderRequest(
            market=market,
            side=side,
            price=price,
            quantity=quantity,
            order_type=order_type,
            client_id=resolved_client_id,
            payer=payer,
            open_orders_address=open_orders_address,
        )
        built = await self._sdk.build_place_order_transaction(info, self._wallet, request)

        def on_error(error: BaseException) -> None:
            logger.info(f"placeOrder failed for client id {resolved_client_id}: {error}")

        submission_id = await self._engine.send(
            built,
            kind="place_order",
            timeout_seconds=self._settings.transactions.place_order_confirm_timeout_seconds,
            on_error=on_error,
        )
        self._index.invalidate(market)
        if open_orders_address is None:
            # The transaction created a new open-orders account
            self._open_orders.invalidate()
        logger.info(f"Placed order {resolved_client_id} on {market.key}: {submission_id}")
        return str(resolved_client_id)

    async def _payer_for(self, market: Market, side: Side) -> str:
        """Account the order's funds are paid from."""
        if side == Side.SELL and market.coin == self._settings.native_coin:
            return self._wallet.address
        coin = market.coin if side == Side.SELL else market.price_currency
        accounts = await self._token_accounts.get(coin, self._settings.cache.token_accounts_max_age_seconds)
        if not accounts:
            raise TokenAccountNotFoundError(f"No token account for {coin}", market=market.key)
        return accounts[0].address

    async def _open_orders_account_to_use(self, market: Market) -> str | None:
        """First account by address, or None to have the SDK create one."""
        accounts = await self._resolver.candidate_accounts(market)
        if not accounts:
            return None
        return first_by_address(accounts).address

    async def cancel_order(self, order_id: str, market: Market, *, by_client_id: bool = True) -> str:
        """
        Cancel by client order id (default) or by exchange order id.

        Returns the submission id of the confirmed cancel transaction.
        """
        info = self.market_info(market)
        order_id = str(order_id)
        built: BuiltTransaction
        if by_client_id:
            _parse_client_id(order_id)
            target = await self._resolver.resolve(order_id, market)
            logger.info(f"Cancelling {order_id} using account {target.account_address}")
            built = await self._sdk.build_cancel_by_client_id_transaction(
                info, self._wallet, target.account_address, order_id
            )
        else:
            order = await self._resolver.resolve_order(order_id, market)
            logger.info(f"Cancelling {order_id} {market.key} using orderId {order.order_id}")
            built = await self._sdk.build_cancel_transaction(info, self._wallet, order)

        submission_id = await self._engine.send(built, kind="cancel")
        self._index.invalidate(market)
        logger.debug(f"Finished sending cancel transaction for {order_id}: {submission_id}")
        return submission_id

    async def get_own_orders(self, market: Market | None = None) -> dict[str, OwnOrder]:
        """Refresh and return resting orders keyed by order id (all markets when None)."""
        if market is None:
            return await self._index.refresh_all()
        self.market_info(market)
        return await self._index.refresh(market)

    # =========================================================================
    # Balances / settlement
    # =========================================================================

    async def get_balances(self) -> dict[str, Balance]:
        max_age = self._settings.cache.balances_max_age_seconds
        token_accounts, open_orders, lamports = await asyncio.gather(
            self._token_accounts.get_all(max_age),
            self._open_orders.get_all(max_age),
            self._rpc.get_balance(self._wallet.address),
        )

        totals: dict[str, list[Decimal]] = {}

        def add(coin: str, total: Decimal, free: Decimal) -> None:
            bucket = totals.setdefault(coin, [Decimal("0"), Decimal("0")])
            bucket[0] += total
            bucket[1] += free

        for coin, accounts in token_accounts.items():
            for account in accounts:
                add(coin, account.amount, account.amount)

        for market_key, accounts in open_orders.items():
            market = Market.from_key(market_key)
            for account in accounts:
                add(market.coin, account.base_total, account.base_free)
                add(market.price_currency, account.quote_total, account.quote_free)

        native = lamports_to_sol(lamports)
        add(self._settings.native_coin, native, native)

        return {
            coin: Balance(coin, self._settings.coin_mints.get(coin, ""), total, free)
            for coin, (total, free) in totals.items()
        }

    async def settle_funds(self, market: Market) -> list[str]:
        """
        Settle free funds of every open-orders account on the market.

        Returns the submission ids of the confirmed settle transactions.
        """
        info = self.market_info(market)
        accounts = await self._open_orders.get(market.key, 0)
        to_settle = [account for account in accounts if account.has_free_funds]
        if not to_settle:
            logger.info(f"Nothing to settle on {market.key}")
            return []

        base_wallet, quote_wallet = await self._settlement_wallets(market)
        logger.debug(f"Settling funds on {market.key} for {len(to_settle)} accounts")

        async def settle(account: OpenOrdersAccount) -> str:
            built = await self._sdk.build_settle_funds_transaction(
                info, self._wallet, account, base_wallet, quote_wallet
            )
            return await self._engine.send(built, kind="settle")

        try:
            return list(await asyncio.gather(*(settle(account) for account in to_settle)))
        finally:
            self._index.invalidate(market)
            self._open_orders.invalidate()
            self._token_accounts.invalidate()

    async def _settlement_wallets(self, market: Market) -> tuple[str, str]:
        max_age = self._settings.cache.balances_max_age_seconds
        if market.coin == self._settings.native_coin:
            base_wallet = self._wallet.address
        else:
            base_accounts = await self._token_accounts.get(market.coin, max_age)
            if not base_accounts:
                raise TokenAccountNotFoundError(f"No token account for {market.coin}", market=market.key)
            base_wallet = base_accounts[0].address
        quote_accounts = await self._token_accounts.get(market.price_currency, max_age)
        if not quote_accounts:
            raise TokenAccountNotFoundError(f"No token account for {market.price_currency}", market=market.key)
        return base_wallet, quote_accounts[0].address

    # =========================================================================
    # Market data
    # =========================================================================

    def get_market_info(self) -> dict[str, dict]:
        return {key: info.to_dict() for key, info in self._infos.items()}

    async def get_orderbook(self, market: Market) -> L2OrderBook:
        return await self._orderbooks.get(self.market_info(market))

    async def get_trades(self, market: Market | None = None) -> list[Trade]:
        """Taker-side fill events from the event queue."""
        if market is None:
            per_market = await asyncio.gather(*(self.get_trades(m) for m in self.markets))
            return [trade for trades in per_market for trade in trades]

        events = await self._sdk.load_fills(self.market_info(market))
        now = self._wall_clock()
        time_ms = int(now * 1000)
        return [
            Trade(
                market=market,
                trade_id=f"{event.order_id}|{event.quantity}|{time_ms}",
                order_id=event.order_id,
                side=event.side,
                price=event.price,
                quantity=event.quantity,
                time=now,
                info={**event.info, "openOrders": event.open_orders_address},
            )
            for event in events
            if not event.maker
        ]

    async def get_fills(self, market: Market | None = None) -> list[Fill]:
        """Fill events that belong to the wallet's open-orders accounts."""
        if market is None:
            per_market = await asyncio.gather(*(self.get_fills(m) for m in self.markets))
            return [fill for fills in per_market for fill in fills]

        info = self.market_info(market)
        events, accounts = await asyncio.gather(
            self._sdk.load_fills(info),
            self._open_orders.get(market.key, self._settings.cache.open_orders_max_age_seconds),
        )
        ours = {account.address for account in accounts}
        now = self._wall_clock()
        return [
            Fill(
                market=market,
                order_id=event.order_id,
                side=event.side,
                price=event.price,
                quantity=event.quantity,
                fee=event.fee,
                time=now,
                liquidity=Liquidity.MAKER if event.maker else Liquidity.TAKER,
                info={
                    **event.info,
                    "openOrders": event.open_orders_address,
                    "clientId": event.client_order_id or "",
                },
            )
            for event in events
            if event.open_orders_address in ours
        ]


def _parse_client_id(value: int | str) -> int:
    try:
        client_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid client order id: {value!r}") from None
    if client_id < 0 or client_id >= 1 << 64:
        raise ValidationError(f"Client order id out of range: {value!r}")
    return client_id
