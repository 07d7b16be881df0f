"""
Cancel target resolution.

Decides which open-orders account a cancellation is sent against. When the
order is not in the Own-Order Index (or its account is no longer among the
market's accounts) the account with the lexicographically smallest address
is used. That mirrors how accounts are picked when placing orders, but it is
a guess: with several accounts per market the cancel may target the wrong
one and be rejected by the network.
"""

from __future__ import annotations

from serum_gateway.domain.errors import NoTargetAccountError, OrderNotFoundError
from serum_gateway.domain.models import CancelTarget, Market, OpenOrdersAccount, OwnOrder
from serum_gateway.observability.logging import get_logger
from serum_gateway.observability.metrics import record_cancel_fallback
from serum_gateway.services.cache.keyed import KeyedTtlCache
from serum_gateway.services.own_orders import OwnOrderIndex

logger = get_logger(__name__)


def first_by_address(accounts: list[OpenOrdersAccount]) -> OpenOrdersAccount:
    """Deterministic pick: lexicographically smallest address."""
    return min(accounts, key=lambda account: account.address)


class CancelTargetResolver:
    def __init__(
        self,
        open_orders: KeyedTtlCache[str, OpenOrdersAccount],
        index: OwnOrderIndex,
        *,
        max_age_seconds: float = 60.0,
    ):
        self._open_orders = open_orders
        self._index = index
        self._max_age_seconds = max_age_seconds

    async def candidate_accounts(self, market: Market) -> list[OpenOrdersAccount]:
        """Open-orders accounts of the market; one forced re-read when none are cached."""
        accounts = await self._open_orders.get(market.key, self._max_age_seconds)
        if not accounts:
            # An account may have been created since the last read
            accounts = await self._open_orders.get(market.key, 0)
        return accounts

    async def resolve(self, order_id_or_client_id: str, market: Market) -> CancelTarget:
        """
        Pick the account to cancel against.

        Raises:
            NoTargetAccountError: the wallet has no open-orders account on the market.
        """
        accounts = await self.candidate_accounts(market)
        if not accounts:
            raise NoTargetAccountError(
                f"Could not find an open orders account for market {market.key}",
                market=market.key,
            )

        order = self._index.lookup(order_id_or_client_id, market)
        if order is not None:
            for account in accounts:
                if account.address == order.open_orders_address:
                    return CancelTarget(account.address, order, used_fallback=False)

        # Not indexed (or stale): refresh for next time, guess now
        self._index.schedule_refresh(market)
        account = first_by_address(accounts)
        record_cancel_fallback(market.key)
        logger.info(
            f"Order {order_id_or_client_id} not found in own orders for {market.key}; "
            f"using {account.address} as cancel target"
        )
        return CancelTarget(account.address, order, used_fallback=True)

    async def resolve_order(self, order_id: str, market: Market) -> OwnOrder:
        """
        Full order record, needed to cancel by exchange order id.

        Raises:
            OrderNotFoundError: not indexed even after an awaited refresh.
        """
        order = self._index.lookup(order_id, market)
        if order is not None:
            return order

        await self._index.refresh(market)
        order = self._index.lookup(order_id, market)
        if order is None:
            raise OrderNotFoundError(
                "Could not find order for cancellation.",
                market=market.key,
                details={"order_id": order_id},
            )
        return order
