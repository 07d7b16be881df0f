"""
HTTP API.

Every route answers 200 with either {"status": "ok", "data": ...} or
{"status": "error", "message": ...}; errors never escape as HTTP failures.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from serum_gateway.domain.errors import DomainError, ValidationError
from serum_gateway.domain.models import Market, OrderType, Side
from serum_gateway.observability.logging import LOG_TAG_HTTP, get_logger
from serum_gateway.observability.metrics import record_http_request
from serum_gateway.services.exchange import SerumExchange
from serum_gateway.utils import json_dumps
from serum_gateway.utils.decimals import parse_positive_decimal

logger = get_logger(__name__)

EXCHANGE_KEY: web.AppKey[SerumExchange] = web.AppKey("exchange", SerumExchange)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def ok(data: Any = None) -> web.Response:
    return web.Response(
        text=json_dumps({"status": "ok", "data": {} if data is None else data}),
        content_type="application/json",
    )


def error(message: str) -> web.Response:
    return web.Response(
        text=json_dumps({"status": "error", "message": message}),
        content_type="application/json",
    )


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Convert every failure into an error envelope and log the request."""
    route = request.match_info.route.resource.canonical if request.match_info.route.resource else request.path
    started = time.perf_counter()
    try:
        response = await handler(request)
    except web.HTTPException:
        raise
    except DomainError as e:
        logger.error(f"{request.method} {request.path} failed: {e.error_code}: {e.message}")
        record_http_request(route, success=False)
        return error(e.message)
    except Exception as e:
        logger.exception(f"{request.method} {request.path} failed: {e}")
        record_http_request(route, success=False)
        return error(str(e) or type(e).__name__)

    record_http_request(route, success=True)
    logger.info(f"{LOG_TAG_HTTP} {request.method} {request.path} {response.status} {time.perf_counter() - started:.3f}s")
    return response


def _market_from_path(request: web.Request) -> Market:
    return Market(request.match_info["coin"], request.match_info["quote"])


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body is not valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


class GatewayApi:
    def __init__(self, exchange: SerumExchange, host: str = "0.0.0.0", port: int = 3000):
        self.exchange = exchange
        self.host = host
        self.port = port
        self.app = create_app(exchange)
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"Serum gateway listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            self.site = None


def create_app(exchange: SerumExchange) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[EXCHANGE_KEY] = exchange

    app.router.add_get("/", handle_index)
    app.router.add_get("/metrics", handle_metrics)
    app.router.add_get("/market_info", handle_market_info)
    app.router.add_get("/orderbook/{coin}-{quote}", handle_orderbook)
    app.router.add_get("/trades", handle_trades)
    app.router.add_get("/trades/{coin}-{quote}", handle_trades)
    app.router.add_get("/own_orders", handle_own_orders)
    app.router.add_get("/own_orders/{coin}-{quote}", handle_own_orders)
    app.router.add_get("/fills", handle_fills)
    app.router.add_get("/fills/{coin}-{quote}", handle_fills)
    app.router.add_get("/balances", handle_balances)
    app.router.add_post("/place_order", handle_place_order)
    app.router.add_post("/cancel", handle_cancel)
    app.router.add_post("/settle", handle_settle)
    return app


# =============================================================================
# Handlers
# =============================================================================


async def handle_index(request: web.Request) -> web.Response:
    return web.Response(text="Hello from the Serum rest server!")


async def handle_metrics(request: web.Request) -> web.Response:
    response = web.Response(body=generate_latest())
    response.headers["Content-Type"] = CONTENT_TYPE_LATEST
    return response


async def handle_market_info(request: web.Request) -> web.Response:
    return ok(request.app[EXCHANGE_KEY].get_market_info())


async def handle_orderbook(request: web.Request) -> web.Response:
    book = await request.app[EXCHANGE_KEY].get_orderbook(_market_from_path(request))
    return ok(book.to_dict())


async def handle_trades(request: web.Request) -> web.Response:
    market = _market_from_path(request) if "coin" in request.match_info else None
    logger.info(f"Received request to get trades for {market or 'all markets'}")
    trades = await request.app[EXCHANGE_KEY].get_trades(market)
    return ok([trade.to_dict() for trade in trades])


async def handle_own_orders(request: web.Request) -> web.Response:
    market = _market_from_path(request) if "coin" in request.match_info else None
    orders = await request.app[EXCHANGE_KEY].get_own_orders(market)
    return ok({"orders": {order_id: order.to_dict() for order_id, order in orders.items()}})


async def handle_fills(request: web.Request) -> web.Response:
    market = _market_from_path(request) if "coin" in request.match_info else None
    fills = await request.app[EXCHANGE_KEY].get_fills(market)
    return ok([fill.to_dict() for fill in fills])


async def handle_balances(request: web.Request) -> web.Response:
    balances = await request.app[EXCHANGE_KEY].get_balances()
    return ok({coin: balance.to_dict() for coin, balance in balances.items()})


async def handle_place_order(request: web.Request) -> web.Response:
    body = await _json_body(request)
    logger.info(f"Received request to place order: {json_dumps(body)}")

    for field in ("side", "coin", "priceCurrency", "quantity", "price"):
        if body.get(field) in (None, ""):
            raise ValidationError(f"{field} parameter missing from place_order request")
    try:
        side = Side.from_string(body["side"])
        order_type = OrderType.from_string(body.get("orderType"))
        quantity = parse_positive_decimal(body["quantity"], "quantity")
        price = parse_positive_decimal(body["price"], "price")
    except ValueError as e:
        raise ValidationError(str(e)) from None

    client_id = await request.app[EXCHANGE_KEY].place_order(
        side,
        Market(body["coin"], body["priceCurrency"]),
        quantity,
        price,
        order_type,
        client_id=body.get("clientId"),
    )
    return ok({"id": client_id})


async def handle_cancel(request: web.Request) -> web.Response:
    body = await _json_body(request)
    coin = body.get("coin")
    price_currency = body.get("priceCurrency")
    order_id = body.get("orderId")
    client_order_id = body.get("clientOrderId")

    if not coin:
        return error("Coin parameter missing from cancel request")
    if not price_currency:
        return error("Price currency parameter missing from cancel request")
    if not order_id and not client_order_id:
        return error("Order id and client order id missing from cancel request")

    market = Market(coin, price_currency)
    if client_order_id:
        await request.app[EXCHANGE_KEY].cancel_order(str(client_order_id), market, by_client_id=True)
    else:
        await request.app[EXCHANGE_KEY].cancel_order(str(order_id), market, by_client_id=False)
    return ok()


async def handle_settle(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if not body.get("coin") or not body.get("priceCurrency"):
        return error("Coin and price currency are required to settle funds")
    await request.app[EXCHANGE_KEY].settle_funds(Market(body["coin"], body["priceCurrency"]))
    return ok()
