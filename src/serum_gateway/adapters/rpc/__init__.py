"""Solana JSON-RPC adapter (HTTP requests + websocket subscriptions)."""

from serum_gateway.adapters.rpc.client import SolanaRpcClient
from serum_gateway.adapters.rpc.http import JsonRpcHttpClient
from serum_gateway.adapters.rpc.ws import WsSubscriptionClient

__all__ = ["JsonRpcHttpClient", "SolanaRpcClient", "WsSubscriptionClient"]
