"""HTTP API."""

from serum_gateway.api.server import GatewayApi, create_app

__all__ = ["GatewayApi", "create_app"]
