"""Shared utility helpers."""

from serum_gateway.utils.decimals import safe_decimal
from serum_gateway.utils.ids import make_client_order_id
from serum_gateway.utils.json_parser import dumps as json_dumps
from serum_gateway.utils.json_parser import loads as json_loads

__all__ = ["make_client_order_id", "safe_decimal", "json_loads", "json_dumps"]
