"""JSON parsing utilities."""

import json
from decimal import Decimal
from typing import Any


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # Serum amounts are reported as plain JSON numbers
        return float(obj)
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dumps(obj, **kwargs) -> str:
    """Serialize obj to a JSON formatted str, Decimal aware."""
    kwargs.setdefault("default", _default)
    return json.dumps(obj, **kwargs)


def loads(s, **kwargs):
    """Deserialize s (a str, bytes or bytearray instance containing a JSON document) to a Python object."""
    return json.loads(s, **kwargs)
