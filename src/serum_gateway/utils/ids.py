"""Client order id generation."""

from __future__ import annotations

import secrets


def make_client_order_id(bits: int = 64) -> int:
    """Random `bits`-wide id with the top bit set, so it always has full width."""
    if bits < 2:
        raise ValueError("bits must be at least 2")
    return (1 << (bits - 1)) | secrets.randbits(bits - 1)
