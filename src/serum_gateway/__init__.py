"""
Serum DEX REST gateway.

HTTP API for placing, cancelling and settling orders on a Serum order-book
market, with transaction confirmation and account caching.
"""

__version__ = "0.1.0"
