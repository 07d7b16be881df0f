"""
Ports: Abstract interfaces for external dependencies.
"""

from serum_gateway.ports.dex import DexSdkPort
from serum_gateway.ports.rpc import RpcPort, Subscription

__all__ = ["DexSdkPort", "RpcPort", "Subscription"]
