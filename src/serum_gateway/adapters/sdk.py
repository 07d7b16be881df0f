"""
Exchange SDK binding.

The order-book program client is supplied by the deployment as an import path
("package.module:callable"). The callable receives the RPC port and settings
and returns a DexSdkPort.
"""

from __future__ import annotations

import importlib

from serum_gateway.config.settings import Settings
from serum_gateway.domain.errors import ConfigurationError
from serum_gateway.observability.logging import get_logger
from serum_gateway.ports.dex import DexSdkPort
from serum_gateway.ports.rpc import RpcPort

logger = get_logger(__name__)


def load_sdk(factory_path: str, rpc: RpcPort, settings: Settings) -> DexSdkPort:
    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"sdk.factory must look like 'package.module:callable', got {factory_path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import SDK module {module_name!r}: {e}") from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"SDK factory {factory_path!r} is not callable")

    sdk = factory(rpc, settings)
    if not isinstance(sdk, DexSdkPort):
        raise ConfigurationError(f"SDK factory {factory_path!r} returned {type(sdk).__name__}, not a DexSdkPort")

    logger.info(f"Loaded exchange SDK from {factory_path}")
    return sdk
