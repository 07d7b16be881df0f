"""
Settings management using Pydantic.

Loads configuration from config.yaml and environment variables.
Environment variables override YAML values.
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RpcSettings(BaseModel):
    """Network RPC endpoint settings."""

    url: str = "https://api.mainnet-beta.solana.com"
    # Derived from url when empty (http -> ws, https -> wss)
    ws_url: str = ""
    commitment: str = "confirmed"
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    # HTTP 429 handling: retry with doubling backoff
    max_rate_limit_retries: int = Field(default=5, ge=0)
    rate_limit_initial_backoff_seconds: float = Field(default=0.5, ge=0)
    ws_reconnect_delay_seconds: float = 1.0
    ws_max_reconnect_delay_seconds: float = 30.0

    @property
    def resolved_ws_url(self) -> str:
        if self.ws_url:
            return self.ws_url
        if self.url.startswith("https://"):
            return "wss://" + self.url[len("https://") :]
        if self.url.startswith("http://"):
            return "ws://" + self.url[len("http://") :]
        return self.url


class WalletSettings(BaseModel):
    """Signing key settings. The key itself is never logged."""

    private_key: str = Field(default="", repr=False)
    secrets_file: str = ""
    secrets_key: str = "serum_private_key"


class SdkSettings(BaseModel):
    """Exchange SDK binding."""

    # "package.module:callable", called as factory(rpc, settings) -> DexSdkPort
    factory: str = ""


class MarketSettings(BaseModel):
    """One tradable market."""

    name: str
    address: str
    program_id: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        coin, sep, quote = value.partition("/")
        if not sep or not coin or not quote:
            raise ValueError(f"market name must look like COIN/QUOTE, got {value!r}")
        return value


class TransactionSettings(BaseModel):
    """Submit / confirm / resend timing."""

    confirm_timeout_seconds: float = Field(default=15.0, gt=0)
    place_order_confirm_timeout_seconds: float = Field(default=5.0, gt=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    resend_interval_seconds: float = Field(default=5.0, gt=0)
    max_resends: int = Field(default=2, ge=0)


class CacheSettings(BaseModel):
    """Cache freshness thresholds."""

    # Hard TTL; background refresh starts at half of it
    block_reference_ttl_seconds: float = Field(default=60.0, gt=0)
    open_orders_max_age_seconds: float = 60.0
    token_accounts_max_age_seconds: float = 600.0
    balances_max_age_seconds: float = 60.0


class ServerSettings(BaseModel):
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    # 0 disables the periodic restart
    restart_interval_seconds: int = 0
    restart_jitter_seconds: int = 30


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    dir: str = "logs"
    json_enabled: bool = False
    json_file: str = "logs/serum_gateway.jsonl"
    # Set to 0 to disable rotation.
    json_max_bytes: int = 50_000_000
    json_backup_count: int = 3
    # Hourly rotated files kept per level in prod
    file_backup_count: int = 72


class Settings(BaseSettings):
    """
    Main settings container.

    Loads from YAML, then applies env var overrides.
    """

    env: str = "development"

    rpc: RpcSettings = Field(default_factory=RpcSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    sdk: SdkSettings = Field(default_factory=SdkSettings)
    markets: list[MarketSettings] = Field(default_factory=list)
    coin_mints: dict[str, str] = Field(default_factory=dict)
    native_coin: str = "SOL"
    transactions: TransactionSettings = Field(default_factory=TransactionSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "env_prefix": "GATEWAY_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("prod", "production")

    @property
    def mint_coins(self) -> dict[str, str]:
        return {mint: coin for coin, mint in self.coin_mints.items()}

    def validate_for_serving(self) -> list[str]:
        """
        Validate that everything needed to serve requests is configured.

        Returns:
            List of validation error messages. Empty list means all validations passed.
        """
        errors = []

        if not self.rpc.url:
            errors.append("rpc.url is required")

        if not self.wallet.private_key:
            errors.append(
                "wallet.private_key is required (set SERUM_PRIVATE_KEY or SECRETS_FILE)"
            )

        if not self.sdk.factory or ":" not in self.sdk.factory:
            errors.append("sdk.factory must be an import path like 'package.module:callable'")

        if not self.markets:
            errors.append("at least one market must be configured")

        for market in self.markets:
            coin, _, quote = market.name.partition("/")
            for symbol in (coin, quote):
                if symbol not in self.coin_mints:
                    errors.append(f"coin_mints has no mint for {symbol} (market {market.name})")

        tx = self.transactions
        if tx.poll_interval_seconds >= tx.confirm_timeout_seconds:
            errors.append("transactions.poll_interval_seconds must be below confirm_timeout_seconds")

        return errors

    @classmethod
    def from_yaml(cls, env: str = "development", path: Path | None = None) -> Settings:
        """
        Load settings from config.yaml next to this module (or `path`).

        Recognised plain environment variables (service deployment contract):
        SOLANA_URL, SOLANA_WS_URL, SERUM_PRIVATE_KEY, SECRETS_FILE, PORT,
        LOGGING_DIR, RESTART_INTERVAL_SEC.
        """
        yaml_file = path or Path(__file__).parent / "config.yaml"

        data: dict = {}
        if yaml_file.exists():
            with open(yaml_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        for section in ("rpc", "wallet", "server", "logging"):
            if not isinstance(data.get(section), dict):
                data[section] = {}

        if os.getenv("SOLANA_URL"):
            data["rpc"]["url"] = os.getenv("SOLANA_URL")
        if os.getenv("SOLANA_WS_URL"):
            data["rpc"]["ws_url"] = os.getenv("SOLANA_WS_URL")
        if os.getenv("PORT"):
            data["server"]["port"] = int(os.getenv("PORT"))
        if os.getenv("RESTART_INTERVAL_SEC"):
            data["server"]["restart_interval_seconds"] = int(os.getenv("RESTART_INTERVAL_SEC"))
        if os.getenv("LOGGING_DIR"):
            data["logging"]["dir"] = os.getenv("LOGGING_DIR")
        if os.getenv("SECRETS_FILE"):
            data["wallet"]["secrets_file"] = os.getenv("SECRETS_FILE")
        if os.getenv("SERUM_PRIVATE_KEY"):
            data["wallet"]["private_key"] = os.getenv("SERUM_PRIVATE_KEY")

        wallet = data["wallet"]
        if not wallet.get("private_key") and wallet.get("secrets_file"):
            wallet["private_key"] = _read_secret(
                Path(wallet["secrets_file"]), wallet.get("secrets_key") or "serum_private_key"
            )

        data["env"] = env

        _warn_unknown_keys(data, cls)

        return cls(**data)


def _read_secret(path: Path, key: str) -> str:
    """Read one key from a JSON secrets file."""
    with open(path, encoding="utf-8") as f:
        secrets = json.load(f)
    value = secrets.get(key)
    if value is None:
        raise ValueError(f"Secrets file {path} has no '{key}' entry")
    # Keys are stored either as a string or as a JSON byte array
    if isinstance(value, list):
        return json.dumps(value)
    return str(value)


def _collect_all_keys(data: dict, prefix: str = "") -> set[str]:
    """
    Recursively collect all keys from a nested dict.

    Returns keys in dot-notation format (e.g., "cache.open_orders_max_age_seconds").
    """
    keys = set()
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else key
        keys.add(full_key)
        if isinstance(value, dict) and key != "coin_mints":
            keys.update(_collect_all_keys(value, full_key))
    return keys


def _collect_model_fields(model_class: type[BaseModel], prefix: str = "") -> set[str]:
    """Recursively collect all field names from a Pydantic model."""
    fields = set()
    for field_name, field_info in model_class.model_fields.items():
        full_key = f"{prefix}.{field_name}" if prefix else field_name
        fields.add(full_key)
        annotation = field_info.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            fields.update(_collect_model_fields(annotation, full_key))
    return fields


def _warn_unknown_keys(data: dict, model_class: type[BaseModel]) -> None:
    """
    Warn about unknown keys in YAML config that don't match model fields.

    This prevents silent config bugs where typos in key names are ignored.
    """
    unknown_keys = _collect_all_keys(data) - _collect_model_fields(model_class)

    if unknown_keys:
        logger.warning(
            f"Unknown configuration keys found (will be ignored due to extra='ignore'): {sorted(unknown_keys)}. "
            f"This may indicate typos in config.yaml or outdated config keys."
        )


@lru_cache(maxsize=4)
def get_settings(env: str | None = None) -> Settings:
    """Get cached settings instance."""
    resolved_env = env or os.getenv("ENVIRONMENT", "development")
    return Settings.from_yaml(env=resolved_env)
