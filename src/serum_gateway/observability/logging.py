"""
Structured logging setup.

Console output with colours, hourly rotated per-level files in production,
optional JSON lines, and masking of wallet secrets everywhere.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from serum_gateway.config.settings import Settings

# =============================================================================
# Constants
# =============================================================================

# Log tags for special message handling
LOG_TAG_TX = "[TX]"
LOG_TAG_CACHE = "[CACHE]"
LOG_TAG_HTTP = "[HTTP]"

__all__ = [
    "setup_logging",
    "get_logger",
    "SensitiveDataFilter",
    "JSONFormatter",
    "GatewayLogFormatter",
    "LOG_TAG_TX",
    "LOG_TAG_CACHE",
    "LOG_TAG_HTTP",
]


class SensitiveDataFilter(logging.Filter):
    """Filter that masks wallet secrets in log messages."""

    SENSITIVE_PATTERNS = [
        # private_key: "base58..." / 'private_key': '...'
        (
            re.compile(r"(private[_-]?key['\"]?\s*[:=]\s*['\"]?)([1-9A-HJ-NP-Za-km-z]{32,}|0x[a-fA-F0-9]{32,})(['\"]?)", re.IGNORECASE),
            r"\1***MASKED***\3",
        ),
        # serum_private_key: [12, 34, ...] secret byte arrays
        (
            re.compile(r"(private[_-]?key['\"]?\s*[:=]\s*)\[[\d,\s]{32,}\]", re.IGNORECASE),
            r"\1***MASKED***",
        ),
        (re.compile(r"(secret['\"]?\s*[:=]\s*['\"]?)([a-zA-Z0-9]{16,})(['\"]?)", re.IGNORECASE), r"\1***MASKED***\3"),
        (re.compile(r"(api[_-]?key['\"]?\s*[:=]\s*['\"]?)([a-zA-Z0-9]{16,})(['\"]?)", re.IGNORECASE), r"\1***MASKED***\3"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        original_msg = str(record.getMessage())
        masked_msg = original_msg

        for pattern, replacement in self.SENSITIVE_PATTERNS:
            masked_msg = pattern.sub(replacement, masked_msg)

        if masked_msg != original_msg:
            record.msg = masked_msg
            record.args = ()

        return True


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder for Decimal and other types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "__dict__"):
            return str(obj)
        return super().default(obj)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    EXTRA_FIELDS = ("market", "submission_id", "client_order_id", "cache", "error_code")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, cls=DecimalEncoder)


def _hourly_handler(
    logs_dir: Path,
    name: str,
    level: int,
    backup_count: int,
    sensitive_filter: logging.Filter,
) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        logs_dir / f"{name}.log",
        when="H",
        interval=1,
        backupCount=backup_count,
        encoding="utf-8",
        utc=True,
    )
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    handler.addFilter(sensitive_filter)
    return handler


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """
    Set up logging with console and file handlers.

    In production, ERROR / INFO / DEBUG go to separate hourly rotated files
    under `settings.logging.dir`; elsewhere only the console is used.

    Returns the root logger.
    """
    if settings is None:
        from serum_gateway.config.settings import get_settings

        settings = get_settings()

    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.is_production else level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    sensitive_filter = SensitiveDataFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(GatewayLogFormatter())
    console_handler.addFilter(sensitive_filter)
    root_logger.addHandler(console_handler)

    if settings.is_production:
        logs_dir = Path(settings.logging.dir or "logs")
        logs_dir.mkdir(parents=True, exist_ok=True)
        backups = settings.logging.file_backup_count
        root_logger.addHandler(_hourly_handler(logs_dir, "error", logging.ERROR, backups, sensitive_filter))
        root_logger.addHandler(_hourly_handler(logs_dir, "info", logging.INFO, backups, sensitive_filter))
        root_logger.addHandler(_hourly_handler(logs_dir, "debug", logging.DEBUG, backups, sensitive_filter))

    if settings.logging.json_enabled:
        json_path = Path(settings.logging.json_file)
        json_path.parent.mkdir(parents=True, exist_ok=True)

        max_bytes = int(settings.logging.json_max_bytes or 0)
        backup_count = int(settings.logging.json_backup_count or 0)
        if max_bytes > 0 and backup_count > 0:
            json_handler = RotatingFileHandler(
                json_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        else:
            json_handler = logging.FileHandler(json_path, encoding="utf-8")
        json_handler.setLevel(level)
        json_handler.setFormatter(JSONFormatter())
        json_handler.addFilter(sensitive_filter)
        root_logger.addHandler(json_handler)

    # Reduce noise from verbose libraries
    for lib in ["websockets", "asyncio", "aiohttp.access"]:
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)


class GatewayLogFormatter(logging.Formatter):
    """
    Console formatter with colours.

    Special tags:
    - [TX]: Cyan
    - [HTTP]: Blue
    - [CACHE]: Grey (dimmed)
    """

    # ANSI Colors
    RESET = "\033[0m"
    GREY = "\033[90m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BOLD_RED = "\033[1;91m"
    CYAN = "\033[96m"
    BLUE = "\033[94m"

    def __init__(self):
        super().__init__(datefmt="%H:%M:%S")
        self._formatters: dict[str, logging.Formatter] = {
            "DEBUG": logging.Formatter(f"{self.GREY}%(asctime)s [DEBUG] %(message)s{self.RESET}", datefmt="%H:%M:%S"),
            "INFO": logging.Formatter(f"{self.GREEN}%(asctime)s [INFO]{self.RESET} %(message)s", datefmt="%H:%M:%S"),
            "WARNING": logging.Formatter(
                f"{self.YELLOW}%(asctime)s [WARN] %(message)s{self.RESET}", datefmt="%H:%M:%S"
            ),
            "ERROR": logging.Formatter(f"{self.RED}%(asctime)s [ERROR] %(message)s{self.RESET}", datefmt="%H:%M:%S"),
            "CRITICAL": logging.Formatter(
                f"{self.BOLD_RED}%(asctime)s [CRITICAL] %(message)s{self.RESET}", datefmt="%H:%M:%S"
            ),
            "TX": logging.Formatter(f"{self.CYAN}%(asctime)s [TX]{self.RESET} %(message)s", datefmt="%H:%M:%S"),
            "HTTP": logging.Formatter(f"{self.BLUE}%(asctime)s [HTTP]{self.RESET} %(message)s", datefmt="%H:%M:%S"),
            "CACHE": logging.Formatter(f"{self.GREY}%(asctime)s [CACHE] %(message)s{self.RESET}", datefmt="%H:%M:%S"),
        }

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()

        # Warnings and errors keep their level colour even when tagged
        if record.levelno < logging.WARNING:
            for tag, key in ((LOG_TAG_TX, "TX"), (LOG_TAG_HTTP, "HTTP"), (LOG_TAG_CACHE, "CACHE")):
                if tag in msg:
                    record.msg = msg.replace(tag, "").strip()
                    record.args = ()
                    return self._formatters[key].format(record)

        formatter_key = record.levelname if record.levelname in self._formatters else "INFO"
        return self._formatters[formatter_key].format(record)
