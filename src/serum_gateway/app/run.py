"""
Entry points for gateway commands.

Each command sets up the environment and runs the appropriate logic.
"""

from __future__ import annotations

import asyncio
import contextlib
import random
import signal
import sys
from pathlib import Path

# Load .env file BEFORE importing settings
from dotenv import load_dotenv

for env_path in [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent.parent / ".env",
]:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()

from serum_gateway.config.settings import Settings, get_settings  # noqa: E402
from serum_gateway.observability.logging import get_logger, setup_logging  # noqa: E402


def _log_startup_banner(logger, *, env: str, settings: Settings) -> None:
    logger.warning("========================================================")
    logger.warning("STARTING SERUM GATEWAY")
    logger.warning(f"env={env} | rpc={settings.rpc.url} | port={settings.server.port}")
    logger.warning(f"markets: {', '.join(m.name for m in settings.markets) or '-'}")
    logger.warning(
        "transactions: "
        f"confirm_timeout={settings.transactions.confirm_timeout_seconds}s "
        f"poll={settings.transactions.poll_interval_seconds}s "
        f"resend={settings.transactions.resend_interval_seconds}s "
        f"max_resends={settings.transactions.max_resends}"
    )
    logger.warning("========================================================")


def restart_delay_seconds(settings: Settings) -> float | None:
    """Seconds until the scheduled restart, or None when restarts are disabled."""
    interval = settings.server.restart_interval_seconds
    if interval <= 0:
        return None
    return interval + random.uniform(0, settings.server.restart_jitter_seconds)


async def run_server(env: str = "development") -> int:
    """
    Serve the HTTP API until a signal or the scheduled restart.

    Returns:
        Exit code: 0 = clean stop, 1 = fatal error, 2 = configuration error,
        3 = scheduled restart (the process supervisor starts a fresh instance).
    """
    settings = get_settings(env)

    setup_logging(settings)
    logger = get_logger(__name__)

    _log_startup_banner(logger, env=env, settings=settings)

    errors = settings.validate_for_serving()
    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Aborting startup due to configuration errors.")
        return 2

    from serum_gateway.adapters.rpc import SolanaRpcClient
    from serum_gateway.adapters.sdk import load_sdk
    from serum_gateway.api.server import GatewayApi
    from serum_gateway.services.exchange import SerumExchange

    rpc = SolanaRpcClient(settings.rpc)
    exchange: SerumExchange | None = None
    api: GatewayApi | None = None

    shutdown_event = asyncio.Event()
    received_signal: list[str] = []
    restart_requested = False

    def handle_signal(sig: signal.Signals) -> None:
        received_signal.append(sig.name)
        shutdown_event.set()

    if sys.platform == "win32":
        def win_handler(signum: int, frame) -> None:
            received_signal.append(f"signal-{signum}")
            shutdown_event.set()

        signal.signal(signal.SIGINT, win_handler)
        signal.signal(signal.SIGTERM, win_handler)
    else:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    restart_timer: asyncio.TimerHandle | None = None

    try:
        await rpc.initialize()
        sdk = load_sdk(settings.sdk.factory, rpc, settings)
        exchange = await SerumExchange.create(rpc, sdk, settings)

        api = GatewayApi(exchange, settings.server.host, settings.server.port)
        await api.start()

        delay = restart_delay_seconds(settings)
        if delay is not None:
            logger.info(f"Scheduled restart in {delay:.0f}s")

            def request_restart() -> None:
                nonlocal restart_requested
                restart_requested = True
                shutdown_event.set()

            restart_timer = asyncio.get_running_loop().call_later(delay, request_restart)

        await shutdown_event.wait()

        if received_signal:
            logger.info(f"Received {received_signal[0]}, initiating shutdown...")
        elif restart_requested:
            logger.info("Restart interval elapsed, shutting down for restart")

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown signal received, shutting down...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        if restart_timer is not None:
            restart_timer.cancel()
        if api is not None:
            with contextlib.suppress(Exception):
                await api.stop()
        if exchange is not None:
            with contextlib.suppress(Exception):
                await exchange.close()
        with contextlib.suppress(Exception):
            await rpc.close()

    logger.info("Gateway stopped cleanly")
    return 3 if restart_requested else 0


async def run_doctor(env: str = "development") -> int:
    """Run preflight checks."""
    settings = get_settings(env)
    setup_logging(settings)
    logger = get_logger(__name__)

    logger.info("Running preflight checks...")

    checks_passed = 0
    checks_failed = 0

    # Check 1: configuration
    errors = settings.validate_for_serving()
    if errors:
        for error in errors:
            logger.error(f"[FAIL] {error}")
        checks_failed += 1
    else:
        logger.info("[OK] Configuration complete")
        checks_passed += 1

    # Check 2: RPC reachability
    from serum_gateway.adapters.rpc import SolanaRpcClient

    rpc = SolanaRpcClient(settings.rpc)
    try:
        reference = await rpc.get_recent_block_reference()
        logger.info(f"[OK] RPC reachable at {settings.rpc.url} (blockhash {reference.value[:8]}...)")
        checks_passed += 1
    except Exception as e:
        logger.error(f"[FAIL] RPC not reachable at {settings.rpc.url}: {e}")
        checks_failed += 1
    finally:
        with contextlib.suppress(Exception):
            await rpc.close()

    # Check 3: Logs directory
    logs_dir = Path(settings.logging.dir or "logs")
    if not logs_dir.exists():
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.info("[OK] Logs directory created")
    else:
        logger.info("[OK] Logs directory exists")
    checks_passed += 1

    logger.info(f"Preflight: {checks_passed} passed, {checks_failed} failed")

    return 0 if checks_failed == 0 else 1
