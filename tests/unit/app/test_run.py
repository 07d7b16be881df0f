"""
Unit tests for the server entry point helpers.
"""

from __future__ import annotations

import pytest

from serum_gateway.app.run import restart_delay_seconds, run_server
from serum_gateway.config.settings import ServerSettings, Settings


def test_restart_disabled_by_default():
    assert restart_delay_seconds(Settings()) is None


def test_restart_delay_adds_jitter():
    settings = Settings(server=ServerSettings(restart_interval_seconds=3600, restart_jitter_seconds=30))
    for _ in range(20):
        delay = restart_delay_seconds(settings)
        assert 3600 <= delay <= 3630


@pytest.mark.asyncio
async def test_incomplete_configuration_aborts_startup(monkeypatch):
    import serum_gateway.app.run as run_module

    settings = Settings()
    monkeypatch.setattr(run_module, "get_settings", lambda env: settings)
    monkeypatch.setattr(run_module, "setup_logging", lambda settings: None)

    assert await run_server("development") == 2
