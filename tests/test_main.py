"""Tests for the standalone application entry point."""
import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest

from voteshare.config.settings import VoteShareSettings
from voteshare.main import VoteShareApplication, setup_logging
from voteshare.service import VoteShareService


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    @pytest.mark.parametrize("fmt", ["json", "text"])
    def test_configures_root_logger(self, fmt):
        setup_logging("DEBUG", fmt)
        assert logging.getLogger().level == logging.DEBUG


class TestApplication:
    @pytest.mark.asyncio
    async def test_initialize_builds_service(self):
        app = VoteShareApplication(VoteShareSettings(mode="BROADCAST", log_format="text"))
        await app.initialize()
        assert isinstance(app.service, VoteShareService)
        assert app.service.mode.value == "BROADCAST"

    @pytest.mark.asyncio
    async def test_run_returns_on_shutdown_request(self):
        app = VoteShareApplication(VoteShareSettings(log_format="text"))
        await app.initialize()

        with patch.object(VoteShareService, "start", AsyncMock()), \
                patch.object(VoteShareService, "stop", AsyncMock()) as stop:
            runner = asyncio.create_task(app.run())
            await asyncio.sleep(0.01)
            app.request_shutdown()
            await asyncio.wait_for(runner, timeout=1.0)
            await app.shutdown()

        stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_returns_when_service_requests_stop(self):
        app = VoteShareApplication(VoteShareSettings(log_format="text"))
        await app.initialize()

        with patch.object(VoteShareService, "start", AsyncMock()):
            runner = asyncio.create_task(app.run())
            await asyncio.sleep(0.01)
            app.service.stop_requested.set()
            await asyncio.wait_for(runner, timeout=1.0)
