"""Voteshare - Main Application Entry Point.

Runs one relay node standalone:
1. Configuration loading
2. Logging
3. Observability (metrics server, optional)
4. Relay service (broker pool + broadcast or receive pipeline)

Embedding hosts (game-server bridges) skip this module and drive
:class:`voteshare.service.VoteShareService` directly through its
start/stop and on_vote/on_plugin_disabled hooks.
"""

import asyncio
import json
import logging
import logging.config
import signal
from typing import Optional

from voteshare import __version__
from voteshare.config.settings import VoteShareSettings, get_settings
from voteshare.observability.metrics import VoteShareMetrics
from voteshare.service import VoteShareService


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(log_level: str = "INFO", log_format: str = "json"):
    """Setup structured logging.

    Two modes are supported:
    - ``json``  -- machine-parseable JSON-ish format (default)
    - ``text``  -- human-readable format for local development

    Args:
        log_level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: ``"json"`` or ``"text"``.
    """
    if log_format == "json":
        formatter = {
            "class": "logging.Formatter",
            "format": json.dumps({
                "time": "%(asctime)s",
                "level": "%(levelname)s",
                "module": "%(name)s",
                "message": "%(message)s",
            }),
        }
    else:
        formatter = {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    })


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application orchestrator
# ---------------------------------------------------------------------------

class VoteShareApplication:
    """Standalone relay node.

    Usage::

        app = VoteShareApplication()
        await app.initialize()
        await app.run()        # blocks until shutdown signal
        await app.shutdown()
    """

    def __init__(self, settings: Optional[VoteShareSettings] = None):
        self._settings = settings
        self._metrics: Optional[VoteShareMetrics] = None
        self._service: Optional[VoteShareService] = None
        self._shutdown_event = asyncio.Event()

    @property
    def service(self) -> Optional[VoteShareService]:
        return self._service

    def request_shutdown(self):
        self._shutdown_event.set()

    async def initialize(self):
        """Load configuration, set up logging and metrics, build the service."""
        if self._settings is None:
            self._settings = get_settings()
        setup_logging(self._settings.log_level, self._settings.log_format)

        logger.info("Voteshare %s - starting up", __version__)
        logger.info(
            "Broker: %s:%d", self._settings.redis_host, self._settings.redis_port
        )

        if self._settings.metrics_enabled:
            self._metrics = VoteShareMetrics()
            self._metrics.start_server(self._settings.prometheus_port)
            self._metrics.set_build_info(__version__, self._settings.mode)

        self._service = VoteShareService(self._settings, metrics=self._metrics)

    async def run(self):
        """Start the relay and block until shutdown is requested."""
        await self._service.start()

        stop_requested = asyncio.create_task(self._service.stop_requested.wait())
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        done, pending = await asyncio.wait(
            {stop_requested, shutdown},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()

        if stop_requested in done:
            logger.info("Relay service requested shutdown")

    async def shutdown(self):
        """Stop the relay service."""
        logger.info("Voteshare shutting down")
        if self._service:
            try:
                await self._service.stop()
            except Exception as exc:
                logger.error("Error stopping relay service: %s", exc)
        logger.info("Voteshare shutdown complete")


# ---------------------------------------------------------------------------
# Async entry point
# ---------------------------------------------------------------------------

async def main():
    """Main async entry point."""
    app = VoteShareApplication()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        app.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as exc:
        logger.critical("Fatal error: %s", exc, exc_info=True)
    finally:
        await app.shutdown()


def cli():
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
