"""
Voteshare -- relay service: one owner for pool, buffer and pipeline.

The host process creates one :class:`VoteShareService`, calls
:meth:`~VoteShareService.start` when it is enabled and
:meth:`~VoteShareService.stop` when it is disabled.  Two host events are
routed in through separate hooks:

    - :meth:`~VoteShareService.on_vote` -- a vote arrived from the upstream
      listener (any thread).
    - :meth:`~VoteShareService.on_plugin_disabled` -- some plugin was
      disabled; if it is the upstream listener the service stops itself.

There is no module-level state: every resource hangs off the service
instance, so independent services can coexist in one process.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Optional

from voteshare.bus.buffer import VoteBuffer
from voteshare.bus.consumer import VoteDispatch, VoteReceiver
from voteshare.bus.pool import BrokerPool
from voteshare.bus.producer import VoteBroadcaster
from voteshare.config.settings import VoteShareSettings
from voteshare.errors import IllegalStateError
from voteshare.events.vote import Vote
from voteshare.mode import ListenerMode
from voteshare.observability.metrics import VoteShareMetrics

logger = logging.getLogger(__name__)


def log_vote(vote: Vote) -> None:
    """Default dispatch: record the relayed vote in the log."""
    logger.info("Received vote %s", vote.describe())


class VoteShareService:
    """Relay service for one node.

    Args:
        settings: Node configuration.
        dispatch: Callback for votes received in ``RECEIVER`` mode.
            Defaults to :func:`log_vote`.
        pool: Pre-built broker pool (tests).  Built from *settings* on
            :meth:`start` otherwise, and dropped again on :meth:`stop`.
        metrics: Optional Prometheus metrics.
    """

    def __init__(
        self,
        settings: VoteShareSettings,
        dispatch: Optional[VoteDispatch] = None,
        pool: Optional[BrokerPool] = None,
        metrics: Optional[VoteShareMetrics] = None,
    ) -> None:
        self._settings = settings
        self._dispatch: VoteDispatch = dispatch if dispatch is not None else log_vote
        self._pool: Optional[BrokerPool] = pool
        self._owns_pool: bool = pool is None
        self._metrics = metrics

        self._mode: ListenerMode = ListenerMode.resolve(settings.mode)
        self._buffer = VoteBuffer(settings.buffer_capacity)
        self._broadcaster: Optional[VoteBroadcaster] = None
        self._receiver: Optional[VoteReceiver] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running: bool = False
        self._stop_future: Optional[concurrent.futures.Future[None]] = None
        self._stopping: Optional[asyncio.Future[None]] = None
        self.stop_requested = asyncio.Event()

        logger.info("Voteshare is running in %s mode!", self._mode.value)

    @property
    def mode(self) -> ListenerMode:
        return self._mode

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def buffer(self) -> VoteBuffer:
        return self._buffer

    @property
    def pool(self) -> Optional[BrokerPool]:
        return self._pool

    @property
    def broadcaster(self) -> Optional[VoteBroadcaster]:
        return self._broadcaster

    @property
    def receiver(self) -> Optional[VoteReceiver]:
        return self._receiver

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Create the pool and start the pipeline for the configured mode.

        A stopped service can be started again.  A pool it built itself is
        rebuilt; an injected pool that has been shut down is refused.

        Raises:
            IllegalStateError: If the service is still stopping, or the
                injected pool is already closed.
        """
        if self._running:
            logger.debug("VoteShareService already running, skipping")
            return
        if self._stopping is not None and not self._stopping.done():
            raise IllegalStateError("VoteShareService is still stopping")

        if self._pool is None:
            self._pool = BrokerPool.from_settings(self._settings)
        elif self._pool.is_closed:
            raise IllegalStateError(
                f"BrokerPool for {self._pool.address} has been shut down"
            )
        logger.info("Broker pool targeting %s", self._pool.address)

        self._loop = asyncio.get_running_loop()
        self._stopping = None
        self._stop_future = None
        self.stop_requested.clear()

        if self._mode is ListenerMode.BROADCAST:
            self._broadcaster = VoteBroadcaster(
                pool=self._pool,
                buffer=self._buffer,
                poll_interval=self._settings.poll_interval,
                allow_unsafe_interval=self._settings.allow_unsafe_interval,
                initial_delay=self._settings.initial_delay,
                on_shutdown_requested=self.request_stop,
                upstream_name=self._settings.upstream_plugin,
                metrics=self._metrics,
            )
            await self._broadcaster.start()
        else:
            self._receiver = VoteReceiver(
                pool=self._pool,
                dispatch=self._dispatch,
                metrics=self._metrics,
            )
            await self._receiver.start()

        self._running = True

    async def stop(self) -> None:
        """Stop the pipeline and destroy the pool.  Safe to call twice.

        Concurrent callers all wait for the same teardown, so
        :attr:`stop_requested` is only set once the pool is gone.
        """
        if self._stopping is None:
            if not self._running:
                return
            self._running = False
            self._stopping = asyncio.ensure_future(self._teardown())
        await asyncio.shield(self._stopping)

    async def _teardown(self) -> None:
        broadcaster, self._broadcaster = self._broadcaster, None
        receiver, self._receiver = self._receiver, None
        if broadcaster is not None:
            await broadcaster.stop()
        if receiver is not None:
            await receiver.stop()
        self._buffer.clear()

        pool = self._pool
        if self._owns_pool:
            self._pool = None
        if pool is not None:
            logger.info("Destroying broker pool")
            await pool.shutdown()

        self.stop_requested.set()
        logger.info("Voteshare stopped")

    def request_stop(self) -> None:
        """Ask the service to stop itself.  Callable from any thread.

        :attr:`stop_requested` is set by the stop itself, after the pool
        has been destroyed.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if self._stop_future is not None:
            return
        self._stop_future = asyncio.run_coroutine_threadsafe(self.stop(), loop)

    # -- host hooks ----------------------------------------------------------

    def on_vote(self, vote: Vote) -> bool:
        """Vote-arrival hook.  Returns True if the vote was buffered."""
        if not self._running or self._broadcaster is None:
            logger.debug(
                "Ignoring local vote in %s mode (running=%s): %s",
                self._mode.value,
                self._running,
                vote.describe(),
            )
            return False
        return self._broadcaster.on_vote(vote)

    def on_plugin_disabled(self, name: str) -> None:
        """Upstream-disabled hook."""
        if self._running and self._broadcaster is not None:
            self._broadcaster.on_plugin_disabled(name)
