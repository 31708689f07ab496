"""
Voteshare -- broadcast side: buffer local votes, publish them in batches.

Votes arrive one at a time through :meth:`VoteBroadcaster.on_vote` and
sit in a :class:`~voteshare.bus.buffer.VoteBuffer`.  A fixed-rate timer
drains the buffer and publishes everything it held in a single Redis
pipeline round-trip.

Delivery contract (best effort, at most once):
    - Votes from one producer are published in arrival order.
    - Nothing is ordered across producers or across ticks.
    - If the broker fails mid-batch the drained votes are lost.  They
      are NOT put back in the buffer; re-buffering would turn this into
      at-least-once delivery and double-count votes on the receivers.

Intervals are expressed in server ticks (20 per second) to match the
plugin configuration the relay shares with the game servers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from voteshare.bus.buffer import VoteBuffer
from voteshare.bus.pool import BrokerPool
from voteshare.errors import BrokerError, IllegalStateError, InvalidArgumentError
from voteshare.events.codec import VOTE_CHANNEL, encode_vote
from voteshare.events.vote import Vote
from voteshare.observability.metrics import VoteShareMetrics

logger = logging.getLogger(__name__)

TICK_SECONDS: float = 0.05

DEFAULT_POLL_INTERVAL: int = 100
DEFAULT_INITIAL_DELAY: int = 60
# Lowest poll interval accepted without allow-unsafe-interval.  Bounds the
# PUBLISH rate a single producer can impose on the broker.
MIN_SAFE_POLL_INTERVAL: int = 60


def effective_poll_interval(
    poll_interval: int,
    allow_unsafe_interval: bool = False,
) -> int:
    """Return the poll interval (ticks) the timer will actually use.

    Values at or below :data:`MIN_SAFE_POLL_INTERVAL` are raised to it
    unless *allow_unsafe_interval* is set.
    """
    if poll_interval <= MIN_SAFE_POLL_INTERVAL and not allow_unsafe_interval:
        logger.warning(
            "poll-interval has automatically been set to %d as the "
            "configured value (%d) is rather low",
            MIN_SAFE_POLL_INTERVAL,
            poll_interval,
        )
        logger.warning(
            "to disable this behaviour set allow-unsafe-interval to true"
        )
        return MIN_SAFE_POLL_INTERVAL
    return poll_interval


class VoteBroadcaster:
    """Producer pipeline for ``BROADCAST`` mode.

    Args:
        pool: Shared broker pool.
        buffer: Buffer fed by :meth:`on_vote` and drained on each tick.
        poll_interval: Flush period in ticks (clamped, see
            :func:`effective_poll_interval`).
        allow_unsafe_interval: Disable the poll-interval floor.
        initial_delay: Ticks before the first flush.
        on_shutdown_requested: Called when the upstream vote listener is
            disabled.  Must be safe to call from any thread.
        upstream_name: Name of the upstream listener plugin.
        metrics: Optional Prometheus metrics.
    """

    def __init__(
        self,
        pool: BrokerPool,
        buffer: VoteBuffer,
        poll_interval: int = DEFAULT_POLL_INTERVAL,
        allow_unsafe_interval: bool = False,
        initial_delay: int = DEFAULT_INITIAL_DELAY,
        on_shutdown_requested: Optional[Callable[[], None]] = None,
        upstream_name: str = "Votifier",
        metrics: Optional[VoteShareMetrics] = None,
    ) -> None:
        self._pool: BrokerPool = pool
        self._buffer: VoteBuffer = buffer
        self._poll_interval: int = effective_poll_interval(
            poll_interval, allow_unsafe_interval
        )
        self._initial_delay: int = max(0, initial_delay)
        self._on_shutdown_requested = on_shutdown_requested
        self._upstream_name: str = upstream_name
        self._metrics = metrics

        self._running: bool = False
        self._task: Optional[asyncio.Task[None]] = None

        self.stats: dict[str, int] = {
            "ticks": 0,
            "batches": 0,
            "published": 0,
            "failed_batches": 0,
            "dropped": 0,
            "encode_errors": 0,
        }

    @property
    def poll_interval(self) -> int:
        """Effective flush period in ticks."""
        return self._poll_interval

    @property
    def is_running(self) -> bool:
        return self._running

    # -- host callbacks ------------------------------------------------------

    def on_vote(self, vote: Vote) -> bool:
        """Vote-arrival hook.  Never blocks, never raises.

        Returns:
            ``True`` if the vote was buffered for the next tick.
        """
        accepted = self._buffer.offer(vote)
        if self._metrics is not None:
            self._metrics.votes_offered.inc()
        if not accepted:
            logger.warning("Buffer refused offered vote, it is most likely full!")
            logger.warning(
                "You may want to decrease the poll-interval config option."
            )
            if self._metrics is not None:
                self._metrics.votes_rejected.inc()
        elif self._metrics is not None:
            self._metrics.buffer_size.set(len(self._buffer))
        return accepted

    def on_plugin_disabled(self, name: str) -> None:
        """Upstream-disabled hook.

        When the vote listener named *upstream_name* goes away there is
        nothing left to broadcast, so the relay asks to be stopped.
        """
        if name.lower() != self._upstream_name.lower():
            return
        logger.info("%s was disabled, disabling self!", name)
        if self._on_shutdown_requested is not None:
            self._on_shutdown_requested()

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Schedule the flush timer."""
        if self._running:
            logger.warning("VoteBroadcaster already running")
            return
        self._running = True
        self._task = asyncio.create_task(
            self._timer_loop(),
            name="voteshare-broadcast-timer",
        )
        logger.info(
            "VoteBroadcaster started: poll_interval=%d ticks "
            "initial_delay=%d ticks",
            self._poll_interval,
            self._initial_delay,
        )

    async def stop(self) -> None:
        """Cancel the timer and discard anything still buffered."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._buffer.clear()
        if self._metrics is not None:
            self._metrics.buffer_size.set(0)
        logger.info("VoteBroadcaster stopped. stats=%s", self.stats)

    # -- timer ---------------------------------------------------------------

    async def _timer_loop(self) -> None:
        """Fixed-rate timer: first tick after the initial delay."""
        loop = asyncio.get_running_loop()
        period: float = self._poll_interval * TICK_SECONDS

        await asyncio.sleep(self._initial_delay * TICK_SECONDS)
        next_tick: float = loop.time()

        while self._running:
            try:
                await self.flush()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Unexpected error in broadcast tick: %s", exc)

            next_tick += period
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    async def flush(self) -> int:
        """Publish everything currently buffered as one pipelined batch.

        Returns:
            Number of votes published this tick.  ``0`` for an empty
            buffer or a failed batch.
        """
        self.stats["ticks"] += 1
        if self._buffer.is_empty():
            return 0

        published: int = 0
        drained: list[Vote] = []
        try:
            async with self._pool.acquire() as client:
                pipe = client.pipeline(transaction=False)
                drained = self._buffer.drain_all()
                for vote in drained:
                    try:
                        payload = encode_vote(vote)
                    except InvalidArgumentError as exc:
                        self.stats["encode_errors"] += 1
                        self._count_dropped("encode_error", 1)
                        logger.error("Dropping unencodable vote: %s", exc)
                        continue
                    pipe.publish(VOTE_CHANNEL, payload)
                    published += 1
                if published:
                    await pipe.execute()
        except (BrokerError, IllegalStateError) as exc:
            lost = len(drained)
            self.stats["failed_batches"] += 1
            self._count_dropped("broker_error", lost)
            if self._metrics is not None:
                self._metrics.batches_failed.inc()
            logger.error(
                "Error processing pending votes (%d lost): %s", lost, exc
            )
            return 0
        finally:
            if self._metrics is not None:
                self._metrics.buffer_size.set(len(self._buffer))

        self.stats["batches"] += 1
        self.stats["published"] += published
        if self._metrics is not None:
            self._metrics.votes_published.inc(published)
        logger.debug(
            "Published %d votes to %s", published, VOTE_CHANNEL.decode()
        )
        return published

    def _count_dropped(self, reason: str, count: int) -> None:
        self.stats["dropped"] += count
        if self._metrics is not None and count:
            self._metrics.votes_dropped.labels(reason=reason).inc(count)
