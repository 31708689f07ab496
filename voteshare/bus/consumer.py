"""
Voteshare -- receive side: one long-lived channel subscription.

:class:`VoteReceiver` subscribes to :data:`~voteshare.events.codec.VOTE_CHANNEL`
on a dedicated asyncio task.  Every message is decoded and handed to the
dispatch callback, which fires the vote inside this server as if it had
been received locally.

Failure policy:
    - Undecodable messages are logged and dropped, never retried.
    - A failed subscribe, or a subscription lost to a broker error, is
      logged and the receiver stays unsubscribed.  There is no
      automatic reconnect.
    - Unsubscribe on shutdown is best effort: failures are logged only.
    - Any other error that ends the subscription task is logged by
      ``stop()``, which never re-raises it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from redis.exceptions import RedisError

from voteshare.bus.pool import BrokerPool
from voteshare.errors import BrokerError, IllegalStateError, MalformedMessageError
from voteshare.events.codec import VOTE_CHANNEL, decode_vote
from voteshare.events.vote import Vote
from voteshare.observability.metrics import VoteShareMetrics

logger = logging.getLogger(__name__)

VoteDispatch = Callable[[Vote], Union[None, Awaitable[None]]]

# How long stop() waits for the subscription task after UNSUBSCRIBE.
STOP_TIMEOUT_SECONDS: float = 5.0


class VoteReceiver:
    """Consumer pipeline for ``RECEIVER`` mode.

    Args:
        pool: Shared broker pool.  One client is held for the lifetime of
            the subscription.
        dispatch: Sync or async callable invoked once per decoded vote.
        metrics: Optional Prometheus metrics.
    """

    def __init__(
        self,
        pool: BrokerPool,
        dispatch: VoteDispatch,
        metrics: Optional[VoteShareMetrics] = None,
    ) -> None:
        self._pool: BrokerPool = pool
        self._dispatch: VoteDispatch = dispatch
        self._metrics = metrics

        self._pubsub: Any = None  # redis.asyncio.client.PubSub while subscribed
        self._task: Optional[asyncio.Task[None]] = None
        self._subscribed: bool = False

        self.stats: dict[str, int] = {
            "received": 0,
            "dispatched": 0,
            "decode_errors": 0,
            "dispatch_errors": 0,
        }

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Launch the subscription task."""
        if self._task is not None and not self._task.done():
            logger.warning("VoteReceiver already running")
            return
        self._task = asyncio.create_task(
            self._subscription_loop(),
            name="voteshare-subscription",
        )

    async def stop(self) -> None:
        """Unsubscribe and wait for the subscription task to wind down."""
        if self._pubsub is not None:
            logger.info("Attempting to unsubscribe from the vote channel")
            try:
                await self._pubsub.unsubscribe(VOTE_CHANNEL)
            except (RedisError, OSError) as exc:
                logger.error("Failed to unsubscribe from channel: %s", exc)

        task, self._task = self._task, None
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(task, timeout=STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(
                    "Subscription did not end within %.1fs, cancelling",
                    STOP_TIMEOUT_SECONDS,
                )
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error("Subscription task failed: %s", exc)
        elif task is not None and not task.cancelled() and task.exception() is not None:
            logger.error("Subscription task failed: %s", task.exception())

        logger.info("VoteReceiver stopped. stats=%s", self.stats)

    # -- subscription --------------------------------------------------------

    async def _subscription_loop(self) -> None:
        """Hold one subscription until unsubscribed or the broker fails."""
        channel = VOTE_CHANNEL.decode("utf-8")
        was_subscribed = False
        try:
            async with self._pool.acquire() as client:
                self._pubsub = client.pubsub(ignore_subscribe_messages=True)
                try:
                    await self._pubsub.subscribe(VOTE_CHANNEL)
                    was_subscribed = True
                    self._set_subscribed(True)
                    logger.info("Subscribed to channel '%s'", channel)

                    async for message in self._pubsub.listen():
                        if message.get("type") != "message":
                            continue
                        await self._handle_message(message.get("data"))
                finally:
                    self._set_subscribed(False)
                    pubsub, self._pubsub = self._pubsub, None
                    try:
                        await pubsub.aclose()
                    except (RedisError, OSError) as exc:
                        logger.warning("Error closing subscription: %s", exc)
        except (BrokerError, IllegalStateError) as exc:
            if was_subscribed:
                logger.error("Lost subscription to channel '%s': %s", channel, exc)
            else:
                logger.error("Failed to subscribe to channel '%s': %s", channel, exc)
            return

        logger.info("Unsubscribed from channel '%s'", channel)

    async def _handle_message(self, data: bytes) -> None:
        """Decode one channel message and hand it to the dispatch callback."""
        self.stats["received"] += 1
        if self._metrics is not None:
            self._metrics.votes_received.inc()

        try:
            vote = decode_vote(data)
        except MalformedMessageError as exc:
            self.stats["decode_errors"] += 1
            if self._metrics is not None:
                self._metrics.decode_errors.inc()
            logger.error("Dropping malformed vote message: %s", exc)
            return

        try:
            result = self._dispatch(vote)
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            self.stats["dispatch_errors"] += 1
            logger.error("Vote dispatch failed for %s: %s", vote.describe(), exc)
            return

        self.stats["dispatched"] += 1
        if self._metrics is not None:
            self._metrics.votes_dispatched.inc()
        logger.debug("Dispatched vote %s", vote.describe())

    def _set_subscribed(self, value: bool) -> None:
        self._subscribed = value
        if self._metrics is not None:
            self._metrics.subscribed.set(1 if value else 0)
