"""
Voteshare -- shared Redis connection pool.

One pool per process, created at startup and destroyed at shutdown.  The
producer timer and the consumer subscription both borrow from it; each
logical operation holds its own connection for its duration.

Failure policy:
    - Any ``RedisError`` raised inside an ``acquire()`` scope is re-raised
      as :class:`~voteshare.errors.BrokerError`.
    - The pool never retries.  Retry policy (there is none today) belongs
      to the pipelines.
    - After ``shutdown()`` the pool refuses to lend connections and
      ``acquire()`` raises :class:`~voteshare.errors.IllegalStateError`.

Usage:
    pool = BrokerPool(host="127.0.0.1", port=6379)
    async with pool.acquire() as client:
        await client.publish(VOTE_CHANNEL, payload)
    await pool.shutdown()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from voteshare.errors import BrokerError, IllegalStateError

if TYPE_CHECKING:
    from voteshare.config.settings import VoteShareSettings

logger = logging.getLogger(__name__)


class BrokerPool:
    """Reusable connections to the Redis pub/sub broker.

    Args:
        host: Broker host.
        port: Broker port.
        auth: Broker password.  ``None`` or ``""`` means no AUTH.
        max_idle: Cap on the total number of connections the pool opens,
            idle or in use (redis-py ``max_connections``).  When every
            connection is busy, ``acquire()`` fails with ``BrokerError``
            ("Too many connections") rather than waiting.  ``None`` =
            unbounded.  A subscription holds one connection for its whole
            lifetime, so a value of 1 starves the broadcaster.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 6379,
        auth: Optional[str] = None,
        max_idle: Optional[int] = None,
    ) -> None:
        self._host: str = host
        self._port: int = port
        self._closed: bool = False
        # socket_timeout=None: a subscription may sit idle indefinitely.
        self._pool: redis.ConnectionPool = redis.ConnectionPool(
            host=host,
            port=port,
            password=auth or None,
            max_connections=max_idle,
            socket_timeout=None,
            socket_keepalive=True,
        )

        self.stats: dict[str, int] = {
            "acquired": 0,
            "released": 0,
            "errors": 0,
        }

    @classmethod
    def from_settings(cls, settings: VoteShareSettings) -> BrokerPool:
        return cls(
            host=settings.redis_host,
            port=settings.redis_port,
            auth=settings.redis_auth,
            max_idle=settings.redis_max_idle,
        )

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    @property
    def is_closed(self) -> bool:
        return self._closed

    # -- borrowing -----------------------------------------------------------

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[redis.Redis]:
        """Borrow a client for one operation.

        The client is closed, and its connection handed back to the pool,
        on every exit path.

        Raises:
            IllegalStateError: If the pool has been shut down.
            BrokerError: If Redis fails while the client is in use.
        """
        if self._closed:
            raise IllegalStateError(
                f"BrokerPool for {self.address} has been shut down"
            )

        client = redis.Redis(connection_pool=self._pool)
        self.stats["acquired"] += 1
        try:
            yield client
        except RedisError as exc:
            self.stats["errors"] += 1
            raise BrokerError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            try:
                await client.aclose()
            except RedisError as exc:
                logger.warning("Error releasing broker client: %s", exc)
            self.stats["released"] += 1

    # -- lifecycle -----------------------------------------------------------

    async def shutdown(self) -> None:
        """Close every pooled connection.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._pool.disconnect()
            logger.info("BrokerPool for %s destroyed", self.address)
        except (RedisError, OSError) as exc:
            logger.warning("Error while destroying BrokerPool: %s", exc)

    async def health_check(self) -> bool:
        """Return True if the broker answers a PING."""
        try:
            async with self.acquire() as client:
                await client.ping()
            return True
        except (BrokerError, IllegalStateError) as exc:
            logger.warning("BrokerPool health check failed: %s", exc)
            return False
