"""Pytest configuration and shared fixtures."""
import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Ensure the project root is on sys.path so 'voteshare' is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from voteshare.bus.pool import BrokerPool
from voteshare.events.vote import Vote


@pytest.fixture
def vote_a():
    return Vote(
        service_name="PlanetMinecraft",
        timestamp="1700000000",
        username="Notch",
        address="203.0.113.7:25565",
    )


@pytest.fixture
def vote_b():
    return Vote(
        service_name="MinecraftServers.org",
        timestamp="1700000042",
        username="jeb_",
        address="198.51.100.2:25565",
    )


@pytest.fixture
def vote_c():
    return Vote(
        service_name="TopG",
        timestamp="2023-11-14 22:13:20 +0000",
        username="Dinnerbone",
        address="192.0.2.44:25565",
    )


@pytest.fixture
def redis_client():
    """A stand-in for ``redis.asyncio.Redis`` with a recording pipeline."""
    client = MagicMock()
    client.aclose = AsyncMock()
    client.ping = AsyncMock(return_value=True)

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    client.pipeline.return_value = pipe
    return client


@pytest.fixture
def broker_pool(redis_client):
    """A real BrokerPool whose clients are replaced by ``redis_client``."""
    with patch("voteshare.bus.pool.redis.Redis", return_value=redis_client) as factory:
        pool = BrokerPool(host="127.0.0.1", port=6379)
        pool._pool.disconnect = AsyncMock()
        pool.client_factory = factory
        yield pool


@pytest.fixture
def wait_until():
    """Poll *predicate* on the running loop until it holds or time runs out."""

    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
