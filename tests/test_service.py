"""Tests for the relay service wiring."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from voteshare.config.settings import VoteShareSettings
from voteshare.errors import IllegalStateError
from voteshare.mode import ListenerMode
from voteshare.service import VoteShareService


def broadcast_settings(**overrides):
    values = {"mode": "BROADCAST", "initial_delay": 60}
    values.update(overrides)
    return VoteShareSettings(**values)


class TestModeSelection:
    def test_default_is_receiver(self):
        assert VoteShareService(VoteShareSettings()).mode is ListenerMode.RECEIVER

    def test_broadcast(self):
        assert VoteShareService(broadcast_settings()).mode is ListenerMode.BROADCAST

    @pytest.mark.parametrize("value", ["broadcast", "Broadcast", "SENDER", ""])
    def test_unrecognised_mode_falls_back_to_receiver(self, value):
        service = VoteShareService(VoteShareSettings(mode=value))
        assert service.mode is ListenerMode.RECEIVER


class TestBroadcastService:
    @pytest.mark.asyncio
    async def test_start_builds_broadcaster(self, broker_pool, vote_a):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()

        assert service.is_running
        assert service.broadcaster is not None
        assert service.receiver is None
        assert service.on_vote(vote_a) is True
        assert len(service.buffer) == 1

        await service.stop()

    @pytest.mark.asyncio
    async def test_stop_clears_buffer_and_destroys_pool(self, broker_pool, vote_a):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()
        service.on_vote(vote_a)

        await service.stop()

        assert not service.is_running
        assert service.buffer.is_empty()
        assert broker_pool.is_closed
        assert service.stop_requested.is_set()

    @pytest.mark.asyncio
    async def test_stop_twice_is_safe(self, broker_pool):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()
        await service.stop()
        await service.stop()
        broker_pool._pool.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_buffer_capacity_from_settings(self, broker_pool, vote_a, vote_b):
        service = VoteShareService(
            broadcast_settings(buffer_capacity=1), pool=broker_pool
        )
        await service.start()
        assert service.on_vote(vote_a) is True
        assert service.on_vote(vote_b) is False
        await service.stop()

    @pytest.mark.asyncio
    async def test_upstream_disable_stops_service(self, broker_pool, wait_until):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()

        service.on_plugin_disabled("Votifier")

        await asyncio.wait_for(service.stop_requested.wait(), timeout=1.0)
        await wait_until(lambda: broker_pool.is_closed)
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_request_stop_from_another_thread(self, broker_pool, wait_until):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, service.request_stop)

        await wait_until(service.stop_requested.is_set)
        assert broker_pool.is_closed

    @pytest.mark.asyncio
    async def test_stop_requested_waits_for_pool_teardown(self, broker_pool):
        finished = []

        async def slow_disconnect():
            await asyncio.sleep(0.2)
            finished.append(True)

        broker_pool._pool.disconnect = AsyncMock(side_effect=slow_disconnect)
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()

        service.on_plugin_disabled("Votifier")
        await asyncio.wait_for(service.stop_requested.wait(), timeout=1.0)

        assert finished == [True]
        assert service.broadcaster is None

    @pytest.mark.asyncio
    async def test_concurrent_stop_waits_for_teardown(self, broker_pool):
        finished = []

        async def slow_disconnect():
            await asyncio.sleep(0.2)
            finished.append(True)

        broker_pool._pool.disconnect = AsyncMock(side_effect=slow_disconnect)
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()

        first = asyncio.create_task(service.stop())
        await asyncio.sleep(0.05)
        await service.stop()

        assert finished == [True]
        await first
        broker_pool._pool.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_vote_after_stop_is_ignored(self, broker_pool, vote_a):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()
        await service.stop()

        assert service.broadcaster is None
        assert service.on_vote(vote_a) is False
        assert service.buffer.is_empty()

    @pytest.mark.asyncio
    async def test_restart_with_self_built_pool(self, broker_pool, redis_client, vote_a):
        # broker_pool keeps redis.Redis patched, so the service's own pools
        # hand out redis_client too.
        service = VoteShareService(broadcast_settings())
        await service.start()
        first_pool = service.pool
        await service.stop()

        assert service.pool is None
        assert first_pool.is_closed

        await service.start()
        assert service.is_running
        assert service.pool is not first_pool
        assert not service.stop_requested.is_set()
        assert service.on_vote(vote_a) is True
        assert await service.broadcaster.flush() == 1
        redis_client.pipeline.return_value.publish.assert_called_once()

        await service.stop()
        assert service.stop_requested.is_set()

    @pytest.mark.asyncio
    async def test_restart_with_closed_injected_pool_fails(self, broker_pool):
        service = VoteShareService(broadcast_settings(), pool=broker_pool)
        await service.start()
        await service.stop()

        with pytest.raises(IllegalStateError):
            await service.start()
        assert not service.is_running

    def test_request_stop_before_start_is_noop(self):
        service = VoteShareService(broadcast_settings())
        service.request_stop()
        assert not service.stop_requested.is_set()


class TestReceiverService:
    @pytest.mark.asyncio
    async def test_start_builds_receiver(self, broker_pool, redis_client, vote_a):
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.aclose = AsyncMock()

        async def listen():
            return
            yield

        pubsub.listen = listen
        redis_client.pubsub.return_value = pubsub

        service = VoteShareService(VoteShareSettings(), pool=broker_pool)
        await service.start()

        assert service.receiver is not None
        assert service.broadcaster is None
        assert service.on_vote(vote_a) is False
        service.on_plugin_disabled("Votifier")
        assert not service.stop_requested.is_set()

        await service.stop()
        assert broker_pool.is_closed

    @pytest.mark.asyncio
    async def test_pool_built_from_settings(self):
        service = VoteShareService(
            VoteShareSettings(mode="BROADCAST", redis_host="10.1.2.3", redis_port=7000)
        )
        await service.start()
        assert service.pool.address == "10.1.2.3:7000"
        service.pool._pool.disconnect = AsyncMock()
        await service.stop()
