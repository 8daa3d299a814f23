"""Tests for the in-process and Redis change buses."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from lockguard.domain.brute_force import SecurityState
from lockguard.infrastructure.change_bus import InMemoryChangeBus, RedisChangeBus

KEY = "auth_security_state:abc123"


class TestInMemoryChangeBus:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delivers_to_each_subscriber_once(self, change_bus):
        events = []
        change_bus.subscribe(KEY, events.append)
        change_bus.subscribe(KEY, events.append)

        await change_bus.publish(KEY, SecurityState(failed_attempts=1))

        assert events == [SecurityState(failed_attempts=1)]
        assert change_bus.subscriber_count(KEY) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_subscribers_get_independent_copies(self, change_bus):
        seen = []

        def mutate(state):
            state.failed_attempts = 99
            seen.append(state)

        change_bus.subscribe(KEY, mutate)
        change_bus.subscribe(KEY, seen.append)
        original = SecurityState(failed_attempts=1)

        await change_bus.publish(KEY, original)

        assert original.failed_attempts == 1
        assert seen[1].failed_attempts == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, change_bus):
        events = []

        def broken(state):
            raise RuntimeError("listener bug")

        async def also_broken(state):
            raise RuntimeError("async listener bug")

        change_bus.subscribe(KEY, broken)
        change_bus.subscribe(KEY, also_broken)
        change_bus.subscribe(KEY, events.append)

        await change_bus.publish(KEY, None)

        assert events == [None]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listener_may_unsubscribe_during_delivery(self, change_bus):
        events = []

        def once(state):
            events.append(state)
            change_bus.unsubscribe(KEY, once)

        change_bus.subscribe(KEY, once)
        await change_bus.publish(KEY, None)
        await change_bus.publish(KEY, None)

        assert events == [None]
        assert change_bus.subscriber_count(KEY) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_is_noop(self, change_bus):
        change_bus.unsubscribe(KEY, print)

        assert change_bus.subscriber_count(KEY) == 0


def make_redis_client(messages=()):
    """Fake async Redis client whose pubsub yields ``messages`` then blocks."""
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen():
        for message in messages:
            yield message
        await asyncio.Event().wait()

    pubsub.listen = listen
    client = MagicMock()
    client.pubsub.return_value = pubsub
    client.publish = AsyncMock(return_value=1)
    return client, pubsub


def remote_message(key, state, origin="other-instance"):
    return json.dumps({"key": key, "state": state, "origin": origin})


class TestRedisChangeBus:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publish_notifies_locally_and_broadcasts(self):
        client, _ = make_redis_client()
        bus = RedisChangeBus(client, channel="changes", instance_id="me")
        events = []
        bus.subscribe(KEY, events.append)

        await bus.publish(KEY, SecurityState(failed_attempts=2, last_attempt=10))

        assert events == [SecurityState(failed_attempts=2, last_attempt=10)]
        channel, raw = client.publish.await_args.args
        assert channel == "changes"
        assert json.loads(raw) == {
            "key": KEY,
            "state": {"failedAttempts": 2, "lastAttempt": 10},
            "origin": "me",
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publish_survives_redis_outage(self):
        client, _ = make_redis_client()
        client.publish.side_effect = RedisConnectionError("down")
        bus = RedisChangeBus(client)
        events = []
        bus.subscribe(KEY, events.append)

        await bus.publish(KEY, None)

        assert events == [None]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handle_message_delivers_remote_change(self):
        client, _ = make_redis_client()
        bus = RedisChangeBus(client, instance_id="me")
        events = []
        bus.subscribe(KEY, events.append)

        await bus.handle_message(remote_message(KEY, {"failedAttempts": 5, "lockoutUntil": 99}).encode())
        await bus.handle_message(remote_message(KEY, None))

        assert events == [SecurityState(failed_attempts=5, lockout_until=99), None]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handle_message_skips_own_echo(self):
        client, _ = make_redis_client()
        bus = RedisChangeBus(client, instance_id="me")
        events = []
        bus.subscribe(KEY, events.append)

        await bus.handle_message(remote_message(KEY, None, origin="me"))

        assert events == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [
        "not json",
        "[]",
        json.dumps({"state": None}),
        json.dumps({"key": 5, "state": None}),
        remote_message(KEY, {"failedAttempts": -1}),
        remote_message(KEY, "garbage"),
    ])
    async def test_handle_message_drops_invalid_messages(self, data):
        client, _ = make_redis_client()
        bus = RedisChangeBus(client, instance_id="me")
        events = []
        bus.subscribe(KEY, events.append)

        await bus.handle_message(data)

        assert events == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listener_delivers_channel_messages(self):
        messages = [
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": remote_message(KEY, {"failedAttempts": 1})},
        ]
        client, pubsub = make_redis_client(messages)
        bus = RedisChangeBus(client, channel="changes", instance_id="me")
        received = asyncio.Event()
        events = []

        def on_change(state):
            events.append(state)
            received.set()

        bus.subscribe(KEY, on_change)
        await bus.start()
        assert bus.listening is True
        await asyncio.wait_for(received.wait(), timeout=1)
        await bus.close()

        assert events == [SecurityState(failed_attempts=1)]
        pubsub.subscribe.assert_awaited_once_with("changes")
        pubsub.unsubscribe.assert_awaited_once_with("changes")
        pubsub.aclose.assert_awaited_once()
        assert bus.listening is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_clears_local_subscribers(self):
        client, _ = make_redis_client()
        bus = RedisChangeBus(client)
        events = []
        bus.subscribe(KEY, events.append)

        await bus.close()
        await bus.publish(KEY, None)

        assert events == []


def make_pubsub(listen):
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.listen = listen
    return pubsub


class TestRedisChangeBusReconnect:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listener_resubscribes_after_connection_loss(self):
        async def dropped():
            raise RedisConnectionError("connection reset")
            yield

        async def healthy():
            yield {"type": "message", "data": remote_message(KEY, {"failedAttempts": 2})}
            await asyncio.Event().wait()

        first, second = make_pubsub(dropped), make_pubsub(healthy)
        client = MagicMock()
        client.pubsub.side_effect = [first, second]
        bus = RedisChangeBus(client, channel="changes", instance_id="me", reconnect_delay=0)
        received = asyncio.Event()
        events = []

        def on_change(state):
            events.append(state)
            received.set()

        bus.subscribe(KEY, on_change)
        await bus.start()
        await asyncio.wait_for(received.wait(), timeout=1)

        assert bus.listening is True
        assert events == [SecurityState(failed_attempts=2)]
        second.subscribe.assert_awaited_once_with("changes")
        first.aclose.assert_awaited_once()
        await bus.close()
        second.aclose.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listener_gives_up_after_bounded_attempts(self):
        async def dropped():
            raise RedisConnectionError("connection refused")
            yield

        client = MagicMock()
        client.pubsub.return_value = make_pubsub(dropped)
        bus = RedisChangeBus(client, reconnect_attempts=2, reconnect_delay=0)

        await bus.start()
        await asyncio.wait_for(bus._listener, timeout=1)

        assert bus.listening is False
        # One subscription from start plus one per reconnect attempt
        assert client.pubsub.call_count == 3
        await bus.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_resubscribe_counts_as_attempt(self):
        async def dropped():
            raise RedisConnectionError("connection refused")
            yield

        original = make_pubsub(dropped)
        client = MagicMock()
        client.pubsub.side_effect = [original, RedisConnectionError("down"), RedisConnectionError("down")]
        bus = RedisChangeBus(client, reconnect_attempts=2, reconnect_delay=0)

        await bus.start()
        await asyncio.wait_for(bus._listener, timeout=1)

        assert bus.listening is False
        original.aclose.assert_not_awaited()
        await bus.close()
        original.aclose.assert_awaited_once()
