"""
Redis pub/sub change bus for cross-process synchronization.

Every process sharing a state store can share one channel: a state change
published by one instance is delivered to the local observers of every
other instance, so lockout countdowns stay consistent without polling.

Local observers are notified directly on publish; messages that come back
over the channel from the same instance are recognized by their ``origin``
and skipped, so each observer hears about a change once.

Message format (JSON):

    {"key": "<storage key>", "state": <wire record or null>, "origin": "<instance id>"}

**Security Note**: pub/sub messages travel in plaintext. Storage keys are
HMAC-derived, but use TLS (``rediss://``) outside trusted networks.
"""

import asyncio
import contextlib
import json
import uuid
from typing import Any, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from lockguard.core.exceptions import CorruptedStateError
from lockguard.domain.brute_force.entities import SecurityState
from lockguard.domain.brute_force.repositories import ChangeBus, StateChangeCallback

from .memory import InMemoryChangeBus

logger = structlog.get_logger(__name__)


class RedisChangeBus(ChangeBus):
    """ChangeBus that fans out notifications through a Redis channel."""

    def __init__(
        self,
        redis_client: Redis,
        channel: str = "lockguard:state_changes",
        instance_id: Optional[str] = None,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
    ):
        """
        Args:
            redis_client: Async Redis client
            channel: Pub/sub channel shared by all instances
            instance_id: Unique id of this process, generated when omitted
            reconnect_attempts: Consecutive listener failures tolerated before
                the listener stops; ``listening`` then reports False
            reconnect_delay: Base delay in seconds, multiplied by the attempt
                number, before resubscribing
        """
        self.redis = redis_client
        self.channel = channel
        self.instance_id = instance_id or uuid.uuid4().hex
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self._local = InMemoryChangeBus()
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    def subscribe(self, key: str, callback: StateChangeCallback) -> None:
        self._local.subscribe(key, callback)

    def unsubscribe(self, key: str, callback: StateChangeCallback) -> None:
        self._local.unsubscribe(key, callback)

    @property
    def listening(self) -> bool:
        """False before ``start`` and once the listener has given up; call ``start`` again to resume."""
        return self._listener is not None and not self._listener.done()

    async def start(self) -> None:
        """Subscribe to the channel and start the background listener."""
        if self.listening:
            return
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub()
            await self._pubsub.subscribe(self.channel)
        self._listener = asyncio.get_running_loop().create_task(
            self._listen(), name="lockguard-change-bus"
        )
        logger.info("Started listening for state changes", channel=self.channel)

    async def publish(self, key: str, state: Optional[SecurityState]) -> None:
        await self._local.publish(key, state)

        message = {
            "key": key,
            "state": state.to_dict() if state is not None else None,
            "origin": self.instance_id,
        }
        try:
            receivers = await self.redis.publish(self.channel, json.dumps(message, separators=(",", ":")))
            logger.debug("Published state change", receivers=receivers)
        except RedisError as e:
            logger.warning("Failed to publish state change", error=str(e))

    async def handle_message(self, data: Any) -> None:
        """Deliver one raw channel message to local observers."""
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        try:
            message = json.loads(data)
            if not isinstance(message, dict) or not isinstance(message.get("key"), str):
                raise ValueError("message must be an object with a string key")
            if message.get("origin") == self.instance_id:
                return
            raw_state = message.get("state")
            state = SecurityState.from_dict(raw_state) if raw_state is not None else None
        except (TypeError, ValueError, CorruptedStateError) as e:
            logger.warning("Invalid state change message", error=str(e))
            return

        await self._local.publish(message["key"], state)

    async def _listen(self) -> None:
        failures = 0
        while True:
            try:
                async for message in self._pubsub.listen():
                    failures = 0
                    if message.get("type") != "message":
                        continue
                    await self.handle_message(message.get("data"))
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failures += 1
                if failures > self.reconnect_attempts:
                    logger.error(
                        "State change listener stopped, cross-process changes are no longer received",
                        channel=self.channel,
                        error=str(e),
                    )
                    return
                logger.warning(
                    "Error in state change listener, resubscribing",
                    channel=self.channel,
                    attempt=failures,
                    error=str(e),
                )
            await asyncio.sleep(self.reconnect_delay * failures)
            await self._resubscribe()

    async def _resubscribe(self) -> None:
        """Replace the pub/sub connection. A failure is left to the next listen."""
        stale = self._pubsub
        try:
            pubsub = self.redis.pubsub()
            await pubsub.subscribe(self.channel)
        except RedisError as e:
            logger.warning("Failed to resubscribe to state changes", channel=self.channel, error=str(e))
            return
        self._pubsub = pubsub
        try:
            await stale.aclose()
        except RedisError as e:
            logger.debug("Error closing stale pubsub", error=str(e))

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except RedisError as e:
                logger.warning("Error closing pubsub", error=str(e))
            finally:
                self._pubsub = None

        await self._local.close()
        logger.info("Closed state change bus", channel=self.channel)
