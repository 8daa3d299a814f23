"""
Redis-backed state store.

Records live under their storage key as plain strings. Each write refreshes
an expiry equal to the state TTL, which bounds storage growth even if no
sweeper runs; lazy expiration in the service remains the source of truth
for lockout decisions.

**Security Note**: Use ``rediss://`` URLs and a password outside trusted
networks. Storage keys are HMAC-derived, so raw identifiers never reach
Redis key names.
"""

from typing import List, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from lockguard.core.exceptions import StorageError
from lockguard.domain.brute_force.repositories import StateStore

logger = structlog.get_logger(__name__)


class RedisStateStore(StateStore):
    """StateStore implementation on top of an async Redis client."""

    def __init__(self, redis_client: Redis, ttl_seconds: Optional[int] = 24 * 60 * 60, scan_count: int = 100):
        """
        Args:
            redis_client: Async Redis client, ideally with ``decode_responses=True``
            ttl_seconds: Expiry applied on every write, None to disable
            scan_count: COUNT hint for SCAN iterations
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.scan_count = scan_count

    @staticmethod
    def _decode(value):
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def store(self, key: str, payload: str) -> None:
        try:
            await self.redis.set(key, payload, ex=self.ttl_seconds)
        except RedisError as e:
            logger.error("Redis write failed", error=str(e))
            raise StorageError("Failed to write security state") from e

    async def retrieve(self, key: str) -> Optional[str]:
        try:
            value = await self.redis.get(key)
        except RedisError as e:
            logger.error("Redis read failed", error=str(e))
            raise StorageError("Failed to read security state") from e
        return self._decode(value)

    async def remove(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.error("Redis delete failed", error=str(e))
            raise StorageError("Failed to delete security state") from e

    async def list_keys(self, prefix: str) -> List[str]:
        keys: List[str] = []
        cursor = 0
        try:
            while True:
                cursor, batch = await self.redis.scan(cursor, match=f"{prefix}*", count=self.scan_count)
                keys.extend(self._decode(k) for k in batch)
                if cursor == 0:
                    break
        except RedisError as e:
            logger.error("Redis scan failed", error=str(e))
            raise StorageError("Failed to list security states") from e
        return keys

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError as e:
            logger.warning("Error closing Redis connection", error=str(e))
