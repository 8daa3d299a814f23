"""
Wiring of the brute-force protection service from ``Settings``.

This is the composition root: it turns the declarative settings into a
state store, a change bus and a configured service. Domain code never reads
settings itself.

Usage:
    service = await create_protection_service()
    try:
        status = await service.check_rate_limit(hashed_email)
    finally:
        await service.close()
"""

from typing import Optional

import structlog
from redis.asyncio import Redis

from lockguard.core.clock import Clock, SystemClock
from lockguard.core.config.settings import Settings, get_settings
from lockguard.domain.brute_force.repositories import ChangeBus, StateStore
from lockguard.domain.brute_force.services import BruteForceProtectionService
from lockguard.domain.brute_force.value_objects import RateLimitConfig, StorageKeyDeriver
from lockguard.infrastructure.change_bus.memory import InMemoryChangeBus
from lockguard.infrastructure.change_bus.redis import RedisChangeBus
from lockguard.infrastructure.storage.encrypted import EncryptedStateStore
from lockguard.infrastructure.storage.file import FileStateStore
from lockguard.infrastructure.storage.memory import InMemoryStateStore
from lockguard.infrastructure.storage.redis import RedisStateStore

logger = structlog.get_logger(__name__)


def create_redis_client(settings: Settings) -> Redis:
    """Async Redis client for the configured URL."""
    return Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


def build_state_store(
    settings: Settings,
    redis_client: Optional[Redis] = None,
    clock: Optional[Clock] = None,
) -> StateStore:
    """Create the configured StateStore, wrapped in encryption when a key is set."""
    if settings.storage_backend == "redis":
        ttl_seconds = max(1, settings.state_ttl_ms // 1000)
        store: StateStore = RedisStateStore(redis_client or create_redis_client(settings), ttl_seconds=ttl_seconds)
    elif settings.storage_backend == "file":
        store = FileStateStore(settings.storage_path)
    else:
        store = InMemoryStateStore()

    if settings.encryption_key is not None and settings.encryption_key.get_secret_value():
        store = EncryptedStateStore(store, settings.encryption_key.get_secret_value(), clock=clock)

    logger.info(
        "State store configured",
        backend=settings.storage_backend,
        encrypted=isinstance(store, EncryptedStateStore),
    )
    return store


async def build_change_bus(settings: Settings, redis_client: Optional[Redis] = None) -> ChangeBus:
    """Create the change bus; the Redis bus is started before it is returned."""
    if not settings.cross_process_bus:
        return InMemoryChangeBus()

    bus = RedisChangeBus(redis_client or create_redis_client(settings), channel=settings.change_channel)
    await bus.start()
    return bus


async def create_protection_service(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    redis_client: Optional[Redis] = None,
    start_sweeper: bool = True,
) -> BruteForceProtectionService:
    """
    Build a ready-to-use BruteForceProtectionService.

    Args:
        settings: Settings to use, defaults to ``get_settings()``
        clock: Time source, defaults to the system clock
        redis_client: Shared client for the Redis store and bus
        start_sweeper: Start the periodic TTL sweep

    Raises:
        InvalidConfigError: When the configured policy is inconsistent
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    config = RateLimitConfig.from_settings(settings)
    key_deriver = StorageKeyDeriver(
        prefix=settings.storage_key_prefix,
        secret=settings.key_secret.get_secret_value(),
    )

    store = build_state_store(settings, redis_client=redis_client, clock=clock)
    bus = await build_change_bus(settings, redis_client=redis_client)

    service = BruteForceProtectionService(
        store=store,
        config=config,
        change_bus=bus,
        clock=clock,
        key_deriver=key_deriver,
    )
    if start_sweeper and settings.sweep_interval_seconds > 0:
        service.start_sweeper(settings.sweep_interval_seconds)
    return service
