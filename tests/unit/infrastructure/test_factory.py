from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.fernet import Fernet

from lockguard.core.config.settings import Settings
from lockguard.core.exceptions import InvalidConfigError
from lockguard.infrastructure.change_bus import InMemoryChangeBus, RedisChangeBus
from lockguard.infrastructure.dependency_injection import (
    build_change_bus,
    build_state_store,
    create_protection_service,
)
from lockguard.infrastructure.storage import (
    EncryptedStateStore,
    FileStateStore,
    InMemoryStateStore,
    RedisStateStore,
)


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


@pytest.mark.unit
def test_memory_store_by_default():
    assert isinstance(build_state_store(make_settings()), InMemoryStateStore)


@pytest.mark.unit
def test_file_store(tmp_path):
    store = build_state_store(make_settings(storage_backend="file", storage_path=str(tmp_path)))

    assert isinstance(store, FileStateStore)


@pytest.mark.unit
def test_redis_store_uses_ttl_in_seconds():
    client = AsyncMock()

    store = build_state_store(
        make_settings(storage_backend="redis", state_ttl_ms=90_500), redis_client=client
    )

    assert isinstance(store, RedisStateStore)
    assert store.redis is client
    assert store.ttl_seconds == 90


@pytest.mark.unit
def test_encryption_wraps_backend():
    store = build_state_store(make_settings(encryption_key=Fernet.generate_key().decode()))

    assert isinstance(store, EncryptedStateStore)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_in_memory_bus_by_default():
    assert isinstance(await build_change_bus(make_settings()), InMemoryChangeBus)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cross_process_bus_is_started():
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen():
        return
        yield

    pubsub.listen = listen
    client = MagicMock()
    client.pubsub.return_value = pubsub

    bus = await build_change_bus(
        make_settings(cross_process_bus=True, change_channel="custom"), redis_client=client
    )

    assert isinstance(bus, RedisChangeBus)
    pubsub.subscribe.assert_awaited_once_with("custom")
    await bus.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_protection_service_end_to_end(clock):
    service = await create_protection_service(
        make_settings(max_attempts=2, key_secret="factory-secret"), clock=clock
    )
    try:
        await service.increment_failed_attempts("user")
        await service.increment_failed_attempts("user")

        assert await service.is_account_locked("user") is True
        assert service.get_config().max_attempts == 2
        assert service._sweeper.running is True
    finally:
        await service.close()

    assert service._sweeper.running is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sweeper_can_be_disabled(clock):
    service = await create_protection_service(make_settings(), clock=clock, start_sweeper=False)

    assert service._sweeper.running is False
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_inconsistent_policy_fails_fast():
    with pytest.raises(InvalidConfigError):
        await create_protection_service(make_settings(base_delay_ms=5000, max_delay_ms=1000))
