import pytest
import pytest_asyncio

from lockguard.core.clock import ManualClock
from lockguard.domain.brute_force import (
    BruteForceProtectionService,
    KeyedSerializer,
    RateLimitConfig,
    StorageKeyDeriver,
)
from lockguard.infrastructure.change_bus.memory import InMemoryChangeBus
from lockguard.infrastructure.storage.memory import InMemoryStateStore


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def change_bus():
    return InMemoryChangeBus()


@pytest.fixture
def key_deriver():
    return StorageKeyDeriver(prefix="auth_security_state", secret="test-secret")


@pytest.fixture
def config():
    """Short policy used by most tests: lock after 3 failures for 5 seconds."""
    return RateLimitConfig(max_attempts=3, lockout_duration=5000, base_delay=100, max_delay=30000)


@pytest.fixture
def serializer():
    return KeyedSerializer()


@pytest_asyncio.fixture
async def service(store, config, change_bus, clock, key_deriver, serializer):
    protection = BruteForceProtectionService(
        store=store,
        config=config,
        change_bus=change_bus,
        clock=clock,
        key_deriver=key_deriver,
        serializer=serializer,
    )
    yield protection
    await protection.close()
