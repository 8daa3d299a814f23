"""Change bus adapters."""

from .memory import InMemoryChangeBus
from .redis import RedisChangeBus

__all__ = ["InMemoryChangeBus", "RedisChangeBus"]
