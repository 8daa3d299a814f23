"""State store adapters."""

from .encrypted import EncryptedStateStore
from .file import FileStateStore
from .memory import InMemoryStateStore
from .redis import RedisStateStore

__all__ = [
    "EncryptedStateStore",
    "FileStateStore",
    "InMemoryStateStore",
    "RedisStateStore",
]
