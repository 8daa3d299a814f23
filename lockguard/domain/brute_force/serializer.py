"""Per-key mutual exclusion for state mutations.

Mutations of the same security record must run one at a time and observe
each other's writes, while mutations of different records must not contend
on a shared lock. KeyedSerializer keeps one ``asyncio.Lock`` per active key
and drops it as soon as nobody holds or waits for it, so the map only grows
with the number of keys that currently have work in flight.
"""

import asyncio
from typing import Awaitable, Callable, Dict, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class KeyedSerializer:
    """Runs async operations one at a time per key, FIFO within a key."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Await ``operation()`` once every earlier operation on ``key`` finished.

        An exception raised by the operation propagates to this caller only;
        the slot is released either way so later operations still run.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                return await operation()
        finally:
            self._release(key)

    def _release(self, key: str) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining > 0:
            self._users[key] = remaining
            return
        self._users.pop(key, None)
        self._locks.pop(key, None)

    def is_busy(self, key: str) -> bool:
        return self._users.get(key, 0) > 0

    def evict_idle(self) -> int:
        """Drop slots that have no holder and no waiter. Returns how many."""
        idle = [
            key
            for key, lock in self._locks.items()
            if self._users.get(key, 0) == 0 and not lock.locked()
        ]
        for key in idle:
            del self._locks[key]
        if idle:
            logger.debug("Evicted idle serializer slots", count=len(idle))
        return len(idle)

    def __len__(self) -> int:
        return len(self._locks)
