"""TTL sweeper for security records.

Lazy expiration in the service keeps lockout decisions correct without any
background work; the sweeper only bounds storage growth. It removes records
whose last failed attempt is older than the TTL (lockout status does not
matter), records without a last attempt and without a live lockout, and
corrupted records. Every failure is logged and swallowed.
"""

import asyncio
import contextlib
from typing import Optional

import structlog

from lockguard.core.clock import Clock
from lockguard.core.exceptions import CorruptedStateError

from .entities import SecurityState
from .repositories import ChangeBus, StateStore
from .serializer import KeyedSerializer
from .value_objects import MAX_LOCKOUT_MS, StorageKeyDeriver

logger = structlog.get_logger(__name__)


class StateSweeper:
    """Ages out stale security records, on demand or periodically."""

    def __init__(
        self,
        store: StateStore,
        serializer: KeyedSerializer,
        key_deriver: StorageKeyDeriver,
        clock: Clock,
        ttl_ms: int = MAX_LOCKOUT_MS,
        change_bus: Optional[ChangeBus] = None,
    ):
        self._store = store
        self._serializer = serializer
        self._keys = key_deriver
        self._clock = clock
        self._ttl_ms = ttl_ms
        self._bus = change_bus
        self._task: Optional[asyncio.Task] = None

    async def cleanup_expired_states(self) -> int:
        """Remove stale records and idle serializer slots.

        Returns:
            int: Number of records removed
        """
        removed = 0
        try:
            keys = await self._store.list_keys(self._keys.key_prefix)
        except Exception as e:
            logger.error("Error listing security states for cleanup", error=str(e))
            return 0

        for key in keys:
            try:
                if await self._serializer.run(key, lambda key=key: self._sweep_key(key)):
                    removed += 1
                    if self._bus is not None:
                        await self._bus.publish(key, None)
            except Exception as e:
                logger.error("Error cleaning up security state", key=key, error=str(e))

        evicted = self._serializer.evict_idle()
        logger.info(
            "Security state cleanup completed",
            scanned=len(keys),
            removed=removed,
            evicted_slots=evicted,
        )
        return removed

    async def _sweep_key(self, key: str) -> bool:
        now = self._clock.now_ms()
        try:
            payload = await self._store.retrieve(key)
            if payload is None:
                return False
            state = SecurityState.from_payload(payload)
        except CorruptedStateError:
            await self._store.remove(key)
            return True

        if not self._is_stale(state, now):
            return False
        await self._store.remove(key)
        return True

    def _is_stale(self, state: SecurityState, now: int) -> bool:
        if state.lockout_until is not None and state.lockout_until > now + MAX_LOCKOUT_MS:
            return True
        if state.last_attempt is None:
            return not state.is_locked_at(now)
        return now - state.last_attempt > self._ttl_ms

    # ------------------------------------------------------------------
    # Periodic mode
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: float) -> None:
        """Start sweeping every ``interval_seconds``. Must be called from a running loop."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run_periodically(interval_seconds), name="lockguard-state-sweeper"
        )
        logger.info("Security state sweeper started", interval_seconds=interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Security state sweeper stopped")

    async def _run_periodically(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.cleanup_expired_states()
