"""
Brute Force Protection Domain Service

Orchestrates the per-identifier lockout state machine:

    Clean --failure--> Warned(k) --failure--> ... --failure--> Locked(until)
    Warned/Locked --success--> Clean
    Locked --time >= until--> Clean   (lazy, on the next read or write)

An authentication flow calls ``check_rate_limit`` before verifying
credentials, ``increment_failed_attempts`` on a verification failure and
``reset_failed_attempts`` on success.

Failure policy:
- Read path (``check_rate_limit``) fails open on storage errors: bypassing a
  read-time error gives an attacker nothing the write path does not record.
- Write path (``increment_failed_attempts``, ``reset_failed_attempts``) fails
  closed: storage errors propagate so a storage outage cannot be used to
  retry indefinitely.
- Corrupted records are deleted and treated as absent.
"""

from __future__ import annotations

from typing import Optional, Tuple

import structlog

from lockguard.core.clock import Clock, SystemClock
from lockguard.core.exceptions import CorruptedStateError, InvalidConfigError, StorageError
from lockguard.domain.security.logging_service import (
    SecurityEventLogger,
    SecurityEventType,
    security_event_logger,
)

from .entities import SecurityState
from .repositories import ChangeBus, StateChangeCallback, StateStore
from .serializer import KeyedSerializer
from .sweeper import StateSweeper
from .value_objects import (
    MAX_BACKOFF_EXPONENT,
    MAX_LOCKOUT_MS,
    RateLimitConfig,
    RateLimitStatus,
    StorageKeyDeriver,
)

logger = structlog.get_logger(__name__)


class BruteForceProtectionService:
    """
    Tracks failed attempts per identifier and enforces backoff and lockout.

    The service is the sole writer of security records. Every mutation of a
    record runs through the KeyedSerializer on the record's storage key and
    re-reads the record inside the serialized section, so concurrent
    mutations in one process never lose updates.

    Across processes sharing one store there is no compare-and-swap: two
    processes incrementing the same identifier at the same moment can both
    write the same count.
    """

    def __init__(
        self,
        store: StateStore,
        config: Optional[RateLimitConfig] = None,
        change_bus: Optional[ChangeBus] = None,
        clock: Optional[Clock] = None,
        key_deriver: Optional[StorageKeyDeriver] = None,
        serializer: Optional[KeyedSerializer] = None,
        security_logger: Optional[SecurityEventLogger] = None,
    ):
        if change_bus is None:
            from lockguard.infrastructure.change_bus.memory import InMemoryChangeBus

            change_bus = InMemoryChangeBus()

        self._config = config or RateLimitConfig()
        self._store = store
        self._bus = change_bus
        self._clock = clock or SystemClock()
        self._keys = key_deriver or StorageKeyDeriver()
        self._serializer = serializer or KeyedSerializer()
        self._security_logger = security_logger or security_event_logger
        self._sweeper = StateSweeper(
            store=self._store,
            serializer=self._serializer,
            key_deriver=self._keys,
            clock=self._clock,
            ttl_ms=self._config.state_ttl,
            change_bus=self._bus,
        )

        logger.info(
            "BruteForceProtectionService initialized",
            max_attempts=self._config.max_attempts,
            lockout_duration_ms=self._config.lockout_duration,
            progressive_delay=self._config.progressive_delay,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def check_rate_limit(self, identifier: str) -> RateLimitStatus:
        """
        Report whether an identifier may attempt authentication.

        Expired lockouts are purged here, under the serializer, and reported
        as the unlocked default. Storage read errors fail open.

        Args:
            identifier: Opaque subject identifier

        Returns:
            RateLimitStatus for the identifier at the current time
        """
        key = self._keys.derive(identifier)
        now = self._clock.now_ms()

        try:
            try:
                state = await self._load_state(key, now)
            except CorruptedStateError:
                state = await self._purge_corrupted(identifier, key)
                now = self._clock.now_ms()
        except StorageError as e:
            self._security_logger.log_event(
                SecurityEventType.STORAGE_ERROR,
                identifier,
                "Rate limit check degraded: state store unreadable, failing open",
                action="check_rate_limit",
                error=str(e),
            )
            return RateLimitStatus.unlocked(self._config.max_attempts)

        if state is not None and state.lockout_expired_at(now):
            state = await self._expire_lockout(identifier, key)
            now = self._clock.now_ms()

        status = self._status_from(state, now)
        if status.is_locked:
            self._security_logger.log_event(
                SecurityEventType.ACCOUNT_LOCKED,
                identifier,
                "Rate limit check - account locked",
                action="check_rate_limit",
                remaining_time=status.remaining_time,
                failed_attempts=state.failed_attempts,
            )
        elif state is not None and state.failed_attempts > 0:
            logger.debug(
                "Rate limit status checked",
                failed_attempts=state.failed_attempts,
                attempts_remaining=status.attempts_remaining,
                progressive_delay=status.progressive_delay,
            )
        return status

    async def is_account_locked(self, identifier: str) -> bool:
        """Whether the identifier is locked right now. Fails open to False."""
        try:
            status = await self.check_rate_limit(identifier)
            return status.is_locked
        except Exception as e:
            logger.error("Error checking account lock status", error=str(e))
            return False

    async def get_remaining_lockout_time(self, identifier: str) -> int:
        """Milliseconds left on the lockout, 0 when unlocked or on error."""
        try:
            status = await self.check_rate_limit(identifier)
            return status.remaining_time or 0
        except Exception as e:
            logger.error("Error getting remaining lockout time", error=str(e))
            return 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def increment_failed_attempts(self, identifier: str) -> bool:
        """
        Record one failed authentication attempt.

        While a lockout is active the call is a no-op: the lockout is neither
        extended nor reset and False is returned. An expired lockout is
        treated as a clean slate, so the attempt counts as the first one.

        Args:
            identifier: Opaque subject identifier

        Returns:
            True if the attempt was recorded, False if ignored while locked

        Raises:
            StorageError: When the record cannot be read or written
        """
        key = self._keys.derive(identifier)
        discarded = False

        async def apply() -> Optional[SecurityState]:
            nonlocal discarded
            now = self._clock.now_ms()
            state, discarded = await self._read_state(identifier, key, now)

            if state is not None and state.is_locked_at(now):
                self._security_logger.log_event(
                    SecurityEventType.RATE_LIMIT_EXCEEDED,
                    identifier,
                    "Attempt to increment failed attempts while account locked",
                    action="increment_failed_attempts",
                    already_locked=True,
                    remaining_lockout_time=state.remaining_lockout(now),
                )
                return None

            if state is None or state.lockout_expired_at(now):
                state = SecurityState()

            attempts = state.failed_attempts + 1
            lockout_until = None
            if attempts >= self._config.max_attempts:
                lockout_until = now + self._config.lockout_duration
                if not self.validate_lockout_time(lockout_until):
                    raise InvalidConfigError("Computed lockout exceeds the 24 hour bound")

            state.record_failure(now, self.compute_progressive_delay(attempts), lockout_until)
            await self._store.store(key, state.to_payload())
            return state

        try:
            state = await self._serializer.run(key, apply)
        except StorageError as e:
            self._security_logger.log_event(
                SecurityEventType.STORAGE_ERROR,
                identifier,
                "Failed to update security state",
                action="increment_failed_attempts",
                error=str(e),
            )
            if discarded:
                await self._bus.publish(key, None)
            raise

        if state is None:
            return False

        if state.lockout_until is not None:
            self._security_logger.log_event(
                SecurityEventType.ACCOUNT_LOCKED,
                identifier,
                "Account locked after repeated failures",
                action="increment_failed_attempts",
                attempt_count=state.failed_attempts,
                lockout_duration=self._config.lockout_duration,
            )
        else:
            self._security_logger.log_event(
                SecurityEventType.FAILED_LOGIN,
                identifier,
                f"Failed attempt {state.failed_attempts} of {self._config.max_attempts}",
                action="increment_failed_attempts",
                attempt_count=state.failed_attempts,
                attempts_remaining=self._config.max_attempts - state.failed_attempts,
                progressive_delay=state.progressive_delay,
                lockout_pending=state.failed_attempts == self._config.max_attempts - 1,
            )

        await self._bus.publish(key, state)
        return True

    async def reset_failed_attempts(self, identifier: str) -> None:
        """
        Forget every failed attempt and lockout for an identifier.

        Raises:
            StorageError: When the record cannot be deleted
        """
        key = self._keys.derive(identifier)

        async def apply() -> None:
            await self._store.remove(key)

        try:
            await self._serializer.run(key, apply)
        except StorageError as e:
            self._security_logger.log_event(
                SecurityEventType.STORAGE_ERROR,
                identifier,
                "Failed to reset security state",
                action="reset_failed_attempts",
                error=str(e),
            )
            raise

        self._security_logger.log_event(
            SecurityEventType.SUCCESSFUL_LOGIN,
            identifier,
            "Security state reset",
            action="reset_failed_attempts",
        )
        await self._bus.publish(key, None)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_state_change_listener(self, identifier: str, callback: StateChangeCallback) -> None:
        """Call ``callback(state_or_None)`` whenever the identifier's record changes."""
        self._bus.subscribe(self._keys.derive(identifier), callback)

    def remove_state_change_listener(self, identifier: str, callback: StateChangeCallback) -> None:
        self._bus.unsubscribe(self._keys.derive(identifier), callback)

    # ------------------------------------------------------------------
    # Policy helpers
    # ------------------------------------------------------------------

    def compute_progressive_delay(self, failed_attempts: int) -> int:
        """Exponential backoff: base_delay * 2^(n-1), exponent capped at 5, clamped to max_delay."""
        if not self._config.progressive_delay or failed_attempts <= 0:
            return 0
        delay = self._config.base_delay * 2 ** min(failed_attempts - 1, MAX_BACKOFF_EXPONENT)
        return min(delay, self._config.max_delay)

    def validate_lockout_time(self, lockout_until: int) -> bool:
        """True iff ``now < lockout_until <= now + 24h``."""
        now = self._clock.now_ms()
        return now < lockout_until <= now + MAX_LOCKOUT_MS

    def get_config(self) -> RateLimitConfig:
        return self._config

    # ------------------------------------------------------------------
    # Hygiene & lifecycle
    # ------------------------------------------------------------------

    async def cleanup_expired_states(self) -> int:
        """Best-effort TTL sweep. Returns the number of removed records."""
        return await self._sweeper.cleanup_expired_states()

    def start_sweeper(self, interval_seconds: float) -> None:
        """Run ``cleanup_expired_states`` every ``interval_seconds`` in the background."""
        self._sweeper.start(interval_seconds)

    async def close(self) -> None:
        """Stop the sweeper and release the change bus and the store."""
        await self._sweeper.stop()
        await self._bus.close()
        await self._store.close()
        logger.info("BruteForceProtectionService closed")

    async def __aenter__(self) -> BruteForceProtectionService:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _status_from(self, state: Optional[SecurityState], now: int) -> RateLimitStatus:
        if state is None:
            return RateLimitStatus.unlocked(self._config.max_attempts)

        if state.is_locked_at(now):
            return RateLimitStatus(
                is_locked=True,
                can_attempt=False,
                attempts_remaining=0,
                progressive_delay=state.progressive_delay,
                remaining_time=state.lockout_until - now,
            )

        attempts_remaining = max(0, self._config.max_attempts - state.failed_attempts)
        return RateLimitStatus(
            is_locked=False,
            can_attempt=attempts_remaining > 0,
            attempts_remaining=attempts_remaining,
            progressive_delay=state.progressive_delay,
        )

    async def _load_state(self, key: str, now: int) -> Optional[SecurityState]:
        """Load and validate a record without side effects.

        Raises:
            StorageError: When the store cannot be read
            CorruptedStateError: When the record fails validation
        """
        payload = await self._store.retrieve(key)
        if payload is None:
            return None
        state = SecurityState.from_payload(payload)
        if state.lockout_until is not None and state.lockout_until > now + MAX_LOCKOUT_MS:
            raise CorruptedStateError("lockoutUntil lies beyond the 24 hour bound")
        if state.is_clean:
            return None
        return state

    async def _read_state(
        self, identifier: str, key: str, now: int
    ) -> Tuple[Optional[SecurityState], bool]:
        """Load a record inside the key's serialized section.

        A corrupted record is removed and reported as absent. The second
        element tells the caller a removal happened; the caller publishes it
        once the serialized section has been released.

        Raises:
            StorageError: When the store cannot be read
        """
        try:
            return await self._load_state(key, now), False
        except CorruptedStateError as e:
            return None, await self._discard_corrupted(identifier, key, e)

    async def _discard_corrupted(self, identifier: str, key: str, error: CorruptedStateError) -> bool:
        self._security_logger.log_event(
            SecurityEventType.SECURITY_STATE_CORRUPTED,
            identifier,
            "Corrupted security state discarded",
            reason=str(error),
        )
        try:
            await self._store.remove(key)
        except StorageError as e:
            logger.warning("Could not remove corrupted security state", error=str(e))
            return False
        return True

    async def _purge_corrupted(self, identifier: str, key: str) -> Optional[SecurityState]:
        """Remove a corrupted record under the serializer and return what is stored now.

        A writer may have replaced the record since the unserialized read, so
        the record is re-read and only removed if it is still corrupted.
        """

        async def purge() -> Tuple[Optional[SecurityState], bool]:
            return await self._read_state(identifier, key, self._clock.now_ms())

        state, discarded = await self._serializer.run(key, purge)
        if discarded:
            await self._bus.publish(key, None)
        return state

    async def _expire_lockout(self, identifier: str, key: str) -> Optional[SecurityState]:
        """Purge an expired lockout under the serializer and return what remains.

        Re-reads inside the serialized section, so concurrent callers purge
        at most once and a record re-locked in the meantime is kept.
        """

        async def purge() -> Tuple[bool, bool, Optional[SecurityState]]:
            now = self._clock.now_ms()
            state, discarded = await self._read_state(identifier, key, now)
            if state is not None and state.lockout_expired_at(now):
                await self._store.remove(key)
                return True, discarded, None
            return False, discarded, state

        try:
            purged, discarded, state = await self._serializer.run(key, purge)
        except StorageError as e:
            # The lockout is over either way; the sweeper removes the record later.
            self._security_logger.log_event(
                SecurityEventType.STORAGE_ERROR,
                identifier,
                "Could not purge expired lockout",
                action="check_rate_limit",
                error=str(e),
            )
            return None

        if purged:
            self._security_logger.log_event(
                SecurityEventType.LOCKOUT_EXPIRED,
                identifier,
                "Lockout expired",
                action="check_rate_limit",
            )
        if purged or discarded:
            await self._bus.publish(key, None)
        return state
