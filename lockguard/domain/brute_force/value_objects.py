"""
Brute Force Protection Value Objects

Immutable value objects for the lockout domain. They validate their
invariants at construction time so that the service never runs with an
inconsistent policy.

Value Objects:
- RateLimitConfig: The lockout policy (thresholds, durations, backoff)
- RateLimitStatus: Result of a rate limit check
- StorageKeyDeriver: Deterministic, non-reversible identifier -> key mapping
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from lockguard.core.exceptions import InvalidConfigError

if TYPE_CHECKING:
    from lockguard.core.config.settings import Settings

MAX_LOCKOUT_MS = 24 * 60 * 60 * 1000
# 2**5: the multiplier stops growing after the sixth attempt
MAX_BACKOFF_EXPONENT = 5


def _require_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigError(f"{name} must be an integer, got {type(value).__name__}")
    return value


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """
    Immutable lockout policy.

    Business Rules:
    - max_attempts >= 1
    - 0 < lockout_duration <= 24h, so every activated lockout passes the
      lockout time bound
    - base_delay >= 0 and max_delay >= base_delay
    - state_ttl > 0
    All durations are milliseconds.
    """

    max_attempts: int = 5
    lockout_duration: int = 15 * 60 * 1000
    progressive_delay: bool = True
    base_delay: int = 1000
    max_delay: int = 30000
    state_ttl: int = MAX_LOCKOUT_MS

    def __post_init__(self):
        max_attempts = _require_int("max_attempts", self.max_attempts)
        lockout_duration = _require_int("lockout_duration", self.lockout_duration)
        base_delay = _require_int("base_delay", self.base_delay)
        max_delay = _require_int("max_delay", self.max_delay)
        state_ttl = _require_int("state_ttl", self.state_ttl)

        if not isinstance(self.progressive_delay, bool):
            raise InvalidConfigError("progressive_delay must be a boolean")
        if max_attempts < 1:
            raise InvalidConfigError("max_attempts must be at least 1")
        if lockout_duration <= 0:
            raise InvalidConfigError("lockout_duration must be positive")
        if lockout_duration > MAX_LOCKOUT_MS:
            raise InvalidConfigError("lockout_duration must not exceed 24 hours")
        if base_delay < 0:
            raise InvalidConfigError("base_delay must not be negative")
        if max_delay < base_delay:
            raise InvalidConfigError("max_delay must be greater than or equal to base_delay")
        if state_ttl <= 0:
            raise InvalidConfigError("state_ttl must be positive")

    @classmethod
    def from_settings(cls, settings: "Settings") -> RateLimitConfig:
        """Build a policy from loaded ``Settings``."""
        return cls(
            max_attempts=settings.max_attempts,
            lockout_duration=settings.lockout_duration_ms,
            progressive_delay=settings.progressive_delay,
            base_delay=settings.base_delay_ms,
            max_delay=settings.max_delay_ms,
            state_ttl=settings.state_ttl_ms,
        )


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    """Outcome of ``check_rate_limit`` for one identifier."""

    is_locked: bool
    can_attempt: bool
    attempts_remaining: int
    progressive_delay: int = 0
    remaining_time: Optional[int] = None

    @classmethod
    def unlocked(cls, max_attempts: int) -> RateLimitStatus:
        """The status of an identifier with no recorded failures."""
        return cls(
            is_locked=False,
            can_attempt=True,
            attempts_remaining=max_attempts,
            progressive_delay=0,
        )


class StorageKeyDeriver:
    """
    Maps identifiers to storage keys of the form ``<prefix>:<hmac-hex>``.

    The mapping is deterministic for a given secret and cannot be reversed,
    so raw identifiers never appear in storage key names or on the bus.
    """

    def __init__(self, prefix: str = "auth_security_state", secret: str = "lockguard-development-key"):
        if not prefix or ":" in prefix:
            raise InvalidConfigError("storage key prefix must be non-empty and must not contain ':'")
        if not secret:
            raise InvalidConfigError("storage key secret must not be empty")
        self._prefix = prefix
        self._secret = secret.encode("utf-8")

    @property
    def key_prefix(self) -> str:
        """Prefix shared by every key this deriver produces, colon included."""
        return f"{self._prefix}:"

    def derive(self, identifier: str) -> str:
        digest = hmac.new(self._secret, identifier.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{self._prefix}:{digest}"

    def owns(self, key: str) -> bool:
        return key.startswith(self.key_prefix)
