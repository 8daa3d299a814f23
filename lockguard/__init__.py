"""Lockguard: brute-force protection and account lockout.

Tracks failed authentication attempts per identifier, enforces progressive
delay and temporary lockout, persists state through a pluggable store and
keeps concurrent observers in sync through a change bus.
"""

from lockguard.core.clock import Clock, ManualClock, SystemClock
from lockguard.core.exceptions import (
    CorruptedStateError,
    InvalidConfigError,
    LockguardError,
    StorageError,
)
from lockguard.domain.brute_force import (
    BruteForceProtectionService,
    ChangeBus,
    KeyedSerializer,
    RateLimitConfig,
    RateLimitStatus,
    SecurityState,
    StateStore,
    StateSweeper,
)

__all__ = [
    "BruteForceProtectionService",
    "ChangeBus",
    "Clock",
    "CorruptedStateError",
    "InvalidConfigError",
    "KeyedSerializer",
    "LockguardError",
    "ManualClock",
    "RateLimitConfig",
    "RateLimitStatus",
    "SecurityState",
    "StateStore",
    "StateSweeper",
    "StorageError",
    "SystemClock",
]
