from __future__ import annotations

"""Structured exception hierarchy for Lockguard.

Every error carries a machine-readable ``code`` and a human-readable
``message``. The hierarchy mirrors the propagation policy of the lockout
service:

- ``StorageError`` is raised by state stores on I/O failure. The read path
  recovers from it (fail open), the write path lets it propagate.
- ``CorruptedStateError`` marks a persisted record that fails structural or
  integrity validation. It is always recovered locally.
- ``InvalidConfigError`` is fatal at construction time.
"""

from typing import Final

__all__: Final = [
    "LockguardError",
    "StorageError",
    "CorruptedStateError",
    "InvalidConfigError",
]


class LockguardError(Exception):
    """Base exception class for all custom errors in Lockguard.

    Attributes:
        message (str): A human-readable error message, suitable for logging.
        code (str): A unique, machine-readable error code.
    """

    message: str
    code: str = "generic_error"

    def __init__(self, message: str, code: str = "generic_error"):
        self.message = message
        self.code = code
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------


class StorageError(LockguardError):
    """Raised when a state store cannot read, write or delete a record.

    Covers I/O failures, connection loss and quota exhaustion. The original
    exception is chained as ``__cause__``.
    """

    def __init__(self, message: str = "State storage operation failed", code: str = "storage_error"):
        super().__init__(message, code)


class CorruptedStateError(LockguardError):
    """Raised when a persisted record fails structural or integrity checks."""

    def __init__(self, message: str = "Persisted security state is corrupted", code: str = "corrupted_state"):
        super().__init__(message, code)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class InvalidConfigError(LockguardError):
    """Raised when a rate limiter is configured with inconsistent values.

    Examples are ``max_attempts = 0`` or ``max_delay < base_delay``.
    """

    def __init__(self, message: str, code: str = "invalid_config"):
        super().__init__(message, code)
