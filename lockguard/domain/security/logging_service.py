"""Security event logging for the lockout subsystem.

Lockout decisions are security relevant: a lockout, a storage outage on the
read path or a tampered record all deserve an audit line. This service emits
them as structured events on the ``security.audit`` logger.

Privacy:
- Raw identifiers (emails, usernames) are never logged. Callers pass the
  identifier and the service replaces it with a short SHA-256 fingerprint
  that stays stable across processes, so events for the same subject can be
  correlated without exposing who the subject is.
"""

import hashlib
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class SecurityEventType(Enum):
    """Security event types emitted by the lockout service."""

    FAILED_LOGIN = "failed_login"
    SUCCESSFUL_LOGIN = "successful_login"
    ACCOUNT_LOCKED = "account_locked"
    LOCKOUT_EXPIRED = "lockout_expired"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    STORAGE_ERROR = "storage_error"
    SECURITY_STATE_CORRUPTED = "security_state_corrupted"


class SecurityEventLevel(Enum):
    """Security event severity levels for threat classification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_DEFAULT_LEVELS: Dict[SecurityEventType, SecurityEventLevel] = {
    SecurityEventType.FAILED_LOGIN: SecurityEventLevel.LOW,
    SecurityEventType.SUCCESSFUL_LOGIN: SecurityEventLevel.LOW,
    SecurityEventType.ACCOUNT_LOCKED: SecurityEventLevel.HIGH,
    SecurityEventType.LOCKOUT_EXPIRED: SecurityEventLevel.LOW,
    SecurityEventType.RATE_LIMIT_EXCEEDED: SecurityEventLevel.MEDIUM,
    SecurityEventType.STORAGE_ERROR: SecurityEventLevel.HIGH,
    SecurityEventType.SECURITY_STATE_CORRUPTED: SecurityEventLevel.HIGH,
}

_LOG_METHODS: Dict[SecurityEventLevel, str] = {
    SecurityEventLevel.LOW: "info",
    SecurityEventLevel.MEDIUM: "warning",
    SecurityEventLevel.HIGH: "warning",
    SecurityEventLevel.CRITICAL: "error",
}


class SecurityEventLogger:
    """Emits structured security events with masked identifiers."""

    FINGERPRINT_LENGTH = 12

    def __init__(self, component: str = "BruteForceProtectionService"):
        self._component = component
        self._logger = structlog.get_logger("security.audit")

    def mask_identifier(self, identifier: Optional[str]) -> str:
        """Return a stable, non-reversible fingerprint for an identifier.

        Args:
            identifier: Raw identifier (hashed email, username, ...)

        Returns:
            str: ``"[empty]"`` for missing input, otherwise the first
            characters of the SHA-256 hex digest
        """
        if not identifier:
            return "[empty]"
        digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()
        return digest[: self.FINGERPRINT_LENGTH]

    def log_event(
        self,
        event_type: SecurityEventType,
        identifier: Optional[str] = None,
        description: str = "",
        level: Optional[SecurityEventLevel] = None,
        **context: Any,
    ) -> Dict[str, Any]:
        """Log a security event and return the structured payload.

        Args:
            event_type: What happened
            identifier: Raw identifier of the subject, masked before logging
            description: Human-readable summary
            level: Severity, defaults to the level registered for the type
            **context: Additional key/value context (never raw identifiers)

        Returns:
            Dict[str, Any]: The event fields as logged
        """
        level = level or _DEFAULT_LEVELS.get(event_type, SecurityEventLevel.MEDIUM)
        event = {
            "event_type": event_type.value,
            "severity": level.value,
            "component": self._component,
            "subject": self.mask_identifier(identifier),
            **context,
        }
        log_method = getattr(self._logger, _LOG_METHODS[level])
        log_method(description or event_type.value, **event)
        return event


# Default instance shared by services that do not inject their own
security_event_logger = SecurityEventLogger()
