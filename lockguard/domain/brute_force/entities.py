"""Brute Force Protection Domain Entities

SecurityState is the per-identifier lockout ledger. It is created on the
first failed attempt, mutated on each subsequent failure and deleted on a
successful authentication, on lazy lockout expiry or by the sweeper.

Persisted wire format (compact JSON, absent optionals omitted):

    {"failedAttempts": int, "lockoutUntil"?: int, "lastAttempt"?: int,
     "progressiveDelay"?: int}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from lockguard.core.exceptions import CorruptedStateError

_WIRE_FIELDS = {
    "failedAttempts": "failed_attempts",
    "lockoutUntil": "lockout_until",
    "lastAttempt": "last_attempt",
    "progressiveDelay": "progressive_delay",
}


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass
class SecurityState:
    """Entity tracking failed attempts and lockout for one identifier.

    Business Rules:
    - failed_attempts is never negative
    - lockout_until is only set once failed_attempts reached max_attempts
    - a state with no failures and no lockout is equivalent to "absent"
    """

    failed_attempts: int = 0
    lockout_until: Optional[int] = None
    last_attempt: Optional[int] = None
    progressive_delay: int = 0

    def __post_init__(self):
        if not _is_non_negative_int(self.failed_attempts):
            raise ValueError("failed_attempts must be a non-negative integer")

    @property
    def is_clean(self) -> bool:
        return self.failed_attempts == 0 and self.lockout_until is None

    def is_locked_at(self, now: int) -> bool:
        return self.lockout_until is not None and now < self.lockout_until

    def lockout_expired_at(self, now: int) -> bool:
        return self.lockout_until is not None and now >= self.lockout_until

    def remaining_lockout(self, now: int) -> int:
        if not self.is_locked_at(now):
            return 0
        return self.lockout_until - now

    def record_failure(self, now: int, progressive_delay: int, lockout_until: Optional[int] = None) -> None:
        """Apply one failed attempt in place."""
        self.failed_attempts += 1
        self.last_attempt = now
        self.progressive_delay = progressive_delay
        if lockout_until is not None:
            self.lockout_until = lockout_until

    def to_dict(self) -> Dict[str, int]:
        data: Dict[str, int] = {"failedAttempts": self.failed_attempts}
        if self.lockout_until is not None:
            data["lockoutUntil"] = self.lockout_until
        if self.last_attempt is not None:
            data["lastAttempt"] = self.last_attempt
        if self.progressive_delay:
            data["progressiveDelay"] = self.progressive_delay
        return data

    def to_payload(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_payload(cls, payload: str) -> SecurityState:
        """Parse and structurally validate a persisted record.

        Raises:
            CorruptedStateError: If the payload is not valid JSON, is not an
                object, or any field has the wrong type or a negative value
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise CorruptedStateError("Security state payload is not valid JSON") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> SecurityState:
        """Validate a decoded wire record. Raises CorruptedStateError."""
        if not isinstance(data, dict):
            raise CorruptedStateError("Security state payload must be a JSON object")
        if data.get("failedAttempts") is None:
            raise CorruptedStateError("Security state payload is missing failedAttempts")

        values: Dict[str, Any] = {}
        for wire_name, attr in _WIRE_FIELDS.items():
            if wire_name not in data or data[wire_name] is None:
                continue
            value = data[wire_name]
            if not _is_non_negative_int(value):
                raise CorruptedStateError(f"Security state field {wire_name} is out of range")
            values[attr] = value

        return cls(**values)
