"""Time sources for the lockout state machine.

All timestamps are integer milliseconds since the Unix epoch, the unit used
by the persisted record format.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time in milliseconds."""

    def now_ms(self) -> int:
        ...


class SystemClock:
    """Wall clock backed by ``time.time``."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Deterministic clock for tests; only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now = int(start_ms)

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> None:
        if ms < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += int(ms)

    def set(self, now_ms: int) -> None:
        self._now = int(now_ms)
