"""Brute Force Protection Domain

Per-identifier failed-attempt tracking, progressive delay and temporary
lockout, following the same layering as the rest of the package:

- Value Objects: RateLimitConfig, RateLimitStatus, StorageKeyDeriver
- Entities: SecurityState
- Repositories: StateStore and ChangeBus contracts
- Services: BruteForceProtectionService, KeyedSerializer, StateSweeper
"""

from .entities import SecurityState
from .repositories import ChangeBus, StateChangeCallback, StateStore
from .serializer import KeyedSerializer
from .services import BruteForceProtectionService
from .sweeper import StateSweeper
from .value_objects import RateLimitConfig, RateLimitStatus, StorageKeyDeriver

__all__ = [
    "BruteForceProtectionService",
    "ChangeBus",
    "KeyedSerializer",
    "RateLimitConfig",
    "RateLimitStatus",
    "SecurityState",
    "StateChangeCallback",
    "StateStore",
    "StateSweeper",
    "StorageKeyDeriver",
]
