"""In-memory state store for tests and single-process deployments."""

from typing import Dict, List, Optional, Set

import structlog

from lockguard.core.exceptions import StorageError
from lockguard.domain.brute_force.repositories import StateStore

logger = structlog.get_logger(__name__)


class InMemoryStateStore(StateStore):
    """Dictionary-backed StateStore.

    ``fail_on`` holds operation names ("store", "retrieve", "remove",
    "list_keys") that should raise ``StorageError``, which lets tests exercise
    the fail-open and fail-closed paths without a real outage.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self.fail_on: Set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError(f"Simulated {operation} failure")

    async def store(self, key: str, payload: str) -> None:
        self._check("store")
        self._data[key] = payload

    async def retrieve(self, key: str) -> Optional[str]:
        self._check("retrieve")
        return self._data.get(key)

    async def remove(self, key: str) -> None:
        self._check("remove")
        self._data.pop(key, None)

    async def list_keys(self, prefix: str) -> List[str]:
        self._check("list_keys")
        return [key for key in self._data if key.startswith(prefix)]

    def snapshot(self) -> Dict[str, str]:
        """Copy of the raw contents, for inspection."""
        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)
