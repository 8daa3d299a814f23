"""In-process change bus.

Delivers state change notifications to callbacks registered in the same
process. Callbacks may be plain functions or coroutine functions; each one
receives its own copy of the state so observers cannot mutate each other's
view. A failing callback is logged and does not stop delivery to the rest.
"""

import dataclasses
import inspect
from typing import Dict, List, Optional

import structlog

from lockguard.domain.brute_force.entities import SecurityState
from lockguard.domain.brute_force.repositories import ChangeBus, StateChangeCallback

logger = structlog.get_logger(__name__)


class InMemoryChangeBus(ChangeBus):
    """Per-key callback registry with best-effort delivery."""

    def __init__(self):
        self._subscribers: Dict[str, List[StateChangeCallback]] = {}

    def subscribe(self, key: str, callback: StateChangeCallback) -> None:
        callbacks = self._subscribers.setdefault(key, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def unsubscribe(self, key: str, callback: StateChangeCallback) -> None:
        callbacks = self._subscribers.get(key)
        if not callbacks or callback not in callbacks:
            return
        callbacks.remove(callback)
        if not callbacks:
            del self._subscribers[key]

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, ()))

    async def publish(self, key: str, state: Optional[SecurityState]) -> None:
        for callback in list(self._subscribers.get(key, ())):
            snapshot = dataclasses.replace(state) if state is not None else None
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "State change listener failed",
                    listener=getattr(callback, "__qualname__", repr(callback)),
                    error=str(e),
                )

    async def close(self) -> None:
        self._subscribers.clear()
