"""
Brute Force Protection Repositories

Contracts for the two external collaborators of the lockout service. They
follow the Repository pattern so the domain depends on abstractions, not on
a particular storage or messaging technology.

Repositories:
- StateStore: Durable key/value persistence of serialized records
- ChangeBus: "state for key X changed" notifications across observers
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Union

from .entities import SecurityState

StateChangeCallback = Callable[[Optional[SecurityState]], Union[None, Awaitable[None]]]


class StateStore(ABC):
    """
    Repository interface for durable security state records.

    Payloads are opaque strings: the store performs no business validation.
    No transactional guarantee is assumed across keys or processes.
    """

    @abstractmethod
    async def store(self, key: str, payload: str) -> None:
        """
        Persist a payload under a key, replacing any previous value.

        Raises:
            StorageError: When the write fails
        """
        pass

    @abstractmethod
    async def retrieve(self, key: str) -> Optional[str]:
        """
        Read the payload stored under a key.

        Returns:
            The payload, or None when the key is absent

        Raises:
            StorageError: When the read fails
            CorruptedStateError: When a store with an integrity envelope
                detects tampering
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """
        Delete a key. Deleting an absent key is not an error.

        Raises:
            StorageError: When the delete fails
        """
        pass

    @abstractmethod
    async def list_keys(self, prefix: str) -> List[str]:
        """
        List the keys that start with a prefix.

        Raises:
            StorageError: When the listing fails
        """
        pass

    async def close(self) -> None:
        """Release any connection held by the store."""
        return None


class ChangeBus(ABC):
    """
    Interface for best-effort change notifications.

    The bus is a hint for observers, never the system of record: consumers
    must re-check through the rate limiter before acting on a notification.
    """

    @abstractmethod
    def subscribe(self, key: str, callback: StateChangeCallback) -> None:
        """Register a callback for changes to a key."""
        pass

    @abstractmethod
    def unsubscribe(self, key: str, callback: StateChangeCallback) -> None:
        """Remove a previously registered callback. Unknown callbacks are ignored."""
        pass

    @abstractmethod
    async def publish(self, key: str, state: Optional[SecurityState]) -> None:
        """
        Announce the new state of a key, or None once it has been removed.

        Delivery failures are logged, never raised.
        """
        pass

    async def close(self) -> None:
        """Stop delivery and release resources."""
        return None
