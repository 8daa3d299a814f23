"""Encryption-at-rest decorator for state stores.

Wraps any StateStore and encrypts payloads with Fernet (AES-128-CBC +
HMAC-SHA256) before they reach the underlying store. Stored values are a
JSON envelope:

    {"v": 1, "ts": <write time in ms>, "data": "<fernet token>"}

Security Properties:
    - Authenticated encryption: any modification of the token is detected
    - Unknown envelope versions and malformed envelopes are rejected
    - Tampering surfaces as CorruptedStateError, which the service answers
      by deleting the record and treating it as absent
"""

import json
from typing import List, Optional, Union

import structlog
from cryptography.fernet import Fernet, InvalidToken

from lockguard.core.clock import Clock, SystemClock
from lockguard.core.exceptions import CorruptedStateError
from lockguard.domain.brute_force.repositories import StateStore

logger = structlog.get_logger(__name__)

ENVELOPE_VERSION = 1


class EncryptedStateStore(StateStore):
    """StateStore decorator adding Fernet encryption and integrity checks."""

    def __init__(self, inner: StateStore, encryption_key: Union[str, bytes], clock: Optional[Clock] = None):
        """
        Args:
            inner: Store that receives the encrypted envelopes
            encryption_key: URL-safe base64 Fernet key (``Fernet.generate_key()``)
            clock: Source of the envelope timestamp
        """
        key = encryption_key.encode() if isinstance(encryption_key, str) else encryption_key
        self._fernet = Fernet(key)
        self._inner = inner
        self._clock = clock or SystemClock()
        logger.info("EncryptedStateStore initialized", encryption_algorithm="Fernet_AES_128_CBC_HMAC_SHA256")

    async def store(self, key: str, payload: str) -> None:
        envelope = {
            "v": ENVELOPE_VERSION,
            "ts": self._clock.now_ms(),
            "data": self._fernet.encrypt(payload.encode("utf-8")).decode("ascii"),
        }
        await self._inner.store(key, json.dumps(envelope, separators=(",", ":")))

    async def retrieve(self, key: str) -> Optional[str]:
        raw = await self._inner.retrieve(key)
        if raw is None:
            return None
        return self._open(raw)

    def _open(self, raw: str) -> str:
        try:
            envelope = json.loads(raw)
        except ValueError as e:
            raise CorruptedStateError("Encrypted envelope is not valid JSON") from e

        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), str):
            raise CorruptedStateError("Encrypted envelope has an invalid structure")
        if envelope.get("v") != ENVELOPE_VERSION:
            raise CorruptedStateError(f"Unsupported envelope version: {envelope.get('v')!r}")

        try:
            return self._fernet.decrypt(envelope["data"].encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            logger.warning("Encrypted security state failed authentication")
            raise CorruptedStateError("Encrypted security state failed authentication") from e

    async def remove(self, key: str) -> None:
        await self._inner.remove(key)

    async def list_keys(self, prefix: str) -> List[str]:
        return await self._inner.list_keys(prefix)

    async def close(self) -> None:
        await self._inner.close()
