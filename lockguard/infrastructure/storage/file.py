"""File-backed state store.

One file per key inside a directory. File names are the URL-quoted keys, so
any key maps to a portable file name and listing the directory recovers the
keys. Writes go to a temporary file first and are moved into place with
``os.replace`` so readers never observe a partial record. Blocking file I/O
runs in a worker thread to keep the event loop responsive.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote, unquote

import structlog

from lockguard.core.exceptions import StorageError
from lockguard.domain.brute_force.repositories import StateStore

logger = structlog.get_logger(__name__)

_SUFFIX = ".json"


class FileStateStore(StateStore):
    """StateStore persisting each record as a file under ``directory``."""

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)
        logger.info("FileStateStore initialized", directory=str(self._directory))

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{quote(key, safe='')}{_SUFFIX}"

    async def store(self, key: str, payload: str) -> None:
        try:
            await asyncio.to_thread(self._write, self._path_for(key), payload)
        except OSError as e:
            logger.error("Failed to write security state file", error=str(e))
            raise StorageError("Failed to write security state") from e

    async def retrieve(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._read, self._path_for(key))
        except OSError as e:
            logger.error("Failed to read security state file", error=str(e))
            raise StorageError("Failed to read security state") from e

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._path_for(key).unlink, missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete security state file", error=str(e))
            raise StorageError("Failed to delete security state") from e

    async def list_keys(self, prefix: str) -> List[str]:
        try:
            names = await asyncio.to_thread(self._list)
        except OSError as e:
            logger.error("Failed to list security state files", error=str(e))
            raise StorageError("Failed to list security states") from e
        keys = (unquote(name[: -len(_SUFFIX)]) for name in names)
        return [key for key in keys if key.startswith(prefix)]

    def _write(self, path: Path, payload: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _list(self) -> List[str]:
        if not self._directory.exists():
            return []
        return [
            entry.name
            for entry in self._directory.iterdir()
            if entry.is_file() and entry.name.endswith(_SUFFIX) and not entry.name.startswith(".tmp-")
        ]
