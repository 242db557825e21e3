"""Cache storage port and bundled adapters.

The manager only needs two coroutines from a storage backend, described by
the :class:`Storage` protocol. Any object with matching ``get``/``set``
methods can be passed, so applications plug in Redis, a database, or a
test double without subclassing anything here.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from pydantic import ValidationError

from pyresource.exceptions import ResourceStorageError
from pyresource.models import CacheEntry

_logger = logging.getLogger(__name__)


class Storage(Protocol):
    """Structural key-value interface used by the resource manager."""

    async def get(self, key: str) -> CacheEntry | None:
        ...

    async def set(self, key: str, entry: CacheEntry) -> None:
        ...


class MemoryStorage:
    """Process-local storage. Entries live as long as the instance."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class JsonFileStorage:
    """Storage keeping one JSON document per key inside *directory*.

    Keys are percent-encoded into file names, so any string key maps to a
    single file. Blocking file IO runs in the loop's default executor.
    Writes of one key are serialized in call order and each goes through
    its own temporary file, so the document is always replaced whole.
    Resource data must be JSON-serializable for writes to succeed.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._write_locks: dict[str, asyncio.Lock] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ResourceStorageError(f"Failed to read {path}: {exc}", key=key) from exc

    def _write(self, key: str, payload: str) -> None:
        path = self._path(key)
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise ResourceStorageError(f"Failed to write {path}: {exc}", key=key) from exc

    async def get(self, key: str) -> CacheEntry | None:
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._read, key)
        if text is None:
            return None
        try:
            return CacheEntry.model_validate_json(text)
        except ValidationError as exc:
            raise ResourceStorageError(f"Corrupt cache document for {key!r}", key=key) from exc

    async def set(self, key: str, entry: CacheEntry) -> None:
        try:
            payload = entry.model_dump_json()
        except (TypeError, ValueError) as exc:
            raise ResourceStorageError(f"Cache entry for {key!r} is not JSON-serializable", key=key) from exc
        lock = self._write_locks.setdefault(key, asyncio.Lock())
        async with lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write, key, payload)
        _logger.debug("Wrote cache entry %s (%d bytes)", key, len(payload))
