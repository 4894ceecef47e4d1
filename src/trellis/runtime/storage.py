"""
Key-value storage for persisted query results and the last valid structure
document.

Any object with async ``get`` / ``set`` / ``delete`` satisfies
:class:`KeyValueStore`. Two implementations ship here:

- :class:`MemoryKeyValueStore` - process-local, for tests and ephemeral hosts
- :class:`FileKeyValueStore` - one file per key under a directory

Callers treat storage as fail-open: a failing store degrades to "no
persisted value", never to a failed render.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


def storage_key(scope: str, identity: str) -> str:
    """Build a namespaced storage key: ``trellis:{scope}:{hash}``."""
    digest = hashlib.sha256(identity.encode()).hexdigest()[:16]
    return f"trellis:{scope}:{digest}"


class MemoryKeyValueStore:
    """Dict-backed store."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class FileKeyValueStore:
    """
    Directory-backed store; one file per key.

    Writes go to a temporary file first and are renamed into place, so a
    crash mid-write never leaves a truncated value behind.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        name = hashlib.sha256(key.encode()).hexdigest()
        return self.directory / f"{name}.bin"

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    def _read(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def _write(self, key: str, value: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(value)
        os.replace(tmp, path)

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# =============================================================================
# JSON helpers (fail-open)
# =============================================================================


async def load_json(store: KeyValueStore | None, key: str) -> Any | None:
    """Read and decode a JSON value; ``None`` on miss or any failure."""
    if store is None:
        return None
    try:
        raw = await store.get(key)
        if raw:
            return json.loads(raw)
    except Exception as e:
        logger.debug("Storage get failed for %s: %s", key, e)
    return None


async def save_json(store: KeyValueStore | None, key: str, value: Any) -> bool:
    """Encode and write a JSON value; returns False on failure."""
    if store is None:
        return False
    try:
        await store.set(key, json.dumps(value, default=str).encode())
        return True
    except Exception as e:
        logger.debug("Storage set failed for %s: %s", key, e)
        return False


async def delete_key(store: KeyValueStore | None, key: str) -> None:
    if store is None:
        return
    try:
        await store.delete(key)
    except Exception as e:
        logger.debug("Storage delete failed for %s: %s", key, e)
