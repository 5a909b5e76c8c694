"""
Local filesystem storage.

Used in development and in the test suite. Files are written under
LOCAL_STORAGE_DIR; blocking file I/O runs in a worker thread so the
event loop is never stalled.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from docintel.core.errors import StorageError
from docintel.storage.base import ObjectStorage, StoredObject, build_key

logger = logging.getLogger(__name__)


class LocalObjectStorage(ObjectStorage):

    backend_name = "local"

    def __init__(self, root: str | Path, prefix: str = "documents") -> None:
        self._root = Path(root).resolve()
        self._prefix = prefix

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        # Keys are server-generated, but never follow one outside the root
        if self._root not in path.parents:
            raise StorageError(f"Storage key escapes the storage root: {key!r}")
        return path

    async def put(self, filename: str, body: bytes, content_type: str) -> StoredObject:
        key = build_key(self._prefix, filename)
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.error("Local write failed | key=%s error=%s", key, exc)
            raise StorageError(f"Failed to save file: {exc.strerror or exc}") from exc

        logger.info("Local upload ok | key=%s size=%d", key, len(body))
        return StoredObject(
            key=key,
            size_bytes=len(body),
            content_type=content_type,
            url=path.as_uri(),
        )

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(f"Stored file not found: {key}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read stored file {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise StorageError(f"Failed to delete stored file {key}: {exc}") from exc
        logger.info("Local delete | key=%s", key)
