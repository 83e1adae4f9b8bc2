"""
Local-disk document storage.

Uploaded PDFs are written under settings.upload_dir by the (out of scope)
upload flow; the pipeline only ever reads them back. File I/O runs in a
worker thread so a large read never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path

from docintake.core.exceptions import StorageReadError

logger = logging.getLogger(__name__)


class LocalDocumentStorage:

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, file_name: str) -> Path:
        path = (self._root / file_name).resolve()
        # stored names are relative; reject anything escaping the root
        if self._root != path and self._root not in path.parents:
            raise StorageReadError(file_name, "path escapes upload directory")
        return path

    async def read_document_bytes(self, file_name: str) -> bytes:
        path = self._resolve(file_name)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise StorageReadError(file_name, "file not found") from exc
        except OSError as exc:
            raise StorageReadError(file_name, str(exc)) from exc

        logger.debug("Storage | read file=%s bytes=%d", file_name, len(data))
        return data

    async def save_document_bytes(self, file_name: str, data: bytes) -> str:
        """Write bytes under the root; returns the SHA-256 hex digest."""
        path = self._resolve(file_name)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        return hashlib.sha256(data).hexdigest()
