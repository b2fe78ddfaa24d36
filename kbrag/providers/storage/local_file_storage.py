"""Local-disk storage for uploaded document files.

Paths stored on document records are relative to the upload directory.
Reads run in a worker thread so large PDFs do not block the event loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from kbrag.interfaces.file_storage import IFileStorage

logger = structlog.get_logger(logger_name=__name__)


class LocalFileStorage(IFileStorage):
    """Reads uploaded files from a directory on local disk."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    async def read(self, path: str) -> bytes | None:
        if not path:
            return None
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            logger.warning("file_outside_upload_dir", path=path)
            return None
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as exc:
            logger.warning("file_read_failed", path=path, error=str(exc))
            return None
