"""Abstract base class for reading uploaded document bytes."""

from __future__ import annotations

from abc import ABC, abstractmethod


class IFileStorage(ABC):
    """Contract for the object store holding uploaded files."""

    @abstractmethod
    async def read(self, path: str) -> bytes | None:
        """Return the file's bytes, or ``None`` if it cannot be read.

        Download failures are not fatal for ingestion: the extractor falls
        back to a placeholder page when no bytes are available.
        """
