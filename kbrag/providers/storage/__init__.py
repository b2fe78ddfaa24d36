"""Uploaded-file storage backends."""

from kbrag.providers.storage.local_file_storage import LocalFileStorage

__all__ = ["LocalFileStorage"]
