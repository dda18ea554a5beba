"""
Blob storage for uploaded audio.

Objects are addressed by a relative key such as ``<uid>/<timestamp>-<uuid>.mp3``.
"""

import asyncio
import os
from pathlib import Path

from core.logging import get_logger

logger = get_logger("storage")


class StorageError(Exception):
    """Raised when a blob cannot be written, read or deleted."""


class BlobStorage:
    """Local-filesystem blob store rooted at a single directory."""

    def __init__(self, root_directory: str):
        self.root = Path(root_directory).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)

    async def upload(self, key: str, content: bytes, content_type: str = None) -> str:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            logger.error("Blob upload failed", key=key, error=str(e))
            raise StorageError(f"Failed to store file: {e}") from e

        logger.info("Blob stored", key=key, size_bytes=len(content), content_type=content_type)
        return key

    async def download(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.error("Blob download failed", key=key, error=str(e))
            raise StorageError(f"Failed to read file: {e}") from e

    async def delete(self, key: str) -> bool:
        """Delete a blob. Returns False when it did not exist."""
        path = self._path_for(key)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Blob delete failed", key=key, error=str(e))
            raise StorageError(f"Failed to delete file: {e}") from e

        logger.info("Blob deleted", key=key)
        return True

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path_for(key).exists)
