"""Blob storage abstraction. Local filesystem, keyed by opaque storage keys.

Keys are scoped per owner (``{owner}/{file_id}_{filename}``) so two users can
never collide. Every filesystem failure surfaces as ``StorageError``.
"""
import logging
from pathlib import Path

import aiofiles
import aiofiles.os

from file_manager.config import settings
from file_manager.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


def make_storage_key(owner: str, file_id, filename: str) -> str:
    return f"{owner}/{file_id}_{filename}"


class FileStorageService:
    """Handles blob put/get/delete/exists on local disk."""

    def __init__(self, base_path: str | None = None, storage_type: str | None = None):
        self.storage_type = storage_type or settings.FILE_STORAGE_TYPE
        if self.storage_type != "local":
            raise ValueError(f"Unknown storage type: {self.storage_type}")
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        # Keys must never escape the storage root
        if self.base_path not in path.parents:
            raise ValidationError(f"Invalid storage key: {key}")
        return path

    async def put(self, key: str, data: bytes) -> None:
        """Write bytes under key, replacing any previous blob."""
        path = self._resolve(key)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write blob {key}: {e}") from e

    async def get(self, key: str) -> bytes:
        """Read blob bytes."""
        path = self._resolve(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise StorageError(f"Blob not found: {key}") from e
        except OSError as e:
            raise StorageError(f"Failed to read blob {key}: {e}") from e

    async def delete(self, key: str) -> None:
        """Delete blob. Missing blobs are not an error."""
        path = self._resolve(key)
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            raise StorageError(f"Failed to delete blob {key}: {e}") from e

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(key))

    async def delete_quietly(self, key: str) -> bool:
        """Best-effort delete used after metadata is already gone."""
        try:
            await self.delete(key)
            return True
        except (StorageError, ValidationError) as e:
            logger.warning(f"Blob cleanup failed for {key}: {e}")
            return False


file_storage = FileStorageService()
