"""Content store for upload bytes. Local filesystem only.

Blobs are written under a caller-chosen key ("<upload id>/<sanitized name>"),
so the key is known before any database row exists. Size, checksum and media
type are always computed here from the stored bytes.
"""
import hashlib
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles
import filetype

from quota_uploads.config import settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class StoredBlob:
    key: str
    byte_size: int
    content_type: str
    checksum: str


def sniff_content_type(data: bytes, filename: str = "", declared: Optional[str] = None) -> str:
    """Content signature first, then the filename, then the declared type."""
    sniffed = filetype.guess_mime(data) if data else None
    if sniffed:
        return sniffed
    guessed, _ = mimetypes.guess_type(filename) if filename else (None, None)
    return guessed or declared or DEFAULT_CONTENT_TYPE


class LocalContentStore:
    """Handles blob write/delete on local disk."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if not path.is_relative_to(self.base_path) or path == self.base_path:
            raise ValueError(f"Storage key escapes the content store: {key!r}")
        return path

    async def put(
        self,
        data: bytes,
        filename: str,
        declared_content_type: Optional[str],
        key: str,
    ) -> StoredBlob:
        """Save bytes under key. Returns what was actually stored."""
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

        return StoredBlob(
            key=key,
            byte_size=len(data),
            content_type=sniff_content_type(data, filename, declared_content_type),
            checksum=hashlib.md5(data).hexdigest(),
        )

    async def read(self, key: str) -> bytes:
        async with aiofiles.open(self.path_for(key), "rb") as f:
            return await f.read()

    async def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    async def delete(self, key: str) -> bool:
        """Delete a blob. Deleting an absent blob is not an error.

        Returns False when there was nothing to delete.
        """
        path = self.path_for(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("Blob %s already deleted, skipping purge", key)
            return False

        # Drop the per-upload directory once it is empty
        parent = path.parent
        if parent != self.base_path and not any(parent.iterdir()):
            parent.rmdir()
        return True


def get_content_store() -> LocalContentStore:
    """Build the configured content store. Also used as a FastAPI dependency."""
    if settings.FILE_STORAGE_TYPE == "local":
        return LocalContentStore(settings.FILE_STORAGE_PATH)
    raise ValueError(f"Unknown storage type: {settings.FILE_STORAGE_TYPE}")
