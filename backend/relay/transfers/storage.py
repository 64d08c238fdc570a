"""Local file storage for relayed uploads.

Files are stored flat in a single directory: ``{upload_dir}/{storage_key}``.
Storage keys are generated by the ingestion pipeline and must be plain file
names; anything carrying a path separator is rejected before it reaches the
filesystem.

All file I/O goes through ``aiofiles`` so large transfers do not block the
event loop.
"""
import logging
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

import aiofiles
import aiofiles.os

from .schemas import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)


class StorageWriter:
    """Write handle for a single stored file.

    Created by :meth:`LocalFileStorage.open_writer`. Either :meth:`close`
    (keep the file) or :meth:`discard` (delete it) must be called.
    """

    def __init__(self, key: str, path: Path, handle) -> None:
        self.key = key
        self.path = path
        self._handle = handle
        self.bytes_written = 0
        self._closed = False

    async def write(self, chunk: bytes) -> None:
        await self._handle.write(chunk)
        self.bytes_written += len(chunk)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._handle.close()

    async def discard(self) -> None:
        """Close and delete the partially written file."""
        try:
            await self.close()
        finally:
            try:
                await aiofiles.os.remove(self.path)
                logger.info("Discarded partial upload: %s (%d bytes)", self.key, self.bytes_written)
            except FileNotFoundError:
                pass


class LocalFileStorage:
    """Byte storage backed by a local directory.

    Args:
        upload_dir: Directory holding stored files; created if missing.
    """

    def __init__(self, upload_dir: Union[str, Path]) -> None:
        self._upload_dir = Path(upload_dir)
        self._ensure_upload_dir()

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    def _ensure_upload_dir(self) -> None:
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Resolve *key* to a path inside the upload directory."""
        if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._upload_dir / key

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def open_writer(self, key: str) -> StorageWriter:
        """Create *key* for writing; fails if it already exists."""
        path = self.path_for(key)
        self._ensure_upload_dir()
        handle = await aiofiles.open(path, "xb")
        return StorageWriter(key, path, handle)

    async def iter_chunks(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the contents of *key* in chunks of at most *chunk_size* bytes."""
        path = self.path_for(key)
        async with aiofiles.open(path, "rb") as fh:
            while True:
                chunk = await fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(key))

    async def size(self, key: str) -> int:
        return await aiofiles.os.path.getsize(self.path_for(key))

    async def modified_time(self, key: str) -> Optional[float]:
        """Return the mtime of *key*, or None if it no longer exists."""
        try:
            return await aiofiles.os.path.getmtime(self.path_for(key))
        except FileNotFoundError:
            return None

    async def delete(self, key: str) -> bool:
        """Delete *key*; returns False if it was already gone."""
        try:
            await aiofiles.os.remove(self.path_for(key))
        except FileNotFoundError:
            return False
        logger.debug("Deleted stored file: %s", key)
        return True

    async def list_keys(self) -> List[str]:
        """List every regular file in the upload directory."""
        try:
            names = await aiofiles.os.listdir(self._upload_dir)
        except FileNotFoundError:
            return []
        keys = []
        for name in names:
            if await aiofiles.os.path.isfile(self._upload_dir / name):
                keys.append(name)
        return sorted(keys)
