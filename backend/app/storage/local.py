"""
Local Filesystem Storage
Objects are files under a base directory; the key is the POSIX path
relative to that directory. Writes go through a temp file and an atomic
rename so a crashed upload never leaves a truncated object behind.
"""

import asyncio
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os

from app.exceptions import ConfigurationError, StorageError, StorageNotFoundError
from app.storage.base import ListResult, StorageFile, StorageProvider, join_key, paginate
from app.storage.config import LOCAL, LocalStorageConfig

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """Stores objects on the local disk and serves them from a static URL prefix."""

    provider_id = LOCAL
    concurrent_uploads = True

    def __init__(self, config: LocalStorageConfig):
        super().__init__(config)

    def validate_config(self) -> None:
        if not self.config.base_path:
            raise ConfigurationError(
                "Local storage base path is required", "LOCAL_BASE_PATH_MISSING", field="base_path"
            )
        if self.config.base_url is None:
            raise ConfigurationError(
                "Local storage base URL is required", "LOCAL_BASE_URL_MISSING", field="base_url"
            )

    @property
    def root(self) -> Path:
        return Path(self.config.base_path).resolve()

    @property
    def key_prefix(self) -> str:
        return ""

    def get_url(self, key: str) -> str:
        base_url = (self.config.base_url or "").rstrip("/")
        return f"{base_url}/{join_key(key)}"

    def _get_full_path(self, key: str) -> Path:
        """Resolve a key under the base directory, rejecting traversal outside it."""
        full_path = (self.root / join_key(key)).resolve()
        try:
            full_path.relative_to(self.root)
        except ValueError as e:
            raise StorageError(
                f"Key escapes the storage directory: {key}", "LOCAL_PATH_INVALID", key=key
            ) from e
        if full_path == self.root:
            raise StorageError(f"Invalid key: {key!r}", "LOCAL_PATH_INVALID", key=key)
        return full_path

    async def _put(self, key: str, data: bytes, content_type: str) -> None:
        target = self._get_full_path(key)
        temp_path = None
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=target.parent, prefix=".tmp_", suffix=target.suffix)
            os.close(fd)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(temp_path, target)
            temp_path = None
        except OSError as e:
            raise StorageError(
                f"Failed to write {key}: {e}", "LOCAL_WRITE_FAILED", key=key
            ) from e
        finally:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)

    async def _get(self, key: str) -> bytes:
        path = self._get_full_path(key)
        if not path.is_file():
            raise StorageNotFoundError(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}", "LOCAL_READ_FAILED", key=key) from e

    async def _remove(self, key: str) -> None:
        path = self._get_full_path(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}", "LOCAL_DELETE_FAILED", key=key) from e
        self._prune_empty_dirs(path.parent)

    def _prune_empty_dirs(self, directory: Path) -> None:
        root = self.root
        while directory != root and root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                break
            directory = directory.parent

    async def _copy(self, source_key: str, dest_key: str) -> None:
        data = await self._get(source_key)
        await self._put(dest_key, data, "application/octet-stream")

    async def _list(
        self,
        full_scan: bool,
        prefix: Optional[str],
        limit: Optional[int],
        cursor: Optional[str],
    ) -> ListResult:
        start = self.root if full_scan or not prefix else self._get_full_path(prefix)
        files = await asyncio.to_thread(self._scan, start, full_scan)
        files.sort(key=lambda f: f.key)
        return paginate(files, limit, cursor)

    def _scan(self, start: Path, recursive: bool) -> List[StorageFile]:
        files: List[StorageFile] = []
        if not start.is_dir():
            return files

        if recursive:
            entries = (
                Path(dirpath) / name
                for dirpath, _, filenames in os.walk(start)
                for name in filenames
            )
        else:
            entries = (Path(e.path) for e in os.scandir(start) if e.is_file())

        for path in entries:
            if path.name.startswith(".tmp_"):
                continue
            stat = path.stat()
            key = path.relative_to(self.root).as_posix()
            files.append(StorageFile(
                key=key,
                size=stat.st_size,
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                url=self.get_url(key),
            ))
        return files
