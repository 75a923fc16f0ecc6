"""
Storage Provider Base
Contract shared by every storage backend plus the key conventions
(path joining and original <-> thumbnail key derivation).

Backends implement five primitives (_put, _get, _remove, _copy, _list);
the public operations (upload, download, delete, move, list) are built on
them here so that partial-failure rules are identical across backends.
"""

import asyncio
import logging
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from app.exceptions import StorageDeleteError, StorageError
from app.logging_config import STORAGE_AUDIT_LOGGER

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(STORAGE_AUDIT_LOGGER)

THUMBNAIL_PREFIX = "thumb-"


# =============================================================================
# Key conventions
# =============================================================================

def join_key(*parts: Optional[str]) -> str:
    """Join key segments with '/', dropping empty segments and duplicate or leading slashes."""
    segments = []
    for part in parts:
        if not part:
            continue
        segments.extend(s for s in str(part).replace("\\", "/").split("/") if s)
    return "/".join(segments)


def split_key(key: str) -> Tuple[str, str]:
    """Return (directory, filename) of a key. Directory is '' for top-level keys."""
    normalized = join_key(key)
    directory, filename = posixpath.split(normalized)
    return directory, filename


def thumbnail_filename_of(filename: str) -> str:
    return f"{THUMBNAIL_PREFIX}{filename}"


def thumbnail_key_of(key: str) -> str:
    """<dir>/thumb-<filename> for the given original key."""
    directory, filename = split_key(key)
    return join_key(directory, thumbnail_filename_of(filename))


def is_thumbnail_key(key: str) -> bool:
    return split_key(key)[1].startswith(THUMBNAIL_PREFIX)


def original_key_of(thumbnail_key: str) -> str:
    directory, filename = split_key(thumbnail_key)
    if not filename.startswith(THUMBNAIL_PREFIX):
        raise ValueError(f"Not a thumbnail key: {thumbnail_key}")
    return join_key(directory, filename[len(THUMBNAIL_PREFIX):])


# =============================================================================
# Value objects
# =============================================================================

@dataclass(frozen=True)
class UploadDescriptor:
    """One object to upload. `path` is a sub-folder under the backend base path."""
    data: bytes
    filename: str
    content_type: str
    path: Optional[str] = None
    # When True, `path` is the full directory from the backend root
    use_full_path: bool = False

    def thumbnail(self, data: bytes, content_type: str = "image/jpeg") -> "UploadDescriptor":
        """Descriptor for this object's thumbnail, placed by the thumb- convention."""
        return UploadDescriptor(
            data=data,
            filename=thumbnail_filename_of(self.filename),
            content_type=content_type,
            path=self.path,
            use_full_path=self.use_full_path,
        )


@dataclass
class UploadResult:
    url: str
    key: str
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None


@dataclass
class MoveResult:
    new_key: str
    new_url: str
    new_thumbnail_key: Optional[str] = None
    new_thumbnail_url: Optional[str] = None


@dataclass
class StorageFile:
    key: str
    size: int
    last_modified: datetime
    url: str


@dataclass
class ListResult:
    files: List[StorageFile] = field(default_factory=list)
    cursor: Optional[str] = None
    has_more: bool = False


def paginate(files: List[StorageFile], limit: Optional[int], cursor: Optional[str]) -> ListResult:
    """Offset-cursor pagination for backends that list everything in one go."""
    start = int(cursor) if cursor else 0
    if not limit:
        return ListResult(files=files[start:])
    end = start + limit
    has_more = end < len(files)
    return ListResult(files=files[start:end], cursor=str(end) if has_more else None, has_more=has_more)


# =============================================================================
# Provider contract
# =============================================================================

class StorageProvider(ABC):
    """
    Abstract storage backend.

    Subclasses set `provider_id`, decide whether two-leg uploads may run
    concurrently, and implement the primitives. _remove must treat an
    absent key as success.
    """

    provider_id: str = ""
    concurrent_uploads: bool = True

    def __init__(self, config):
        self.config = config

    # --- configuration ---

    @abstractmethod
    def validate_config(self) -> None:
        """Raise ConfigurationError if the config lacks required fields."""

    @property
    @abstractmethod
    def key_prefix(self) -> str:
        """Key prefix new uploads are placed under."""

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Public URL for a key under the current configuration."""

    # --- primitives ---

    @abstractmethod
    async def _put(self, key: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def _get(self, key: str) -> bytes: ...

    @abstractmethod
    async def _remove(self, key: str) -> None: ...

    @abstractmethod
    async def _copy(self, source_key: str, dest_key: str) -> None: ...

    @abstractmethod
    async def _list(
        self,
        full_scan: bool,
        prefix: Optional[str],
        limit: Optional[int],
        cursor: Optional[str],
    ) -> ListResult: ...

    # --- public operations ---

    def build_key(self, descriptor: UploadDescriptor) -> str:
        base = None if descriptor.use_full_path else self.key_prefix
        return join_key(base, descriptor.path, descriptor.filename)

    async def upload(
        self,
        primary: UploadDescriptor,
        secondary: Optional[UploadDescriptor] = None,
    ) -> UploadResult:
        """
        Upload an object and optionally its thumbnail.
        Either every leg is written or none is left behind: legs that
        succeeded are removed again when another leg fails.
        """
        legs = [(self.build_key(primary), primary)]
        if secondary is not None:
            legs.append((self.build_key(secondary), secondary))

        written: List[str] = []
        failure: Optional[Tuple[str, Exception]] = None

        if self.concurrent_uploads and len(legs) > 1:
            outcomes = await asyncio.gather(
                *(self._put(key, d.data, d.content_type) for key, d in legs),
                return_exceptions=True,
            )
            for (key, _), outcome in zip(legs, outcomes):
                if isinstance(outcome, Exception):
                    failure = failure or (key, outcome)
                else:
                    written.append(key)
        else:
            for key, descriptor in legs:
                try:
                    await self._put(key, descriptor.data, descriptor.content_type)
                except Exception as e:
                    failure = (key, e)
                    break
                written.append(key)

        if failure is not None:
            failed_key, error = failure
            logger.error(f"[{self.provider_id}] Upload of {failed_key} failed: {error}")
            await self._discard(written, reason="upload rollback")
            raise self._as_storage_error(error, failed_key, "UPLOAD_FAILED") from error

        result = UploadResult(url=self.get_url(legs[0][0]), key=legs[0][0])
        if secondary is not None:
            result.thumbnail_key = legs[1][0]
            result.thumbnail_url = self.get_url(legs[1][0])
        return result

    async def download(self, key: str) -> bytes:
        try:
            return await self._get(key)
        except StorageError:
            raise
        except Exception as e:
            raise self._as_storage_error(e, key, "DOWNLOAD_FAILED") from e

    async def delete(self, *keys: Optional[str]) -> None:
        """
        Delete every given key. Absent keys count as deleted.
        Raises StorageDeleteError naming each key that could not be removed.
        """
        unique_keys = list(dict.fromkeys(k for k in keys if k))
        if not unique_keys:
            return

        if self.concurrent_uploads:
            outcomes = await asyncio.gather(
                *(self._remove(k) for k in unique_keys), return_exceptions=True
            )
        else:
            outcomes = []
            for k in unique_keys:
                try:
                    outcomes.append(await self._remove(k))
                except Exception as e:
                    outcomes.append(e)

        errors = {k: o for k, o in zip(unique_keys, outcomes) if isinstance(o, Exception)}
        if errors:
            error = StorageDeleteError({k: str(e) for k, e in errors.items()})
            error.retryable = all(getattr(e, "retryable", False) for e in errors.values())
            raise error

    async def move(
        self,
        old_key: str,
        new_path_prefix: str,
        old_thumbnail_key: Optional[str] = None,
    ) -> MoveResult:
        """
        Relocate an object (and its thumbnail) under a new directory, keeping filenames.
        Every copy is confirmed before any old key is removed; a failed copy
        removes the partial new copies and leaves the old objects untouched.
        """
        new_key = join_key(new_path_prefix, split_key(old_key)[1])
        pairs = [(old_key, new_key)]
        new_thumbnail_key = None
        if old_thumbnail_key:
            new_thumbnail_key = join_key(new_path_prefix, split_key(old_thumbnail_key)[1])
            pairs.append((old_thumbnail_key, new_thumbnail_key))

        pending = [(src, dst) for src, dst in pairs if join_key(src) != dst]
        copied: List[str] = []
        for src, dst in pending:
            try:
                await self._copy(src, dst)
            except Exception as e:
                logger.error(f"[{self.provider_id}] Move copy {src} -> {dst} failed: {e}")
                await self._discard(copied, reason="move rollback")
                raise self._as_storage_error(e, src, "MOVE_FAILED") from e
            copied.append(dst)

        if pending:
            try:
                await self.delete(*(src for src, _ in pending))
            except StorageDeleteError as e:
                # New copies are in place; stale originals surface as orphans on the next scan
                audit_logger.warning(
                    f"[{self.provider_id}] Moved objects but could not remove old keys: {e.failures}"
                )

        result = MoveResult(new_key=new_key, new_url=self.get_url(new_key))
        if new_thumbnail_key:
            result.new_thumbnail_key = new_thumbnail_key
            result.new_thumbnail_url = self.get_url(new_thumbnail_key)
        return result

    async def list(
        self,
        full_scan: bool = False,
        prefix: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> ListResult:
        try:
            return await self._list(full_scan, prefix, limit, cursor)
        except StorageError:
            raise
        except Exception as e:
            raise self._as_storage_error(e, prefix, "LIST_FAILED") from e

    # --- helpers ---

    async def _discard(self, keys: Sequence[str], reason: str) -> None:
        """Best-effort removal of keys written by a failed operation."""
        for key in keys:
            try:
                await self._remove(key)
            except Exception as e:
                audit_logger.error(
                    f"[{self.provider_id}] Orphan created during {reason}: could not remove {key}: {e}"
                )

    def _as_storage_error(self, error: Exception, key: Optional[str], code: str) -> StorageError:
        if isinstance(error, StorageError):
            return error
        return StorageError(
            f"{self.provider_id} {code.lower().replace('_', ' ')}: {error}",
            f"{self.provider_id.upper()}_{code}",
            key=key,
        )

    def __repr__(self):
        return f"<{type(self).__name__}(provider={self.provider_id})>"
