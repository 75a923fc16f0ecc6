"""
Storage Reconciliation Service
Compares what a storage backend holds against the Photo rows that reference
it, classifies the drift, and offers cleanup of orphans and dead rows.

Two independent passes over the same two sets:
  objects -> linked | orphan   (is the object referenced by a row?)
  rows    -> linked | missing | missing_original | missing_thumbnail
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from app.config import Settings, settings as default_settings
from app.exceptions import FieldIssue, ValidationError
from app.services.batch import run_batch
from app.services.ingestion import ProviderFactory, RepositoryScope
from app.services.photo_repository import PhotoRepository, repository_scope
from app.storage.base import (
    StorageProvider,
    is_thumbnail_key,
    join_key,
    original_key_of,
    split_key,
    thumbnail_key_of,
)
from app.storage.factory import StorageProviderFactory
from app.storage.resolver import build_storage_config

logger = logging.getLogger(__name__)


class FileStatus(str, Enum):
    LINKED = "linked"
    ORPHAN = "orphan"
    MISSING = "missing"
    MISSING_ORIGINAL = "missing_original"
    MISSING_THUMBNAIL = "missing_thumbnail"


@dataclass
class ScanEntry:
    key: str
    url: str
    size: int
    last_modified: datetime
    status: FileStatus
    photo_id: Optional[str] = None
    photo_title: Optional[str] = None
    has_thumbnail: bool = False
    is_thumbnail: bool = False


@dataclass
class ScanStats:
    total: int = 0
    linked: int = 0
    orphan: int = 0
    missing: int = 0
    missing_original: int = 0
    missing_thumbnail: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ScanReport:
    files: List[ScanEntry]
    stats: ScanStats
    # Every gallery object key and every photo id, each classified exactly once
    object_statuses: Dict[str, FileStatus] = field(default_factory=dict)
    row_statuses: Dict[str, FileStatus] = field(default_factory=dict)


@dataclass
class CleanupResult:
    deleted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def classify_row(has_original: bool, has_thumbnail: bool) -> FileStatus:
    if has_original and has_thumbnail:
        return FileStatus.LINKED
    if not has_original and not has_thumbnail:
        return FileStatus.MISSING
    if not has_original:
        return FileStatus.MISSING_ORIGINAL
    return FileStatus.MISSING_THUMBNAIL


def is_gallery_key(key: str, key_prefix: str, photo_dirs: Set[str]) -> bool:
    """Objects under the upload prefix, or beside a recorded photo, belong to the gallery."""
    if not key_prefix:
        return True
    directory = split_key(key)[0]
    prefix = join_key(key_prefix)
    return directory == prefix or directory.startswith(prefix + "/") or directory in photo_dirs


class ReconciliationService:
    """Scanner and cleanup operations for one storage backend at a time."""

    def __init__(
        self,
        repositories: RepositoryScope = repository_scope,
        provider_factory: ProviderFactory = StorageProviderFactory.create,
        app_settings: Optional[Settings] = None,
    ):
        self.repositories = repositories
        self.provider_factory = provider_factory
        self.settings = app_settings or default_settings

    async def _provider_for(self, repo: PhotoRepository, backend_id: str) -> StorageProvider:
        config = build_storage_config(await repo.get_settings_map(), backend_id, self.settings)
        provider = self.provider_factory(config)
        provider.validate_config()
        return provider

    async def scan_backend(
        self,
        backend_id: str,
        full_scan: bool = True,
        status: Optional[FileStatus] = None,
        search: Optional[str] = None,
    ) -> ScanReport:
        async with self.repositories() as repo:
            provider = await self._provider_for(repo, backend_id)
            photos = await repo.list_by_backend(backend_id)

        listing = await provider.list(full_scan=full_scan)
        objects = listing.files
        while listing.has_more and full_scan:
            listing = await provider.list(full_scan=True, cursor=listing.cursor)
            objects.extend(listing.files)

        storage_keys: Set[str] = {o.key for o in objects}
        key_to_photo = {join_key(p.object_key): p for p in photos}
        photo_dirs = {split_key(k)[0] for k in key_to_photo}
        foreign = 0

        # Pass 1: objects
        files: List[ScanEntry] = []
        object_statuses: Dict[str, FileStatus] = {}
        for obj in objects:
            thumbnail = is_thumbnail_key(obj.key)
            owner_key = original_key_of(obj.key) if thumbnail else obj.key
            photo = key_to_photo.get(owner_key)
            if photo is None and thumbnail:
                # A row may itself reference a thumb- named original
                photo = key_to_photo.get(obj.key)
                thumbnail = photo is None
            if photo is None and not is_gallery_key(obj.key, provider.key_prefix, photo_dirs):
                foreign += 1
                continue
            object_status = FileStatus.LINKED if photo else FileStatus.ORPHAN
            object_statuses[obj.key] = object_status

            if thumbnail and object_status == FileStatus.LINKED:
                continue
            files.append(ScanEntry(
                key=obj.key,
                url=obj.url,
                size=obj.size,
                last_modified=obj.last_modified,
                status=object_status,
                photo_id=photo.id if photo else None,
                photo_title=photo.title if photo else None,
                has_thumbnail=thumbnail_key_of(obj.key) in storage_keys,
                is_thumbnail=thumbnail,
            ))

        # Pass 2: rows
        row_statuses: Dict[str, FileStatus] = {}
        now = datetime.now(timezone.utc)
        for photo in photos:
            key = join_key(photo.object_key)
            has_original = key in storage_keys
            has_thumbnail = thumbnail_key_of(key) in storage_keys
            row_status = classify_row(has_original, has_thumbnail)
            row_statuses[photo.id] = row_status
            if row_status != FileStatus.LINKED:
                files.append(ScanEntry(
                    key=key,
                    url=photo.url,
                    size=0,
                    last_modified=now,
                    status=row_status,
                    photo_id=photo.id,
                    photo_title=photo.title,
                    has_thumbnail=has_thumbnail,
                ))

        stats = ScanStats(total=len(files))
        for entry in files:
            setattr(stats, entry.status.value, getattr(stats, entry.status.value) + 1)

        if status is not None:
            files = [f for f in files if f.status == FileStatus(status)]
        if search:
            needle = search.lower()
            files = [
                f for f in files
                if needle in f.key.lower() or (f.photo_title and needle in f.photo_title.lower())
            ]

        logger.info(
            f"Scanned {backend_id}: {len(objects)} objects, {len(photos)} photos, stats={stats.to_dict()}"
        )
        if foreign:
            logger.info(f"Ignored {foreign} object(s) on {backend_id} outside the gallery folders")
        return ScanReport(files=files, stats=stats, object_statuses=object_statuses, row_statuses=row_statuses)

    async def cleanup_keys(self, backend_id: str, keys: Sequence[str]) -> CleanupResult:
        """Delete each key and its derived thumbnail key. Absent objects count as deleted."""
        keys = [k for k in dict.fromkeys(keys or []) if k]
        if not keys:
            raise ValidationError([FieldIssue("keys", "at least one key is required")])

        async with self.repositories() as repo:
            provider = await self._provider_for(repo, backend_id)

        async def remove(key: str) -> None:
            thumb = None if is_thumbnail_key(key) else thumbnail_key_of(key)
            await provider.delete(key, thumb)

        batch = await run_batch(keys, remove, concurrency=self.settings.batch_concurrency)
        result = CleanupResult(
            deleted=batch.succeeded,
            failed=batch.failed,
            errors=[f"{key}: {message}" for key, message in batch.errors.items()],
        )
        logger.info(f"Cleanup on {backend_id}: {result.deleted} deleted, {result.failed} failed")
        return result

    async def remove_missing_photos(self, backend_id: str, photo_ids: Sequence[str]) -> int:
        """Delete rows whose original and thumbnail are both gone. Other ids are ignored."""
        if not photo_ids:
            raise ValidationError([FieldIssue("photo_ids", "at least one photo id is required")])

        report = await self.scan_backend(backend_id, full_scan=True)
        removable = [
            pid for pid in dict.fromkeys(photo_ids)
            if report.row_statuses.get(pid) == FileStatus.MISSING
        ]
        skipped = len(set(photo_ids)) - len(removable)
        if skipped:
            logger.warning(f"Not removing {skipped} photo(s) on {backend_id} that are not fully missing")

        async with self.repositories() as repo:
            deleted = await repo.delete_many(removable)
        logger.info(f"Removed {deleted} missing photo record(s) from {backend_id}")
        return deleted
