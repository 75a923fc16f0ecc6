"""
Photo Ingestion Service
Turns an uploaded image buffer into a deduplicated, thumbnailed Photo record
and implements the partial-update variants (metadata edit, re-upload, move,
recolor, delete, URL prefix rewrite).

Pipeline: Received -> Deduplicating -> Extracting -> Uploading -> Persisting -> Done,
with Failed reachable from every step. The duplicate check and the upload are
not atomic: two simultaneous uploads of identical bytes can both pass the check.
DuplicateDetected is therefore best-effort.
"""

import asyncio
import logging
import os
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import AsyncContextManager, Callable, Dict, Iterable, List, Optional, Sequence, Union

from app.config import Settings, settings as default_settings
from app.exceptions import (
    ConfigurationError,
    ExtractionError,
    FieldIssue,
    GalleryError,
    IngestionError,
    PhotoNotFoundError,
    StorageError,
    ValidationError,
)
from app.extractors.colors import extract_dominant_colors
from app.extractors.equipment import normalize_camera, normalize_lens
from app.extractors.exif_extractor import PhotoMetadata, extract_metadata
from app.extractors.hashing import compute_content_hash
from app.logging_config import STORAGE_AUDIT_LOGGER
from app.models import Photo
from app.services.batch import BatchResult, run_batch
from app.services.photo_repository import PhotoRepository, repository_scope
from app.services.thumbnails import generate_thumbnail
from app.storage.base import StorageProvider, UploadDescriptor, join_key, split_key
from app.storage.config import StorageConfig
from app.storage.factory import StorageProviderFactory
from app.storage.resolver import build_storage_config, resolve_storage_config

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(STORAGE_AUDIT_LOGGER)

HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")
EXTENSION_PATTERN = re.compile(r"[^a-z0-9]")
TITLE_MAX_LENGTH = 255

RepositoryScope = Callable[[], AsyncContextManager[PhotoRepository]]
ProviderFactory = Callable[[StorageConfig], StorageProvider]


class PipelineState(str, Enum):
    RECEIVED = "Received"
    DEDUPLICATING = "Deduplicating"
    EXTRACTING = "Extracting"
    UPLOADING = "Uploading"
    PERSISTING = "Persisting"
    DONE = "Done"
    FAILED = "Failed"


class MissingPart(str, Enum):
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    BOTH = "both"


@dataclass(frozen=True)
class DuplicateDetected:
    """Outcome (not an error) when identical bytes are already stored."""
    photo_id: str
    title: str
    url: str
    thumbnail_url: Optional[str]
    file_hash: str

    @classmethod
    def of(cls, photo: Photo) -> "DuplicateDetected":
        return cls(
            photo_id=photo.id,
            title=photo.title,
            url=photo.url,
            thumbnail_url=photo.thumbnail_url,
            file_hash=photo.file_hash,
        )


@dataclass
class DerivedData:
    file_hash: str
    metadata: PhotoMetadata
    thumbnail: bytes
    colors: Optional[List[str]]


class PipelineRun:
    """Tracks and logs the state of one ingestion."""

    def __init__(self, filename: str):
        self.filename = filename
        self.state = PipelineState.RECEIVED
        logger.info(f"[{filename}] {self.state.value}")

    def advance(self, state: PipelineState) -> None:
        self.state = state
        logger.info(f"[{self.filename}] {state.value}")

    def fail(self, error: Exception) -> Exception:
        """Log the failure and return the error to raise for it."""
        stage = self.state
        self.state = PipelineState.FAILED
        logger.warning(f"[{self.filename}] Failed while {stage.value.lower()}: {error}")
        if isinstance(error, (ConfigurationError, ValidationError, IngestionError)):
            return error
        reason = error.message if isinstance(error, GalleryError) else str(error)
        return IngestionError(stage.value, reason, cause=error)


def parse_categories(value: Union[str, Sequence[str], None]) -> List[str]:
    """Comma-separated (or list) input, trimmed, empties and repeats dropped."""
    if not value:
        return []
    parts = value.split(",") if isinstance(value, str) else value
    return list(dict.fromkeys(p.strip() for p in parts if p and p.strip()))


def storage_filename(original_filename: str) -> str:
    """Random 32-hex name keeping the (sanitised) original extension."""
    ext = os.path.splitext(original_filename or "")[1].lower()
    ext = EXTENSION_PATTERN.sub("", ext)[:10]
    name = secrets.token_hex(16)
    return f"{name}.{ext}" if ext else name


def validate_storage_path(path: Optional[str], field: str = "storage_path") -> List[FieldIssue]:
    if path and any(part == ".." for part in path.replace("\\", "/").split("/")):
        return [FieldIssue(field, "must not contain '..' segments")]
    return []


class PhotoService:
    """Photo ingestion pipeline and its partial-update operations."""

    def __init__(
        self,
        repositories: RepositoryScope = repository_scope,
        provider_factory: ProviderFactory = StorageProviderFactory.create,
        app_settings: Optional[Settings] = None,
    ):
        self.repositories = repositories
        self.provider_factory = provider_factory
        self.settings = app_settings or default_settings

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest_photo(
        self,
        data: bytes,
        filename: str,
        content_type: Optional[str],
        title: str,
        categories: Union[str, Sequence[str], None],
        config: StorageConfig,
        precomputed_hash: Optional[str] = None,
        storage_path: Optional[str] = None,
    ) -> Union[Photo, DuplicateDetected]:
        """
        Ingest one upload.

        Returns the new Photo, or DuplicateDetected when identical bytes exist.

        Raises:
            ValidationError: malformed input (all offending fields listed).
            ConfigurationError: storage config incomplete; raised before any I/O.
            IngestionError: a pipeline step failed; nothing is left persisted.
        """
        self._validate_upload(data, filename, title, precomputed_hash, storage_path)
        run = PipelineRun(filename)

        try:
            provider = self.provider_factory(config)
            provider.validate_config()
        except ConfigurationError as e:
            raise run.fail(e) from e

        try:
            # Deduplicating
            run.advance(PipelineState.DEDUPLICATING)
            file_hash = precomputed_hash or await asyncio.to_thread(compute_content_hash, data)
            async with self.repositories() as repo:
                existing = await repo.find_by_hash(file_hash)
            if existing is not None:
                logger.info(f"[{filename}] Duplicate of photo {existing.id}; nothing uploaded")
                run.advance(PipelineState.DONE)
                return DuplicateDetected.of(existing)

            # Extracting
            run.advance(PipelineState.EXTRACTING)
            derived = await self._extract_all(data, file_hash)

            # Uploading
            run.advance(PipelineState.UPLOADING)
            original = UploadDescriptor(
                data=data,
                filename=storage_filename(filename),
                content_type=content_type or "application/octet-stream",
                path=storage_path or None,
            )
            upload = await provider.upload(original, original.thumbnail(derived.thumbnail))
        except Exception as e:
            raise run.fail(e) from e

        # Persisting
        run.advance(PipelineState.PERSISTING)
        photo = Photo(
            title=title.strip(),
            storage_provider=provider.provider_id,
            storage_key=upload.key,
            url=upload.url,
            thumbnail_url=upload.thumbnail_url,
            size=len(data),
            file_hash=file_hash,
            dominant_colors=derived.colors or None,
            is_featured=False,
            **derived.metadata.as_photo_fields(),
        )
        camera = normalize_camera(derived.metadata.camera_make, derived.metadata.camera_model)
        lens = normalize_lens(derived.metadata.lens_model, derived.metadata.camera_make)
        try:
            async with self.repositories() as repo:
                photo = await repo.create(photo, parse_categories(categories), camera=camera, lens=lens)
        except Exception as e:
            await self._compensate(provider, upload.key, upload.thumbnail_key)
            raise run.fail(e) from e

        run.advance(PipelineState.DONE)
        return photo

    def _validate_upload(
        self,
        data: bytes,
        filename: str,
        title: str,
        precomputed_hash: Optional[str],
        storage_path: Optional[str],
    ) -> None:
        issues: List[FieldIssue] = []
        if not data:
            issues.append(FieldIssue("file", "is required"))
        elif len(data) > self.settings.max_upload_size_bytes:
            issues.append(FieldIssue("file", f"exceeds {self.settings.max_upload_size_mb} MB"))
        if not filename:
            issues.append(FieldIssue("filename", "is required"))
        else:
            ext = os.path.splitext(filename)[1].lower()
            if ext not in self.settings.allowed_upload_extensions:
                issues.append(FieldIssue("filename", f"unsupported file type '{ext or filename}'"))
        if not title or not title.strip():
            issues.append(FieldIssue("title", "is required"))
        if precomputed_hash is not None and not HASH_PATTERN.match(precomputed_hash):
            issues.append(FieldIssue("hash", "must be a lowercase hex SHA-256 digest"))
        issues.extend(validate_storage_path(storage_path))
        if issues:
            raise ValidationError(issues)

    async def _extract_all(self, data: bytes, file_hash: Optional[str]) -> DerivedData:
        """Run the extractors concurrently over the same buffer."""
        hash_job = (
            asyncio.sleep(0, result=file_hash)
            if file_hash
            else asyncio.to_thread(compute_content_hash, data)
        )
        try:
            file_hash, metadata, thumbnail, colors = await asyncio.gather(
                hash_job,
                asyncio.to_thread(extract_metadata, data),
                asyncio.to_thread(
                    generate_thumbnail, data, self.settings.thumbnail_max_size, self.settings.thumbnail_quality
                ),
                self._dominant_colors(data),
            )
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError("image", str(e)) from e
        return DerivedData(file_hash=file_hash, metadata=metadata, thumbnail=thumbnail, colors=colors)

    async def _dominant_colors(self, data: bytes) -> Optional[List[str]]:
        """Colour analysis does not gate the upload; a failure leaves the colours unset."""
        try:
            return await asyncio.to_thread(extract_dominant_colors, data, self.settings.dominant_color_count)
        except Exception as e:
            logger.warning(f"Dominant colour analysis failed, storing none: {e}")
            return None

    async def _compensate(self, provider: StorageProvider, *keys: Optional[str]) -> None:
        """Undo an upload whose database write failed. Failure here is logged, not raised."""
        try:
            await provider.delete(*keys)
            logger.info(f"Removed uploaded objects after failed persist: {[k for k in keys if k]}")
        except StorageError as e:
            audit_logger.error(
                f"ORPHAN backend={provider.provider_id} keys={[k for k in keys if k]}: "
                f"compensating delete failed: {e}"
            )

    # =========================================================================
    # Partial updates
    # =========================================================================

    async def _load(self, repo: PhotoRepository, photo_id: str) -> Photo:
        photo = await repo.get(photo_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        return photo

    async def resolve_config(self, override: Optional[str] = None) -> StorageConfig:
        """Active storage config for a new upload, optionally forcing a provider."""
        async with self.repositories() as repo:
            return await resolve_storage_config(repo, override, self.settings)

    async def _provider_for(self, repo: PhotoRepository, backend_id: str) -> StorageProvider:
        """Provider for the backend a stored photo lives on, configured from current settings."""
        config = build_storage_config(await repo.get_settings_map(), backend_id, self.settings)
        provider = self.provider_factory(config)
        provider.validate_config()
        return provider

    async def reupload_missing_parts(
        self,
        photo_id: str,
        data: Optional[bytes],
        which: Union[MissingPart, str] = MissingPart.BOTH,
    ) -> Photo:
        """
        Restore the original and/or thumbnail of an existing photo at its current keys.
        When only the thumbnail is requested and no buffer is given, it is
        regenerated from the stored original. A thumbnail that cannot be
        generated does not block re-uploading the original.
        """
        which = MissingPart(which)
        async with self.repositories() as repo:
            photo = await self._load(repo, photo_id)
            provider = await self._provider_for(repo, photo.storage_provider)

            if which in (MissingPart.ORIGINAL, MissingPart.BOTH) and not data:
                raise ValidationError([FieldIssue("file", "is required to restore the original")])
            if data is None:
                data = await provider.download(photo.object_key)

            original_key = photo.object_key
            directory, original_name = split_key(original_key)

            thumbnail = None
            if which in (MissingPart.THUMBNAIL, MissingPart.BOTH):
                try:
                    thumbnail = await asyncio.to_thread(
                        generate_thumbnail, data, self.settings.thumbnail_max_size, self.settings.thumbnail_quality
                    )
                except ExtractionError as e:
                    if which == MissingPart.THUMBNAIL:
                        raise IngestionError(PipelineState.EXTRACTING.value, e.message, cause=e) from e
                    logger.warning(f"Photo {photo_id}: thumbnail regeneration failed, restoring original only: {e}")

            original = UploadDescriptor(
                data=data,
                filename=original_name,
                content_type="application/octet-stream",
                path=directory,
                use_full_path=True,
            )
            thumb_descriptor = original.thumbnail(thumbnail) if thumbnail is not None else None

            try:
                if which == MissingPart.THUMBNAIL:
                    result = await provider.upload(thumb_descriptor)
                    photo.thumbnail_url = result.url
                else:
                    result = await provider.upload(original, thumb_descriptor)
                    photo.storage_key = result.key
                    photo.url = result.url
                    photo.size = len(data)
                    photo.file_hash = await asyncio.to_thread(compute_content_hash, data)
                    if result.thumbnail_url:
                        photo.thumbnail_url = result.thumbnail_url
            except StorageError as e:
                raise IngestionError(PipelineState.UPLOADING.value, e.message, cause=e) from e

            logger.info(f"Photo {photo_id}: restored {which.value} at {join_key(directory)}")
            return await repo.save(photo)

    async def move_photo(self, photo_id: str, new_path_prefix: str) -> Photo:
        """Relocate a photo's objects under a new directory and record the new keys."""
        issues = validate_storage_path(new_path_prefix, "new_path")
        if issues:
            raise ValidationError(issues)

        async with self.repositories() as repo:
            photo = await self._load(repo, photo_id)
            provider = await self._provider_for(repo, photo.storage_provider)

            result = await provider.move(photo.object_key, new_path_prefix, photo.thumbnail_key)
            photo.storage_key = result.new_key
            photo.url = result.new_url
            if result.new_thumbnail_url:
                photo.thumbnail_url = result.new_thumbnail_url
            try:
                return await repo.save(photo)
            except GalleryError:
                audit_logger.error(
                    f"Photo {photo_id} moved to {result.new_key} on {provider.provider_id} "
                    f"but the record still points at the old key"
                )
                raise

    async def recolor_photo(self, photo_id: str) -> Photo:
        """Recompute dominant colours from the stored original."""
        async with self.repositories() as repo:
            photo = await self._load(repo, photo_id)
            provider = await self._provider_for(repo, photo.storage_provider)
            data = await provider.download(photo.object_key)
            colors = await asyncio.to_thread(extract_dominant_colors, data, self.settings.dominant_color_count)
            photo.dominant_colors = colors or None
            return await repo.save(photo)

    async def recolor_photos(self, photo_ids: Iterable[str]) -> BatchResult:
        return await run_batch(
            list(dict.fromkeys(photo_ids)),
            self.recolor_photo,
            concurrency=self.settings.batch_concurrency,
        )

    async def update_photo(
        self,
        photo_id: str,
        title: Optional[str] = None,
        is_featured: Optional[bool] = None,
    ) -> Photo:
        """Edit the title and/or featured flag. Fields left as None are unchanged."""
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError([FieldIssue("title", "must not be empty")])
            if len(title) > TITLE_MAX_LENGTH:
                raise ValidationError([FieldIssue("title", f"must be at most {TITLE_MAX_LENGTH} characters")])

        async with self.repositories() as repo:
            photo = await self._load(repo, photo_id)
            if title is not None:
                photo.title = title
            if is_featured is not None:
                photo.is_featured = is_featured
            return await repo.save(photo)

    async def delete_photo(
        self,
        photo_id: str,
        delete_original: bool = True,
        delete_thumbnail: bool = True,
    ) -> None:
        """
        Remove the chosen objects from storage, then the row.
        If a storage deletion fails the error propagates and the row is kept.
        """
        async with self.repositories() as repo:
            photo = await self._load(repo, photo_id)
            keys = []
            if delete_original:
                keys.append(photo.object_key)
            if delete_thumbnail and photo.thumbnail_key:
                keys.append(photo.thumbnail_key)

            if keys:
                provider = await self._provider_for(repo, photo.storage_provider)
                await provider.delete(*keys)
            await repo.delete(photo)
            logger.info(f"Deleted photo {photo_id} (storage keys removed: {keys})")

    async def batch_update_public_url_prefix(
        self,
        backend_id: str,
        old_prefix: str,
        new_prefix: str,
    ) -> BatchResult:
        """Rewrite recorded URLs starting with old_prefix. Storage objects are untouched."""
        issues = []
        if not old_prefix:
            issues.append(FieldIssue("old_prefix", "is required"))
        if not new_prefix:
            issues.append(FieldIssue("new_prefix", "is required"))
        if old_prefix and old_prefix == new_prefix:
            issues.append(FieldIssue("new_prefix", "must differ from old_prefix"))
        if issues:
            raise ValidationError(issues)

        async with self.repositories() as repo:
            photo_ids = [p.id for p in await repo.list_by_url_prefix(backend_id, old_prefix)]

        def rewrite(url: Optional[str]) -> Optional[str]:
            if url and url.startswith(old_prefix):
                return new_prefix + url[len(old_prefix):]
            return url

        async def update_one(photo_id: str) -> None:
            async with self.repositories() as repo:
                photo = await self._load(repo, photo_id)
                photo.url = rewrite(photo.url)
                photo.thumbnail_url = rewrite(photo.thumbnail_url)
                await repo.save(photo)

        result = await run_batch(photo_ids, update_one, concurrency=self.settings.batch_concurrency)
        logger.info(
            f"URL prefix update on {backend_id}: {result.succeeded} updated, {result.failed} failed"
        )
        return result

    async def find_duplicates(self, hashes: Iterable[str]) -> Dict[str, Photo]:
        async with self.repositories() as repo:
            return await repo.find_by_hashes(hashes)
