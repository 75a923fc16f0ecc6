"""
Photo administration endpoints: upload, duplicate check, metadata edit,
delete, move, recolor, re-upload of missing parts and URL prefix rewrites.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from app.api.dependencies import get_photo_service
from app.schemas.common import BaseResponse, BatchResultSchema, DataResponse, TaskQueuedResponse
from app.schemas.photo import (
    BatchUpdateUrlsRequest,
    BatchUpdateUrlsResponse,
    CheckDuplicateRequest,
    CheckDuplicateResponse,
    DuplicateSchema,
    MoveRequest,
    PhotoSchema,
    PhotoUpdateRequest,
    RecolorRequest,
    UploadResponse,
)
from app.services.ingestion import DuplicateDetected, MissingPart, PhotoService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=UploadResponse)
async def upload_photo(
    file: UploadFile = File(...),
    title: str = Form(...),
    category: Optional[str] = Form(None, description="Comma-separated category names"),
    storage_provider: Optional[str] = Form(None, description="Override the configured provider"),
    storage_path: Optional[str] = Form(None, description="Directory under the provider root"),
    file_hash: Optional[str] = Form(None, description="Client-computed SHA-256 of the file"),
    service: PhotoService = Depends(get_photo_service),
):
    """
    Upload a photo.
    Identical bytes already in the gallery return status "duplicate" with the
    existing photo instead of creating a second record.
    """
    data = await file.read()
    config = await service.resolve_config(storage_provider)
    result = await service.ingest_photo(
        data,
        file.filename or "",
        file.content_type,
        title,
        category,
        config,
        precomputed_hash=file_hash,
        storage_path=storage_path,
    )
    if isinstance(result, DuplicateDetected):
        return UploadResponse(status="duplicate", duplicate=DuplicateSchema.model_validate(result))
    return UploadResponse(status="created", data=PhotoSchema.model_validate(result))


@router.post("/check-duplicate", response_model=CheckDuplicateResponse)
async def check_duplicates(
    request: CheckDuplicateRequest,
    service: PhotoService = Depends(get_photo_service),
):
    """Look up client-computed hashes before uploading."""
    found = await service.find_duplicates(request.hashes)
    return CheckDuplicateResponse(
        duplicates={
            file_hash: DuplicateSchema.model_validate(DuplicateDetected.of(photo))
            for file_hash, photo in found.items()
        }
    )


@router.post("/batch-update-urls", response_model=BatchUpdateUrlsResponse)
async def batch_update_urls(
    request: BatchUpdateUrlsRequest,
    service: PhotoService = Depends(get_photo_service),
):
    """Rewrite the public URL prefix of every photo on a provider (e.g. after a CDN change)."""
    result = await service.batch_update_public_url_prefix(
        request.provider, request.old_prefix, request.new_prefix
    )
    return BatchUpdateUrlsResponse(updated=result.succeeded, failed=result.failed, errors=result.errors)


@router.post("/recolor")
async def recolor_photos(
    request: RecolorRequest,
    service: PhotoService = Depends(get_photo_service),
):
    """
    Recompute dominant colours for several photos.
    With background=true the work is queued on the Celery worker.
    """
    if request.background:
        from app.tasks.bulk import bulk_recolor_task

        task = bulk_recolor_task.delay(request.photo_ids)
        logger.info(f"Queued recolor of {len(request.photo_ids)} photos as task {task.id}")
        return TaskQueuedResponse(task_id=task.id, progress_key=f"bulk_recolor:{task.id}")

    result = await service.recolor_photos(request.photo_ids)
    return DataResponse[BatchResultSchema](
        data=BatchResultSchema(succeeded=result.succeeded, failed=result.failed, errors=result.errors)
    )


@router.patch("/{photo_id}", response_model=DataResponse[PhotoSchema])
async def update_photo(
    photo_id: str,
    request: PhotoUpdateRequest,
    service: PhotoService = Depends(get_photo_service),
):
    """Edit a photo's title or featured flag."""
    photo = await service.update_photo(photo_id, title=request.title, is_featured=request.is_featured)
    return DataResponse[PhotoSchema](data=PhotoSchema.model_validate(photo))


@router.delete("/{photo_id}", response_model=BaseResponse)
async def delete_photo(
    photo_id: str,
    delete_original: bool = Query(True),
    delete_thumbnail: bool = Query(True),
    service: PhotoService = Depends(get_photo_service),
):
    """Delete a photo and, optionally, its stored objects."""
    await service.delete_photo(photo_id, delete_original=delete_original, delete_thumbnail=delete_thumbnail)
    return BaseResponse()


@router.post("/{photo_id}/move", response_model=DataResponse[PhotoSchema])
async def move_photo(
    photo_id: str,
    request: MoveRequest,
    service: PhotoService = Depends(get_photo_service),
):
    photo = await service.move_photo(photo_id, request.new_path)
    return DataResponse[PhotoSchema](data=PhotoSchema.model_validate(photo))


@router.post("/{photo_id}/recolor", response_model=DataResponse[PhotoSchema])
async def recolor_photo(
    photo_id: str,
    service: PhotoService = Depends(get_photo_service),
):
    photo = await service.recolor_photo(photo_id)
    return DataResponse[PhotoSchema](data=PhotoSchema.model_validate(photo))


@router.post("/{photo_id}/reupload", response_model=DataResponse[PhotoSchema])
async def reupload_photo(
    photo_id: str,
    which: MissingPart = Form(MissingPart.BOTH),
    file: Optional[UploadFile] = File(None),
    service: PhotoService = Depends(get_photo_service),
):
    """
    Restore a missing original and/or thumbnail at the photo's current keys.
    The file may be omitted when only the thumbnail is missing.
    """
    data = await file.read() if file is not None else None
    photo = await service.reupload_missing_parts(photo_id, data, which)
    return DataResponse[PhotoSchema](data=PhotoSchema.model_validate(photo))
