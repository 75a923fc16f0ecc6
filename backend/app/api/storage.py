"""
Storage administration endpoints: reconciliation scan, orphan cleanup and
removal of records whose files are gone.
"""

import json
import logging
from typing import Optional

import redis.asyncio as redis_async
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import get_reconciliation_service
from app.config import settings
from app.schemas.common import TaskQueuedResponse
from app.schemas.storage import (
    CleanupRequest,
    CleanupResponse,
    FixMissingRequest,
    FixMissingResponse,
    FileStatusLiteral,
    ScanEntrySchema,
    ScanProgress,
    ScanResponse,
    ScanStatsSchema,
    ScanTaskRequest,
)
from app.services.reconciliation import FileStatus, ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter()

SCAN_PROGRESS_PREFIX = "storage_scan:"


@router.get("/scan", response_model=ScanResponse)
async def scan_storage(
    provider: str = Query("local"),
    status: Optional[FileStatusLiteral] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    full_scan: bool = Query(True, description="List every object rather than the configured prefix"),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Compare a backend's objects against photo records."""
    report = await service.scan_backend(
        provider,
        full_scan=full_scan,
        status=FileStatus(status) if status else None,
        search=search,
    )
    return ScanResponse(
        files=[ScanEntrySchema.model_validate(entry) for entry in report.files],
        stats=ScanStatsSchema.model_validate(report.stats),
    )


@router.post("/scan/background", response_model=TaskQueuedResponse)
async def queue_scan(request: ScanTaskRequest):
    """Queue a full scan on the worker; poll /scan/progress for the stats."""
    from app.tasks.bulk import scan_backend_task

    task = scan_backend_task.delay(request.provider)
    logger.info(f"Queued storage scan of {request.provider} as task {task.id}")
    return TaskQueuedResponse(task_id=task.id, progress_key=f"{SCAN_PROGRESS_PREFIX}{request.provider}")


@router.get("/scan/progress", response_model=ScanProgress)
async def scan_progress(provider: str = Query("local")):
    r = redis_async.from_url(settings.redis_url, decode_responses=True)
    try:
        data = await r.hgetall(f"{SCAN_PROGRESS_PREFIX}{provider}")
    finally:
        await r.close()

    if not data:
        raise HTTPException(status_code=404, detail=f"No scan recorded for {provider}")
    return ScanProgress(
        status=data.get("status", "unknown"),
        provider=provider,
        stats=json.loads(data["stats"]) if data.get("stats") else None,
        error=data.get("error") or None,
        updated_at=int(data["updated_at"]) if data.get("updated_at") else None,
    )


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_orphans(
    request: CleanupRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Delete the given objects (and their thumbnails) from a backend."""
    result = await service.cleanup_keys(request.provider, request.keys)
    return CleanupResponse(deleted=result.deleted, failed=result.failed, errors=result.errors)


@router.post("/fix-missing", response_model=FixMissingResponse)
async def fix_missing(
    request: FixMissingRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Remove photo records whose original and thumbnail are both gone."""
    deleted = await service.remove_missing_photos(request.provider, request.photo_ids)
    return FixMissingResponse(deleted=deleted)
