"""
Bulk Tasks
Background tasks for bulk photo operations and storage scans.
Each task runs the async services in its own event loop and reports progress
in a Redis hash.
"""

import asyncio
import json
import logging
import time
from typing import List

import redis

from app.config import settings
from app.database import engine
from app.services.ingestion import PhotoService
from app.services.reconciliation import ReconciliationService
from app.worker import celery_app

logger = logging.getLogger(__name__)

PROGRESS_TTL = 3600


def run_async(coro):
    """Run a coroutine to completion, releasing pooled connections bound to its loop."""
    async def runner():
        try:
            return await coro
        finally:
            await engine.dispose()
    return asyncio.run(runner())


@celery_app.task(bind=True, name="app.tasks.bulk.bulk_recolor_task")
def bulk_recolor_task(self, photo_ids: List[str]):
    """Recompute dominant colours for the given photos."""
    r = redis.from_url(settings.redis_url)
    key = f"bulk_recolor:{self.request.id}"
    logger.info(f"Starting bulk recolor of {len(photo_ids)} photos")

    r.hset(key, mapping={
        "status": "running",
        "processed": 0,
        "total": len(photo_ids),
        "errors": 0,
        "updated_at": int(time.time())
    })
    r.expire(key, PROGRESS_TTL)

    try:
        result = run_async(PhotoService().recolor_photos(photo_ids))
    except Exception as e:
        logger.error(f"Bulk recolor error: {e}", exc_info=True)
        r.hset(key, mapping={"status": "failed", "error": str(e), "updated_at": int(time.time())})
        raise

    logger.info(f"Bulk recolor completed: {result.succeeded} updated, {result.failed} failed")
    r.hset(key, mapping={
        "status": "completed",
        "processed": result.total,
        "errors": result.failed,
        "updated_at": int(time.time())
    })
    return result.to_dict()


@celery_app.task(bind=True, name="app.tasks.bulk.scan_backend_task")
def scan_backend_task(self, provider: str):
    """Full reconciliation scan of one backend; stats land in storage_scan:<provider>."""
    r = redis.from_url(settings.redis_url)
    key = f"storage_scan:{provider}"
    logger.info(f"Starting storage scan of {provider}")

    r.delete(key)
    r.hset(key, mapping={"status": "running", "updated_at": int(time.time())})
    r.expire(key, PROGRESS_TTL)

    try:
        report = run_async(ReconciliationService().scan_backend(provider, full_scan=True))
    except Exception as e:
        logger.error(f"Storage scan of {provider} failed: {e}", exc_info=True)
        r.hset(key, mapping={"status": "failed", "error": str(e), "updated_at": int(time.time())})
        raise

    stats = report.stats.to_dict()
    r.hset(key, mapping={
        "status": "completed",
        "stats": json.dumps(stats),
        "updated_at": int(time.time())
    })
    return stats
