"""
MoGallery FastAPI Application
Main entry point for the backend API server.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.config import settings
from app.database import init_db, close_db
from app.exceptions import (
    ConfigurationError,
    ExtractionError,
    GalleryError,
    IngestionError,
    PhotoNotFoundError,
    StorageError,
    StorageNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Ingestion failures map by the stage they failed in
STAGE_STATUS = {
    "Extracting": 422,
    "Uploading": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs on startup and cleanup on shutdown.
    """
    # Startup
    from app.logging_config import setup_logging
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)

    print("🚀 Starting MoGallery Backend...")

    # Initialize database (creates tables if they don't exist)
    # In production, use Alembic migrations instead
    if settings.debug:
        await init_db()
        print("✅ Database initialized (debug mode)")

    print(f"📁 Local storage: {settings.local_storage_path} -> {settings.local_storage_url}")
    print("✅ MoGallery Backend ready!")

    yield

    # Shutdown
    print("🛑 Shutting down MoGallery Backend...")
    await close_db()
    print("✅ Database connections closed")


# Create FastAPI application
app = FastAPI(
    title="MoGallery",
    description="""
    ## Photo Gallery API

    MoGallery stores photos on a local disk, a GitHub repository or an
    S3-compatible bucket and keeps a searchable record of each one.

    ### Features
    - **Deduplicated Uploads**: Identical bytes are detected by content hash
    - **Derived Data**: EXIF metadata, 800px JPEG thumbnails and dominant colours
    - **Pluggable Storage**: Local, GitHub and Cloudflare R2 backends
    - **Reconciliation**: Find orphaned objects and records whose files are gone
    """,
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)


# =============================================================================
# Error Handlers
# =============================================================================

def status_for(error: GalleryError) -> int:
    if isinstance(error, (ConfigurationError, ValidationError)):
        return 400
    if isinstance(error, (PhotoNotFoundError, StorageNotFoundError)):
        return 404
    if isinstance(error, StorageError):
        return 502
    if isinstance(error, ExtractionError):
        return 422
    if isinstance(error, IngestionError):
        return STAGE_STATUS.get(error.stage, 500)
    return 500


@app.exception_handler(GalleryError)
async def gallery_error_handler(request: Request, exc: GalleryError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API information."""
    return {
        "name": "MoGallery API",
        "version": "0.1.0",
        "docs": "/api/docs",
        "status": "running"
    }


@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint for container orchestration."""
    return {
        "status": "healthy",
        "service": "mogallery-backend",
        "version": "0.1.0"
    }


@app.get("/api/health/db", tags=["Health"])
async def database_health():
    """Database connectivity check."""
    from sqlalchemy import text
    from app.database import AsyncSessionLocal

    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT 1"))
            result.fetchone()
        return {
            "status": "healthy",
            "database": "connected",
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e)
        }


@app.get("/api/health/redis", tags=["Health"])
async def redis_health():
    """Redis connectivity check."""
    import redis.asyncio as redis_async

    try:
        r = redis_async.from_url(settings.redis_url)
        await r.ping()
        await r.close()
        return {
            "status": "healthy",
            "redis": "connected"
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "redis": "disconnected",
            "error": str(e)
        }


from app.api import equipment, photos, storage, settings as settings_api


# =============================================
# API Routers
# =============================================

app.include_router(photos.router, prefix="/api/admin/photos", tags=["Photos"])
app.include_router(storage.router, prefix="/api/admin/storage", tags=["Storage"])
app.include_router(settings_api.router, prefix="/api/settings", tags=["Settings"])
app.include_router(equipment.router, prefix="/api", tags=["Equipment"])

# Serve the local backend's files at its public URL
if settings.local_storage_url.startswith("/"):
    app.mount(
        settings.local_storage_url,
        StaticFiles(directory=Path(settings.local_storage_path), check_dir=False),
        name="uploads",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
