"""
API Dependencies
Reusable FastAPI dependencies that hand endpoints their services.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.ingestion import PhotoService
from app.services.photo_repository import PhotoRepository
from app.services.reconciliation import ReconciliationService


async def get_repository(db: AsyncSession = Depends(get_db)) -> PhotoRepository:
    """Repository bound to the request's session."""
    return PhotoRepository(db)


def get_photo_service() -> PhotoService:
    """
    Photo service using the default repository scope and provider factory.
    Each operation opens its own session, so uploads are not tied to the request's.
    """
    return PhotoService()


def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService()
