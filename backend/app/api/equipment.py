from typing import List

from fastapi import APIRouter, Depends

from app.api.dependencies import get_repository
from app.schemas.storage import EquipmentSchema
from app.services.photo_repository import PhotoRepository

router = APIRouter()


@router.get("/cameras", response_model=List[EquipmentSchema])
async def list_cameras(repo: PhotoRepository = Depends(get_repository)):
    """Cameras seen in uploaded photos, with how many photos each took."""
    return [
        EquipmentSchema(id=camera.id, name=camera.name, brand=camera.brand, photo_count=count)
        for camera, count in await repo.list_cameras()
    ]


@router.get("/lenses", response_model=List[EquipmentSchema])
async def list_lenses(repo: PhotoRepository = Depends(get_repository)):
    return [
        EquipmentSchema(id=lens.id, name=lens.name, brand=lens.brand, photo_count=count)
        for lens, count in await repo.list_lenses()
    ]
