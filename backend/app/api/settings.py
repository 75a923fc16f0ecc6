from typing import Dict, Optional

from fastapi import APIRouter, Depends

from app.api.dependencies import get_repository
from app.schemas.storage import StorageSettingsSchema
from app.services.photo_repository import PhotoRepository
from app.storage.factory import StorageProviderFactory
from app.storage.resolver import SECRET_SETTING_KEYS, STORAGE_SETTING_KEYS, build_storage_config

router = APIRouter()

MASK = "********"


def _mask(values: Dict[str, str]) -> StorageSettingsSchema:
    shown = {}
    for key in STORAGE_SETTING_KEYS:
        value = values.get(key)
        if value and key in SECRET_SETTING_KEYS:
            value = MASK
        shown[key] = value or None
    return StorageSettingsSchema(**shown)


@router.get("/storage", response_model=StorageSettingsSchema)
async def get_storage_settings(repo: PhotoRepository = Depends(get_repository)):
    """Get current storage settings. Secrets are masked."""
    return _mask(await repo.get_settings_map())


@router.patch("/storage", response_model=StorageSettingsSchema)
async def update_storage_settings(
    new_settings: StorageSettingsSchema,
    repo: PhotoRepository = Depends(get_repository),
):
    """
    Update storage settings. Only fields present in the body change; an empty
    string clears a field, and the masked placeholder leaves a secret as is.
    """
    changes: Dict[str, Optional[str]] = {}
    for key, value in new_settings.model_dump(exclude_unset=True).items():
        if key in SECRET_SETTING_KEYS and value == MASK:
            continue
        changes[key] = value or None

    # Switching providers must leave a usable configuration
    current = await repo.get_settings_map()
    merged = {k: v for k, v in {**current, **changes}.items() if v is not None}
    if "storage_provider" in changes:
        StorageProviderFactory.create(build_storage_config(merged)).validate_config()

    await repo.upsert_settings(changes)
    return _mask(merged)
