"""
Storage Configuration Resolver
Builds the active StorageConfig from persisted key/value settings plus an
optional per-call provider override.
"""

import logging
from typing import Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from app.config import Settings, settings as default_settings
from app.exceptions import ConfigurationError
from app.storage.config import BACKEND_IDS, GITHUB, LOCAL, R2, StorageConfig, parse_storage_config

logger = logging.getLogger(__name__)

PROVIDER_SETTING = "storage_provider"

# Setting-table key -> config field, per provider
SETTING_FIELDS = {
    GITHUB: {
        "github_token": "token",
        "github_repo": "repo",
        "github_path": "path",
        "github_branch": "branch",
        "github_access_method": "access_method",
        "github_pages_url": "pages_url",
    },
    R2: {
        "r2_access_key_id": "access_key_id",
        "r2_secret_access_key": "secret_access_key",
        "r2_bucket": "bucket",
        "r2_endpoint": "endpoint",
        "r2_public_url": "public_url",
        "r2_path": "path",
    },
}

STORAGE_SETTING_KEYS = [PROVIDER_SETTING] + [key for fields in SETTING_FIELDS.values() for key in fields]
SECRET_SETTING_KEYS = {"github_token", "r2_access_key_id", "r2_secret_access_key"}


def build_storage_config(
    settings_map: Mapping[str, Optional[str]],
    override: Optional[str] = None,
    app_settings: Optional[Settings] = None,
) -> StorageConfig:
    """
    Pure construction of the active config.
    Empty strings count as unset so defaults (e.g. branch "main") apply.
    """
    app_settings = app_settings or default_settings
    provider = (override or settings_map.get(PROVIDER_SETTING) or LOCAL).strip().lower()
    if provider not in BACKEND_IDS:
        raise ConfigurationError(
            f"Unknown storage provider: {provider}. Supported: {', '.join(BACKEND_IDS)}",
            "STORAGE_PROVIDER_UNKNOWN",
            field="provider",
        )

    data = {"provider": provider}
    if provider == LOCAL:
        data["base_path"] = app_settings.local_storage_path
        data["base_url"] = app_settings.local_storage_url
    else:
        for setting_key, field_name in SETTING_FIELDS[provider].items():
            value = settings_map.get(setting_key)
            if value not in (None, ""):
                data[field_name] = value

    try:
        return parse_storage_config(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(p) for p in first["loc"][1:]) or None
        raise ConfigurationError(
            f"Invalid {provider} storage setting: {first['msg']}", field=field_name
        ) from e


async def resolve_storage_config(
    repository,
    override: Optional[str] = None,
    app_settings: Optional[Settings] = None,
) -> StorageConfig:
    """Load persisted settings through the repository and build the config."""
    settings_map = await repository.get_settings_map()
    config = build_storage_config(settings_map, override, app_settings)
    logger.debug(f"Resolved storage provider: {config.provider}")
    return config
