"""
Storage Package
Interchangeable storage backends behind one StorageProvider contract.
"""

from app.storage.base import (
    ListResult,
    MoveResult,
    StorageFile,
    StorageProvider,
    UploadDescriptor,
    UploadResult,
    is_thumbnail_key,
    join_key,
    original_key_of,
    thumbnail_key_of,
)
from app.storage.config import (
    GitObjectStorageConfig,
    LocalStorageConfig,
    S3StorageConfig,
    StorageConfig,
)
from app.storage.factory import StorageProviderFactory, create_provider
from app.storage.resolver import build_storage_config, resolve_storage_config

__all__ = [
    "ListResult",
    "MoveResult",
    "StorageFile",
    "StorageProvider",
    "UploadDescriptor",
    "UploadResult",
    "is_thumbnail_key",
    "join_key",
    "original_key_of",
    "thumbnail_key_of",
    "GitObjectStorageConfig",
    "LocalStorageConfig",
    "S3StorageConfig",
    "StorageConfig",
    "StorageProviderFactory",
    "create_provider",
    "build_storage_config",
    "resolve_storage_config",
]
