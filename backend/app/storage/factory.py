"""
Storage Provider Factory
The single place that maps a StorageConfig variant to its provider class.
Construction performs no I/O; call validate_config() before using the provider.
"""

import logging
from typing import Callable, Dict

from app.config import settings
from app.exceptions import ConfigurationError
from app.storage.base import StorageProvider
from app.storage.config import GITHUB, LOCAL, R2, StorageConfig
from app.storage.github import GitObjectStorageProvider
from app.storage.local import LocalStorageProvider
from app.storage.s3 import S3StorageProvider

logger = logging.getLogger(__name__)


def _create_github(config) -> StorageProvider:
    return GitObjectStorageProvider(
        config,
        api_url=settings.github_api_url,
        timeout=settings.storage_http_timeout,
    )


class StorageProviderFactory:
    """Factory for storage provider instances keyed on the config's provider tag."""

    _registry: Dict[str, Callable[[StorageConfig], StorageProvider]] = {
        LOCAL: LocalStorageProvider,
        GITHUB: _create_github,
        R2: S3StorageProvider,
    }

    @classmethod
    def create(cls, config: StorageConfig) -> StorageProvider:
        """
        Build the provider for `config`.

        Raises:
            ConfigurationError: the config's provider tag is not registered.
        """
        provider_id = getattr(config, "provider", None)
        builder = cls._registry.get(provider_id)
        if builder is None:
            raise ConfigurationError(
                f"Unknown storage provider: {provider_id}. Supported: {', '.join(cls._registry)}",
                "STORAGE_PROVIDER_UNKNOWN",
                field="provider",
            )
        logger.debug(f"Creating {provider_id} storage provider")
        return builder(config)

    @classmethod
    def supported(cls) -> tuple:
        return tuple(cls._registry)


def create_provider(config: StorageConfig) -> StorageProvider:
    return StorageProviderFactory.create(config)
