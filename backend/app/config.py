"""
MoGallery Configuration Module
Loads settings from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "MoGallery"
    debug: bool = False

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_url: str = "redis://redis:6379/0"
    celery_broker_url: str = "redis://redis:6379/0"
    celery_result_backend: str = "redis://redis:6379/1"

    # Local storage backend (the only backend configured from the environment;
    # GitHub and R2 credentials live in the settings table)
    local_storage_path: str = "./public/uploads"
    local_storage_url: str = "/uploads"

    # Derived data
    thumbnail_max_size: int = 800
    thumbnail_quality: int = 80
    dominant_color_count: int = 5
    max_upload_size_mb: int = 50

    # Batch operations
    batch_concurrency: int = 5

    # Remote storage clients
    github_api_url: str = "https://api.github.com"
    storage_http_timeout: float = 60.0

    # Logging
    log_dir: str = "/var/log/mogallery"
    log_level: str = "INFO"

    # API Settings
    api_prefix: str = "/api"

    @field_validator(
        'thumbnail_max_size',
        'dominant_color_count',
        'max_upload_size_mb',
        'batch_concurrency',
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator('thumbnail_quality')
    @classmethod
    def validate_quality(cls, v: int) -> int:
        """JPEG quality accepted by Pillow."""
        if not 1 <= v <= 95:
            raise ValueError("THUMBNAIL_QUALITY must be between 1 and 95")
        return v

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def allowed_upload_extensions(self) -> List[str]:
        return [".jpg", ".jpeg", ".png", ".webp", ".gif", ".tif", ".tiff"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    try:
        return Settings()
    except Exception as e:
        print(f"❌ Configuration Error: {e}")
        raise e


# Convenience alias
settings = get_settings()
