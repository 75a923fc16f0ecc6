"""
Storage Configuration
One closed set of backend configurations, discriminated on `provider`.
Fields are optional on purpose: missing values are reported by the
provider's validate_config() as ConfigurationError before any I/O.
"""

from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

LOCAL = "local"
GITHUB = "github"
R2 = "r2"

BACKEND_IDS = (LOCAL, GITHUB, R2)

GithubAccessMethod = Literal["raw", "jsdelivr", "pages"]


class LocalStorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["local"] = LOCAL
    base_path: Optional[str] = None
    base_url: Optional[str] = None


class GitObjectStorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["github"] = GITHUB
    token: Optional[str] = None
    repo: Optional[str] = None  # "owner/name"
    path: str = "uploads"
    branch: str = "main"
    access_method: GithubAccessMethod = "jsdelivr"
    pages_url: Optional[str] = None


class S3StorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["r2"] = R2
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    bucket: Optional[str] = None
    endpoint: Optional[str] = None
    public_url: Optional[str] = None
    path: str = ""


StorageConfig = Annotated[
    Union[LocalStorageConfig, GitObjectStorageConfig, S3StorageConfig],
    Field(discriminator="provider"),
]

_storage_config_adapter = TypeAdapter(StorageConfig)


def parse_storage_config(data: dict) -> Union[LocalStorageConfig, GitObjectStorageConfig, S3StorageConfig]:
    """Validate a plain dict into the matching config variant."""
    return _storage_config_adapter.validate_python(data)
