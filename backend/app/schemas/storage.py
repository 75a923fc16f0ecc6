from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

FileStatusLiteral = Literal["linked", "orphan", "missing", "missing_original", "missing_thumbnail"]


class ScanEntrySchema(BaseModel):
    key: str
    url: str
    size: int
    last_modified: datetime
    status: FileStatusLiteral
    photo_id: Optional[str] = None
    photo_title: Optional[str] = None
    has_thumbnail: bool = False
    is_thumbnail: bool = False

    model_config = ConfigDict(from_attributes=True)


class ScanStatsSchema(BaseModel):
    total: int = 0
    linked: int = 0
    orphan: int = 0
    missing: int = 0
    missing_original: int = 0
    missing_thumbnail: int = 0

    model_config = ConfigDict(from_attributes=True)


class ScanResponse(BaseModel):
    success: bool = True
    files: List[ScanEntrySchema]
    stats: ScanStatsSchema


class ScanProgress(BaseModel):
    status: str
    provider: str
    stats: Optional[Dict[str, int]] = None
    error: Optional[str] = None
    updated_at: Optional[int] = None


class ScanTaskRequest(BaseModel):
    provider: str = "local"


class CleanupRequest(BaseModel):
    provider: str = "local"
    keys: List[str] = Field(..., min_length=1)


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int
    failed: int
    errors: List[str] = []


class FixMissingRequest(BaseModel):
    provider: str = "local"
    photo_ids: List[str] = Field(..., min_length=1)


class FixMissingResponse(BaseModel):
    success: bool = True
    deleted: int


class StorageSettingsSchema(BaseModel):
    """Persisted storage settings. Secrets are masked on read."""
    storage_provider: Optional[Literal["local", "github", "r2"]] = None
    github_token: Optional[str] = None
    github_repo: Optional[str] = None
    github_path: Optional[str] = None
    github_branch: Optional[str] = None
    github_access_method: Optional[Literal["raw", "jsdelivr", "pages"]] = None
    github_pages_url: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket: Optional[str] = None
    r2_endpoint: Optional[str] = None
    r2_public_url: Optional[str] = None
    r2_path: Optional[str] = None


class EquipmentSchema(BaseModel):
    id: str
    name: str
    brand: Optional[str] = None
    photo_count: int = 0
