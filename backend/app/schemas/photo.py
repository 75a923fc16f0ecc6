from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field


class PhotoSchema(BaseModel):
    id: str
    title: str
    storage_provider: str
    storage_key: Optional[str] = None
    url: str
    thumbnail_url: Optional[str] = None

    width: int = 0
    height: int = 0
    size: Optional[int] = None
    file_hash: Optional[str] = None
    dominant_colors: Optional[List[str]] = None
    is_featured: bool = False

    camera_id: Optional[str] = None
    lens_id: Optional[str] = None

    # EXIF
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    focal_length: Optional[str] = None
    aperture: Optional[str] = None
    shutter_speed: Optional[str] = None
    iso: Optional[int] = None
    taken_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    orientation: Optional[int] = None
    software: Optional[str] = None

    category_names: List[str] = []

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def category(self) -> str:
        """Comma-joined category names, as the upload form sends them."""
        return ",".join(self.category_names)


class DuplicateSchema(BaseModel):
    photo_id: str
    title: str
    url: str
    thumbnail_url: Optional[str] = None
    file_hash: str

    model_config = ConfigDict(from_attributes=True)


class UploadResponse(BaseModel):
    success: bool = True
    status: Literal["created", "duplicate"]
    data: Optional[PhotoSchema] = None
    duplicate: Optional[DuplicateSchema] = None


class CheckDuplicateRequest(BaseModel):
    hashes: List[str] = Field(..., min_length=1, max_length=500)


class CheckDuplicateResponse(BaseModel):
    success: bool = True
    duplicates: Dict[str, DuplicateSchema] = {}


class MoveRequest(BaseModel):
    new_path: str = Field(..., description="Directory (from the backend root) to move the photo into")


class PhotoUpdateRequest(BaseModel):
    title: Optional[str] = None
    is_featured: Optional[bool] = None


class RecolorRequest(BaseModel):
    photo_ids: List[str] = Field(..., min_length=1)
    background: bool = False


class BatchUpdateUrlsRequest(BaseModel):
    provider: str
    old_prefix: str
    new_prefix: str


class BatchUpdateUrlsResponse(BaseModel):
    success: bool = True
    updated: int
    failed: int
    errors: Dict[str, str] = {}
