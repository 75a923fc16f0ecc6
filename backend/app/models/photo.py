"""
Photo Model
Stores one uploaded photo: where its bytes live, derived data and EXIF fields.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime,
    BigInteger, ForeignKey, Table, JSON, Index
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.storage.base import thumbnail_key_of


def _new_id() -> str:
    return str(uuid.uuid4())


photo_categories = Table(
    "photo_categories",
    Base.metadata,
    Column("photo_id", String(36), ForeignKey("photos.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", String(36), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), unique=True, nullable=False)

    def __repr__(self):
        return f"<Category(name='{self.name}')>"


class Photo(Base):
    """
    Photo record.
    storage_provider + storage_key identify the original object; the thumbnail
    key is always derived from storage_key, never stored separately.
    """
    __tablename__ = "photos"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=False)

    # Storage location
    storage_provider = Column(String(20), nullable=False, default="local", index=True)
    storage_key = Column(String(1024), nullable=True)
    url = Column(String(2048), nullable=False)
    thumbnail_url = Column(String(2048), nullable=True)

    # File information
    width = Column(Integer, nullable=False, default=0)
    height = Column(Integer, nullable=False, default=0)
    size = Column(BigInteger, nullable=True)
    file_hash = Column(String(64), nullable=True)  # SHA-256, dedup key
    dominant_colors = Column(JSON, nullable=True)  # ["#rrggbb", ...]

    is_featured = Column(Boolean, default=False, nullable=False)

    # Equipment
    camera_id = Column(String(255), ForeignKey("cameras.id"), nullable=True, index=True)
    lens_id = Column(String(255), ForeignKey("lenses.id"), nullable=True, index=True)

    # EXIF
    camera_make = Column(String(100), nullable=True)
    camera_model = Column(String(100), nullable=True)
    lens_model = Column(String(255), nullable=True)
    focal_length = Column(String(20), nullable=True)   # "50mm"
    aperture = Column(String(20), nullable=True)       # "f/1.8"
    shutter_speed = Column(String(20), nullable=True)  # "1/250s"
    iso = Column(Integer, nullable=True)
    taken_at = Column(DateTime, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    orientation = Column(Integer, nullable=True)
    software = Column(String(255), nullable=True)
    exif_raw = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    categories = relationship("Category", secondary=photo_categories, lazy="selectin")
    camera = relationship("Camera", back_populates="photos")
    lens = relationship("Lens", back_populates="photos")

    __table_args__ = (
        Index('ix_photos_file_hash', 'file_hash'),
        Index('ix_photos_provider_key', 'storage_provider', 'storage_key'),
    )

    def __repr__(self):
        return f"<Photo(id={self.id}, title='{self.title}', provider={self.storage_provider})>"

    @property
    def object_key(self) -> str:
        """Durable key of the original; legacy rows without a key fall back to the URL."""
        return self.storage_key or self.url

    @property
    def thumbnail_key(self) -> Optional[str]:
        if not self.thumbnail_url:
            return None
        return thumbnail_key_of(self.object_key)

    @property
    def category_names(self) -> list:
        return [c.name for c in self.categories]
