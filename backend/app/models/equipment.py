"""
Equipment Models
Cameras and lenses keyed by their normalized brand key, so differently spelled
EXIF makes ("Canon Inc.", "CANON") collapse onto one row.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship

from app.database import Base


class Camera(Base):
    __tablename__ = "cameras"

    id = Column(String(255), primary_key=True)  # normalized key, e.g. "canon-eos-r5"
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    photos = relationship("Photo", back_populates="camera")

    def __repr__(self):
        return f"<Camera(id='{self.id}', name='{self.name}')>"


class Lens(Base):
    __tablename__ = "lenses"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    photos = relationship("Photo", back_populates="lens")

    def __repr__(self):
        return f"<Lens(id='{self.id}', name='{self.name}')>"
