"""
MoGallery Database Models
Exports all models for use throughout the application.
"""

from app.models.photo import Photo, Category, photo_categories
from app.models.equipment import Camera, Lens
from app.models.setting import Setting

__all__ = [
    "Photo",
    "Category",
    "photo_categories",
    "Camera",
    "Lens",
    "Setting",
]
