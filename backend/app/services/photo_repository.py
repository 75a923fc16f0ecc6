"""
Photo Repository
Database access for photos, equipment, categories and persisted settings.
Write failures are rolled back and surfaced as PersistenceError.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import AsyncSessionLocal
from app.exceptions import PersistenceError
from app.extractors.equipment import EquipmentName
from app.models import Camera, Category, Lens, Photo, Setting

logger = logging.getLogger(__name__)


class PhotoRepository:
    """Async repository over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, photo_id: str) -> Optional[Photo]:
        return await self.session.get(Photo, photo_id)

    async def find_by_hash(self, file_hash: str) -> Optional[Photo]:
        result = await self.session.execute(
            select(Photo).where(Photo.file_hash == file_hash).order_by(Photo.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_hashes(self, hashes: Iterable[str]) -> Dict[str, Photo]:
        hashes = list({h for h in hashes if h})
        if not hashes:
            return {}
        result = await self.session.execute(
            select(Photo).where(Photo.file_hash.in_(hashes)).order_by(Photo.created_at)
        )
        found: Dict[str, Photo] = {}
        for photo in result.scalars():
            found.setdefault(photo.file_hash, photo)
        return found

    async def list_by_backend(self, backend_id: str) -> List[Photo]:
        result = await self.session.execute(
            select(Photo).where(Photo.storage_provider == backend_id).order_by(Photo.created_at)
        )
        return list(result.scalars())

    async def list_by_url_prefix(self, backend_id: str, prefix: str) -> List[Photo]:
        result = await self.session.execute(
            select(Photo).where(
                Photo.storage_provider == backend_id,
                Photo.url.startswith(prefix, autoescape=True),
            )
        )
        return list(result.scalars())

    async def get_settings_map(self) -> Dict[str, str]:
        result = await self.session.execute(select(Setting.key, Setting.value))
        return {key: value for key, value in result.all()}

    async def list_cameras(self) -> List[Tuple[Camera, int]]:
        stmt = (
            select(Camera, func.count(Photo.id))
            .outerjoin(Photo, Photo.camera_id == Camera.id)
            .group_by(Camera.id)
            .order_by(Camera.name)
        )
        result = await self.session.execute(stmt)
        return [(camera, count) for camera, count in result.all()]

    async def list_lenses(self) -> List[Tuple[Lens, int]]:
        stmt = (
            select(Lens, func.count(Photo.id))
            .outerjoin(Photo, Photo.lens_id == Lens.id)
            .group_by(Lens.id)
            .order_by(Lens.name)
        )
        result = await self.session.execute(stmt)
        return [(lens, count) for lens, count in result.all()]

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(
        self,
        photo: Photo,
        categories: Sequence[str] = (),
        camera: Optional[EquipmentName] = None,
        lens: Optional[EquipmentName] = None,
    ) -> Photo:
        """Insert a photo together with its equipment and category rows in one transaction."""
        try:
            if camera:
                photo.camera_id = (await self._upsert_equipment(Camera, camera)).id
            if lens:
                photo.lens_id = (await self._upsert_equipment(Lens, lens)).id
            photo.categories = await self._get_or_create_categories(categories)
            self.session.add(photo)
            await self.session.commit()
            await self.session.refresh(photo)
            return photo
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to save photo '{photo.title}': {e}") from e

    async def save(self, photo: Photo) -> Photo:
        try:
            self.session.add(photo)
            await self.session.commit()
            await self.session.refresh(photo)
            return photo
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to update photo {photo.id}: {e}") from e

    async def delete(self, photo: Photo) -> None:
        try:
            await self.session.delete(photo)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to delete photo {photo.id}: {e}") from e

    async def delete_many(self, photo_ids: Sequence[str]) -> int:
        if not photo_ids:
            return 0
        try:
            result = await self.session.execute(delete(Photo).where(Photo.id.in_(list(photo_ids))))
            await self.session.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to delete photos: {e}") from e

    async def upsert_settings(self, values: Mapping[str, Optional[str]]) -> None:
        """Set each key; a None value removes the key."""
        try:
            existing = {
                s.key: s
                for s in (await self.session.execute(
                    select(Setting).where(Setting.key.in_(list(values)))
                )).scalars()
            }
            for key, value in values.items():
                row = existing.get(key)
                if value is None:
                    if row is not None:
                        await self.session.delete(row)
                elif row is None:
                    self.session.add(Setting(key=key, value=value))
                else:
                    row.value = value
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to save settings: {e}") from e

    async def _get_or_insert(self, lookup, make_row):
        """
        Return the row found by lookup, inserting make_row() when there is none.
        The insert runs in a savepoint; if a concurrent writer created the same
        row first, the unique-key clash rolls back only the savepoint and the
        winner's row is read back instead.
        """
        row = await lookup()
        if row is not None:
            return row, False
        try:
            async with self.session.begin_nested():
                row = make_row()
                self.session.add(row)
            return row, True
        except IntegrityError:
            row = await lookup()
            if row is None:
                raise
            return row, False

    async def _find_equipment(self, model, key: str):
        return await self.session.get(model, key)

    async def _find_category(self, name: str) -> Optional[Category]:
        result = await self.session.execute(select(Category).where(Category.name == name))
        return result.scalar_one_or_none()

    async def _upsert_equipment(self, model, name: EquipmentName):
        row, created = await self._get_or_insert(
            lambda: self._find_equipment(model, name.key),
            lambda: model(id=name.key, name=name.name, brand=name.brand),
        )
        if created:
            logger.info(f"Registered new {model.__name__.lower()}: {name.name} ({name.key})")
        return row

    async def _get_or_create_categories(self, names: Sequence[str]) -> List[Category]:
        categories = []
        for name in dict.fromkeys(names):
            category, _ = await self._get_or_insert(
                lambda: self._find_category(name),
                lambda: Category(name=name),
            )
            categories.append(category)
        return categories


@asynccontextmanager
async def repository_scope() -> AsyncIterator[PhotoRepository]:
    """One session-backed repository per unit of work."""
    async with AsyncSessionLocal() as session:
        yield PhotoRepository(session)
