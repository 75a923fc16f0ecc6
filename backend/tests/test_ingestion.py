"""Tests for the photo ingestion pipeline and its partial-update operations."""

import hashlib
import io
import logging

import pytest
from PIL import Image

from app.exceptions import (
    ConfigurationError,
    ExtractionError,
    IngestionError,
    PhotoNotFoundError,
    StorageDeleteError,
    ValidationError,
)
from app.services.ingestion import (
    DuplicateDetected,
    PhotoService,
    parse_categories,
    storage_filename,
)
from app.storage.config import LocalStorageConfig

from conftest import InMemoryStorageProvider, make_jpeg

CONFIG = LocalStorageConfig(base_path="/srv/uploads", base_url="/uploads")


@pytest.fixture
def service(repo_scope, memory_provider) -> PhotoService:
    return PhotoService(repositories=repo_scope, provider_factory=lambda config: memory_provider)


@pytest.fixture
def fixed_names(monkeypatch):
    monkeypatch.setattr("app.services.ingestion.storage_filename", lambda name: "fixed.jpg")


async def ingest(service, data, **kwargs):
    values = {"filename": "IMG_0001.JPG", "content_type": "image/jpeg", "title": "Sunset", "categories": None}
    values.update(kwargs)
    return await service.ingest_photo(
        data, values["filename"], values["content_type"], values["title"], values["categories"], CONFIG,
        precomputed_hash=values.get("precomputed_hash"), storage_path=values.get("storage_path"),
    )


class TestHelpers:
    def test_parse_categories(self) -> None:
        assert parse_categories(" travel, night,,travel ") == ["travel", "night"]
        assert parse_categories(None) == []
        assert parse_categories(["a", " ", "b"]) == ["a", "b"]

    def test_storage_filename_is_random_hex_with_extension(self) -> None:
        name = storage_filename("My Photo.JPG")
        assert len(name) == 32 + len(".jpg")
        assert name.endswith(".jpg")
        assert storage_filename("My Photo.JPG") != name

    def test_storage_filename_sanitises_extension(self) -> None:
        assert storage_filename("evil.J$P g").endswith(".jpg")
        assert "." not in storage_filename("no_extension")


class TestIngest:
    async def test_fresh_upload(self, service, fake_repo, memory_provider, jpeg_bytes) -> None:
        photo = await ingest(service, jpeg_bytes, categories="travel, night,,travel", storage_path="2024")

        assert photo.id in fake_repo.photos
        assert (photo.width, photo.height) == (2000, 1500)
        assert photo.file_hash == hashlib.sha256(jpeg_bytes).hexdigest()
        assert photo.size == len(jpeg_bytes)
        assert photo.camera_id == "canon-eos-r5"
        assert photo.category_names == ["travel", "night"]
        assert photo.dominant_colors
        assert photo.storage_key.startswith("2024/")
        assert photo.url == f"https://cdn.test/{photo.storage_key}"
        assert photo.thumbnail_url == f"https://cdn.test/{photo.thumbnail_key}"

        assert set(memory_provider.objects) == {photo.storage_key, photo.thumbnail_key}
        with Image.open(io.BytesIO(memory_provider.objects[photo.thumbnail_key])) as thumb:
            assert max(thumb.size) == 800
        assert memory_provider.objects[photo.storage_key] == jpeg_bytes

    async def test_duplicate_returns_existing_without_upload(
        self, service, fake_repo, memory_provider, jpeg_bytes
    ) -> None:
        existing = fake_repo.add(
            title="First", url="https://cdn.test/a.jpg", file_hash=hashlib.sha256(jpeg_bytes).hexdigest()
        )

        result = await ingest(service, jpeg_bytes)

        assert isinstance(result, DuplicateDetected)
        assert result.photo_id == existing.id
        assert result.title == "First"
        assert memory_provider.calls == []
        assert len(fake_repo.photos) == 1

    async def test_precomputed_hash_used_for_dedup(self, service, fake_repo, memory_provider, jpeg_bytes) -> None:
        fake_repo.add(url="u", file_hash="a" * 64)
        result = await ingest(service, jpeg_bytes, precomputed_hash="a" * 64)
        assert isinstance(result, DuplicateDetected)

    async def test_validation_lists_every_problem(self, service, memory_provider) -> None:
        with pytest.raises(ValidationError) as exc:
            await ingest(service, b"", filename="notes.txt", title="  ", precomputed_hash="XYZ", storage_path="../up")

        fields = {issue.field for issue in exc.value.issues}
        assert fields == {"file", "filename", "title", "hash", "storage_path"}
        assert memory_provider.calls == []

    async def test_configuration_error_before_any_io(self, repo_scope, fake_repo, jpeg_bytes) -> None:
        provider = InMemoryStorageProvider(misconfigured=True)
        service = PhotoService(repositories=repo_scope, provider_factory=lambda config: provider)

        with pytest.raises(ConfigurationError):
            await ingest(service, jpeg_bytes)

        assert provider.calls == []
        assert fake_repo.photos == {}

    async def test_colour_failure_does_not_block_upload(
        self, service, fake_repo, memory_provider, jpeg_bytes, monkeypatch
    ) -> None:
        def broken_palette(data, count):
            raise ExtractionError("colors", "palette quantisation failed")

        monkeypatch.setattr("app.services.ingestion.extract_dominant_colors", broken_palette)

        photo = await ingest(service, jpeg_bytes)

        assert photo.id in fake_repo.photos
        assert photo.dominant_colors is None
        assert photo.thumbnail_url is not None
        assert len(memory_provider.objects) == 2

    async def test_unreadable_image_fails_while_extracting(self, service, memory_provider) -> None:
        with pytest.raises(IngestionError) as exc:
            await ingest(service, b"definitely not a jpeg")

        assert exc.value.stage == "Extracting"
        assert memory_provider.calls == []

    async def test_thumbnail_upload_failure_leaves_nothing(
        self, service, fake_repo, memory_provider, jpeg_bytes, fixed_names
    ) -> None:
        memory_provider.fail_put.add("thumb-fixed.jpg")

        with pytest.raises(IngestionError) as exc:
            await ingest(service, jpeg_bytes)

        assert exc.value.stage == "Uploading"
        assert memory_provider.objects == {}
        assert fake_repo.photos == {}

    async def test_persistence_failure_removes_uploaded_objects(
        self, service, fake_repo, memory_provider, jpeg_bytes, fixed_names
    ) -> None:
        fake_repo.fail_create = True

        with pytest.raises(IngestionError) as exc:
            await ingest(service, jpeg_bytes)

        assert exc.value.stage == "Persisting"
        assert memory_provider.objects == {}

    async def test_failed_compensation_is_audited(
        self, service, fake_repo, memory_provider, jpeg_bytes, fixed_names, caplog
    ) -> None:
        fake_repo.fail_create = True
        memory_provider.fail_remove.add("fixed.jpg")

        with caplog.at_level(logging.ERROR, logger="app.storage.audit"):
            with pytest.raises(IngestionError):
                await ingest(service, jpeg_bytes)

        assert "fixed.jpg" in memory_provider.objects
        assert any("ORPHAN" in r.message and "fixed.jpg" in r.message for r in caplog.records)


class TestPartialUpdates:
    @pytest.fixture
    def stored(self, fake_repo, memory_provider, jpeg_bytes):
        memory_provider.objects["x/a.jpg"] = jpeg_bytes
        memory_provider.objects["x/thumb-a.jpg"] = b"thumb"
        return fake_repo.add(
            title="Stored",
            storage_key="x/a.jpg",
            url="https://cdn.test/x/a.jpg",
            thumbnail_url="https://cdn.test/x/thumb-a.jpg",
        )

    async def test_unknown_photo(self, service) -> None:
        with pytest.raises(PhotoNotFoundError):
            await service.recolor_photo("nope")

    async def test_update_title_and_featured_flag(self, service, fake_repo, stored) -> None:
        photo = await service.update_photo(stored.id, title="  Harbour at dusk ", is_featured=True)

        assert (photo.title, photo.is_featured) == ("Harbour at dusk", True)
        assert fake_repo.photos[stored.id].is_featured is True

    async def test_update_leaves_omitted_fields_alone(self, service, stored) -> None:
        photo = await service.update_photo(stored.id, is_featured=True)
        assert photo.title == "Stored"

        photo = await service.update_photo(stored.id, title="Renamed")
        assert photo.is_featured is True

    async def test_update_rejects_blank_title(self, service, stored) -> None:
        with pytest.raises(ValidationError) as exc:
            await service.update_photo(stored.id, title="   ")

        assert [i.field for i in exc.value.issues] == ["title"]
        assert stored.title == "Stored"

    async def test_update_unknown_photo(self, service) -> None:
        with pytest.raises(PhotoNotFoundError):
            await service.update_photo("nope", title="Anything")

    async def test_delete_removes_objects_then_row(self, service, fake_repo, memory_provider, stored) -> None:
        await service.delete_photo(stored.id)
        assert memory_provider.objects == {}
        assert fake_repo.photos == {}

    async def test_delete_can_keep_original(self, service, memory_provider, stored) -> None:
        await service.delete_photo(stored.id, delete_original=False)
        assert set(memory_provider.objects) == {"x/a.jpg"}

    async def test_delete_keeps_row_when_storage_fails(self, service, fake_repo, memory_provider, stored) -> None:
        memory_provider.fail_remove.add("x/a.jpg")
        with pytest.raises(StorageDeleteError):
            await service.delete_photo(stored.id)
        assert stored.id in fake_repo.photos

    async def test_move_updates_record(self, service, memory_provider, stored) -> None:
        photo = await service.move_photo(stored.id, "archive/2024")

        assert photo.storage_key == "archive/2024/a.jpg"
        assert photo.url == "https://cdn.test/archive/2024/a.jpg"
        assert photo.thumbnail_url == "https://cdn.test/archive/2024/thumb-a.jpg"
        assert set(memory_provider.objects) == {"archive/2024/a.jpg", "archive/2024/thumb-a.jpg"}

    async def test_move_rejects_traversal(self, service, stored) -> None:
        with pytest.raises(ValidationError):
            await service.move_photo(stored.id, "../outside")

    async def test_reupload_thumbnail_from_stored_original(self, service, memory_provider, stored) -> None:
        del memory_provider.objects["x/thumb-a.jpg"]

        photo = await service.reupload_missing_parts(stored.id, None, "thumbnail")

        assert "x/thumb-a.jpg" in memory_provider.objects
        assert photo.thumbnail_url == "https://cdn.test/x/thumb-a.jpg"
        assert "put:x/a.jpg" not in memory_provider.calls

    async def test_reupload_original_requires_file(self, service, stored) -> None:
        with pytest.raises(ValidationError):
            await service.reupload_missing_parts(stored.id, None, "original")

    async def test_bad_thumbnail_does_not_block_original(self, service, memory_provider, stored) -> None:
        memory_provider.objects.clear()

        photo = await service.reupload_missing_parts(stored.id, b"raw bytes", "both")

        assert memory_provider.objects == {"x/a.jpg": b"raw bytes"}
        assert photo.file_hash == hashlib.sha256(b"raw bytes").hexdigest()
        assert photo.size == len(b"raw bytes")

    async def test_recolor_batch_reports_each_photo(self, service, fake_repo, stored) -> None:
        broken = fake_repo.add(storage_key="gone.jpg", url="https://cdn.test/gone.jpg")

        result = await service.recolor_photos([stored.id, broken.id])

        assert (result.succeeded, result.failed) == (1, 1)
        assert broken.id in result.errors
        assert stored.dominant_colors

    async def test_url_prefix_rewrite(self, service, fake_repo, stored) -> None:
        other = fake_repo.add(url="https://elsewhere/b.jpg")

        result = await service.batch_update_public_url_prefix("local", "https://cdn.test/", "https://img.example/")

        assert (result.succeeded, result.failed) == (1, 0)
        assert stored.url == "https://img.example/x/a.jpg"
        assert stored.thumbnail_url == "https://img.example/x/thumb-a.jpg"
        assert other.url == "https://elsewhere/b.jpg"

    async def test_url_prefix_rewrite_validates(self, service) -> None:
        with pytest.raises(ValidationError):
            await service.batch_update_public_url_prefix("local", "https://a/", "https://a/")

    async def test_find_duplicates(self, service, fake_repo) -> None:
        photo = fake_repo.add(url="u", file_hash="b" * 64)
        found = await service.find_duplicates(["b" * 64, "c" * 64])
        assert found == {"b" * 64: photo}
