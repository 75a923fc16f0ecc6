"""Tests for the storage reconciliation scanner and its cleanup operations."""

import httpx
import pytest

from app.exceptions import ValidationError
from app.services.reconciliation import FileStatus, ReconciliationService, classify_row
from app.storage.config import GitObjectStorageConfig
from app.storage.github import GitObjectStorageProvider

from conftest import InMemoryStorageProvider


@pytest.fixture
def service(repo_scope, memory_provider) -> ReconciliationService:
    return ReconciliationService(repositories=repo_scope, provider_factory=lambda config: memory_provider)


@pytest.fixture
def seeded(fake_repo, memory_provider):
    """
    a: linked (original + thumbnail)   b: thumbnail missing
    c: original missing                d: both missing
    orphan.jpg / thumb-orphan.jpg: objects with no record
    """
    memory_provider.objects.update({
        "a.jpg": b"a", "thumb-a.jpg": b"ta",
        "b.jpg": b"b",
        "thumb-c.jpg": b"tc",
        "orphan.jpg": b"o", "thumb-orphan.jpg": b"to",
    })
    rows = {}
    for name in ("a", "b", "c", "d"):
        rows[name] = fake_repo.add(
            title=f"Photo {name.upper()}",
            storage_key=f"{name}.jpg",
            url=f"https://cdn.test/{name}.jpg",
            thumbnail_url=f"https://cdn.test/thumb-{name}.jpg",
        )
    return rows


class TestClassifyRow:
    @pytest.mark.parametrize("original,thumbnail,expected", [
        (True, True, FileStatus.LINKED),
        (False, False, FileStatus.MISSING),
        (False, True, FileStatus.MISSING_ORIGINAL),
        (True, False, FileStatus.MISSING_THUMBNAIL),
    ])
    def test_matrix(self, original, thumbnail, expected) -> None:
        assert classify_row(original, thumbnail) == expected


class TestScan:
    async def test_classifies_objects_and_rows(self, service, seeded) -> None:
        report = await service.scan_backend("local")

        assert report.object_statuses == {
            "a.jpg": FileStatus.LINKED,
            "thumb-a.jpg": FileStatus.LINKED,
            "b.jpg": FileStatus.LINKED,
            "thumb-c.jpg": FileStatus.LINKED,
            "orphan.jpg": FileStatus.ORPHAN,
            "thumb-orphan.jpg": FileStatus.ORPHAN,
        }
        assert report.row_statuses == {
            seeded["a"].id: FileStatus.LINKED,
            seeded["b"].id: FileStatus.MISSING_THUMBNAIL,
            seeded["c"].id: FileStatus.MISSING_ORIGINAL,
            seeded["d"].id: FileStatus.MISSING,
        }

    async def test_stats_count_listed_entries(self, service, seeded) -> None:
        report = await service.scan_backend("local")

        assert report.stats.to_dict() == {
            "total": 7,
            "linked": 2,
            "orphan": 2,
            "missing": 1,
            "missing_original": 1,
            "missing_thumbnail": 1,
        }
        assert report.stats.total == len(report.files)

    async def test_linked_thumbnails_are_folded_into_their_original(self, service, seeded) -> None:
        report = await service.scan_backend("local")

        listed = {(f.key, f.status) for f in report.files}
        assert ("thumb-a.jpg", FileStatus.LINKED) not in listed
        entry = next(f for f in report.files if f.key == "a.jpg")
        assert entry.has_thumbnail is True
        assert entry.photo_title == "Photo A"
        orphan_thumb = next(f for f in report.files if f.key == "thumb-orphan.jpg")
        assert orphan_thumb.is_thumbnail is True

    async def test_filters_do_not_change_stats(self, service, seeded) -> None:
        report = await service.scan_backend("local", status=FileStatus.ORPHAN, search="THUMB")

        assert [f.key for f in report.files] == ["thumb-orphan.jpg"]
        assert report.stats.orphan == 2

    async def test_search_matches_title(self, service, seeded) -> None:
        report = await service.scan_backend("local", search="photo d")
        assert [f.photo_id for f in report.files] == [seeded["d"].id]

    async def test_rows_of_other_backends_ignored(self, service, fake_repo, seeded) -> None:
        fake_repo.add(storage_provider="r2", storage_key="z.jpg", url="https://r2/z.jpg")
        report = await service.scan_backend("local")
        assert len(report.row_statuses) == 4

    async def test_empty_backend(self, service) -> None:
        report = await service.scan_backend("local")
        assert report.files == []
        assert report.stats.total == 0

    async def test_objects_outside_gallery_folders_are_ignored(self, repo_scope, fake_repo) -> None:
        provider = InMemoryStorageProvider(key_prefix="uploads")
        provider.objects.update({
            "README.md": b"readme",
            ".github/workflows/pages.yml": b"ci",
            "uploads/stray.jpg": b"s",
            "archive/moved.jpg": b"m",
            "archive/thumb-moved.jpg": b"tm",
            "archive/stray.jpg": b"s",
        })
        moved = fake_repo.add(
            storage_key="archive/moved.jpg",
            url="https://cdn.test/archive/moved.jpg",
            thumbnail_url="https://cdn.test/archive/thumb-moved.jpg",
        )
        service = ReconciliationService(repositories=repo_scope, provider_factory=lambda config: provider)

        report = await service.scan_backend("local")

        assert report.object_statuses == {
            "uploads/stray.jpg": FileStatus.ORPHAN,
            "archive/moved.jpg": FileStatus.LINKED,
            "archive/thumb-moved.jpg": FileStatus.LINKED,
            "archive/stray.jpg": FileStatus.ORPHAN,
        }
        assert report.row_statuses == {moved.id: FileStatus.LINKED}
        assert report.stats.orphan == 2


class TestCleanup:
    async def test_removes_key_and_derived_thumbnail(self, service, memory_provider, seeded) -> None:
        result = await service.cleanup_keys("local", ["orphan.jpg"])

        assert (result.deleted, result.failed) == (1, 0)
        assert "orphan.jpg" not in memory_provider.objects
        assert "thumb-orphan.jpg" not in memory_provider.objects

    async def test_absent_keys_count_as_deleted(self, service, seeded) -> None:
        result = await service.cleanup_keys("local", ["never-existed.jpg"])
        assert result.deleted == 1

    async def test_failures_reported_per_key(self, service, memory_provider, seeded) -> None:
        memory_provider.fail_remove.add("orphan.jpg")

        result = await service.cleanup_keys("local", ["orphan.jpg", "thumb-orphan.jpg"])

        assert (result.deleted, result.failed) == (1, 1)
        assert result.errors[0].startswith("orphan.jpg: ")

    async def test_requires_keys(self, service) -> None:
        with pytest.raises(ValidationError):
            await service.cleanup_keys("local", [])


class TestRemoveMissing:
    async def test_only_fully_missing_rows_removed(self, service, fake_repo, seeded) -> None:
        deleted = await service.remove_missing_photos(
            "local", [seeded["d"].id, seeded["b"].id, seeded["c"].id]
        )

        assert deleted == 1
        assert seeded["d"].id not in fake_repo.photos
        assert seeded["b"].id in fake_repo.photos
        assert seeded["c"].id in fake_repo.photos

    async def test_requires_ids(self, service) -> None:
        with pytest.raises(ValidationError):
            await service.remove_missing_photos("local", [])

    async def test_truncated_github_tree_keeps_stored_photos(self, repo_scope, fake_repo) -> None:
        stored = ["uploads/a.jpg", "uploads/b.jpg", "uploads/thumb-a.jpg", "uploads/thumb-b.jpg"]

        def handler(request):
            path = request.url.path
            if path.endswith("/git/trees/main"):
                # GitHub gave up part way through the tree
                return httpx.Response(200, json={
                    "truncated": True,
                    "tree": [{"path": key, "type": "blob", "size": 1} for key in stored[::2]],
                })
            if path == "/repos/octo/photos/contents/":
                return httpx.Response(200, json=[{"path": "uploads", "type": "dir", "size": 0}])
            return httpx.Response(200, json=[{"path": key, "type": "file", "size": 1} for key in stored])

        provider = GitObjectStorageProvider(
            GitObjectStorageConfig(token="ghp_test", repo="octo/photos"),
            api_url="https://api.github.test",
            transport=httpx.MockTransport(handler),
        )
        service = ReconciliationService(repositories=repo_scope, provider_factory=lambda config: provider)
        rows = {
            name: fake_repo.add(
                storage_provider="github",
                storage_key=f"uploads/{name}.jpg",
                url=f"https://cdn.test/uploads/{name}.jpg",
                thumbnail_url=f"https://cdn.test/uploads/thumb-{name}.jpg",
            )
            for name in ("a", "b", "gone")
        }

        deleted = await service.remove_missing_photos("github", [row.id for row in rows.values()])

        assert deleted == 1
        assert rows["a"].id in fake_repo.photos
        assert rows["b"].id in fake_repo.photos
        assert rows["gone"].id not in fake_repo.photos
