"""Tests for the S3-compatible (R2) provider with a mocked boto3 client."""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from app.exceptions import ConfigurationError, StorageDeleteError, StorageError, StorageNotFoundError
from app.storage.base import UploadDescriptor
from app.storage.config import S3StorageConfig
from app.storage.s3 import S3StorageProvider


def client_error(code: str, operation: str = "Op") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def make_provider(client=None, **config) -> S3StorageProvider:
    values = {
        "access_key_id": "key",
        "secret_access_key": "secret",
        "bucket": "gallery",
        "endpoint": "https://account.r2.cloudflarestorage.com",
        "public_url": "https://img.example.com/",
        "path": "photos",
    }
    values.update(config)
    return S3StorageProvider(S3StorageConfig(**values), client=client or MagicMock())


class TestConfig:
    @pytest.mark.parametrize("field,code", [
        ("access_key_id", "R2_ACCESS_KEY_MISSING"),
        ("secret_access_key", "R2_SECRET_KEY_MISSING"),
        ("bucket", "R2_BUCKET_MISSING"),
        ("endpoint", "R2_ENDPOINT_MISSING"),
        ("public_url", "R2_PUBLIC_URL_MISSING"),
    ])
    def test_every_field_required(self, field, code) -> None:
        with pytest.raises(ConfigurationError) as exc:
            make_provider(**{field: None}).validate_config()
        assert exc.value.code == code
        assert exc.value.field == field

    def test_url_uses_public_domain(self) -> None:
        assert make_provider().get_url("photos/a.jpg") == "https://img.example.com/photos/a.jpg"


class TestObjects:
    async def test_upload_puts_both_legs_under_path(self) -> None:
        client = MagicMock()
        provider = make_provider(client)
        original = UploadDescriptor(b"o", "a.jpg", "image/jpeg")

        result = await provider.upload(original, original.thumbnail(b"t"))

        assert result.key == "photos/a.jpg"
        assert result.thumbnail_url == "https://img.example.com/photos/thumb-a.jpg"
        keys = sorted(call.kwargs["Key"] for call in client.put_object.call_args_list)
        assert keys == ["photos/a.jpg", "photos/thumb-a.jpg"]
        assert all(call.kwargs["Bucket"] == "gallery" for call in client.put_object.call_args_list)

    async def test_failed_thumbnail_rolls_back_original(self) -> None:
        client = MagicMock()

        def put_object(**kwargs):
            if kwargs["Key"].endswith("thumb-a.jpg"):
                raise client_error("InternalError")

        client.put_object.side_effect = put_object
        provider = make_provider(client)
        original = UploadDescriptor(b"o", "a.jpg", "image/jpeg")

        with pytest.raises(StorageError) as exc:
            await provider.upload(original, original.thumbnail(b"t"))

        assert exc.value.retryable is True
        client.delete_object.assert_called_once_with(Bucket="gallery", Key="photos/a.jpg")

    async def test_download_reads_body(self) -> None:
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b"bytes")}
        assert await make_provider(client).download("photos/a.jpg") == b"bytes"

    async def test_download_missing_is_not_found(self) -> None:
        client = MagicMock()
        client.get_object.side_effect = client_error("NoSuchKey")
        with pytest.raises(StorageNotFoundError):
            await make_provider(client).download("photos/a.jpg")

    async def test_delete_absent_is_success(self) -> None:
        client = MagicMock()
        client.delete_object.side_effect = client_error("NoSuchKey")
        await make_provider(client).delete("photos/a.jpg")

    async def test_access_denied_is_not_retryable(self) -> None:
        client = MagicMock()
        client.delete_object.side_effect = client_error("AccessDenied")
        with pytest.raises(StorageDeleteError) as exc:
            await make_provider(client).delete("photos/a.jpg")
        assert exc.value.retryable is False

    async def test_connection_error_is_retryable(self) -> None:
        client = MagicMock()
        client.get_object.side_effect = EndpointConnectionError(endpoint_url="https://r2.test")
        with pytest.raises(StorageError) as exc:
            await make_provider(client).download("photos/a.jpg")
        assert exc.value.retryable is True

    async def test_move_confirms_copy_before_deleting(self) -> None:
        client = MagicMock()
        provider = make_provider(client)

        result = await provider.move("photos/a.jpg", "archive")

        client.copy_object.assert_called_once_with(
            Bucket="gallery", CopySource={"Bucket": "gallery", "Key": "photos/a.jpg"}, Key="archive/a.jpg"
        )
        client.head_object.assert_called_once_with(Bucket="gallery", Key="archive/a.jpg")
        client.delete_object.assert_called_once_with(Bucket="gallery", Key="photos/a.jpg")
        assert result.new_url == "https://img.example.com/archive/a.jpg"


class TestList:
    @staticmethod
    def page(keys, token=None):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        return {
            "Contents": [{"Key": k, "Size": 1, "LastModified": now} for k in keys],
            "IsTruncated": token is not None,
            "NextContinuationToken": token,
        }

    async def test_full_scan_drains_pages_and_ignores_prefix(self) -> None:
        client = MagicMock()
        client.list_objects_v2.side_effect = [self.page(["a.jpg"], "t1"), self.page(["photos/b.jpg"])]

        result = await make_provider(client).list(full_scan=True, prefix="photos")

        assert [f.key for f in result.files] == ["a.jpg", "photos/b.jpg"]
        assert result.has_more is False
        first, second = client.list_objects_v2.call_args_list
        assert "Prefix" not in first.kwargs
        assert second.kwargs["ContinuationToken"] == "t1"

    async def test_shallow_listing_uses_key_prefix_and_one_page(self) -> None:
        client = MagicMock()
        client.list_objects_v2.return_value = self.page(["photos/a.jpg"], "t1")

        result = await make_provider(client).list()

        assert client.list_objects_v2.call_count == 1
        assert client.list_objects_v2.call_args.kwargs["Prefix"] == "photos"
        assert result.cursor == "t1"
        assert result.has_more is True

    async def test_limit_caps_page_size(self) -> None:
        client = MagicMock()
        client.list_objects_v2.return_value = self.page(["a.jpg", "b.jpg"], "t2")

        result = await make_provider(client).list(full_scan=True, limit=2)

        assert client.list_objects_v2.call_args.kwargs["MaxKeys"] == 2
        assert len(result.files) == 2
        assert result.cursor == "t2"
