"""
S3-Compatible Object Storage (Cloudflare R2)
Uses boto3 (sync) via asyncio.to_thread. Objects are served from the
configured public bucket URL or custom domain.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.exceptions import ConfigurationError, StorageError, StorageNotFoundError
from app.storage.base import ListResult, StorageFile, StorageProvider, join_key
from app.storage.config import R2, S3StorageConfig

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
ABSENT_ON_DELETE_CODES = NOT_FOUND_CODES | {"NoSuchBucket"}
FATAL_CODES = {"AccessDenied", "InvalidBucketName", "NoSuchBucket", "InvalidArgument"}
PAGE_SIZE = 1000

REQUIRED_FIELDS = (
    ("access_key_id", "R2 Access Key ID is required", "R2_ACCESS_KEY_MISSING"),
    ("secret_access_key", "R2 Secret Access Key is required", "R2_SECRET_KEY_MISSING"),
    ("bucket", "R2 Bucket name is required", "R2_BUCKET_MISSING"),
    ("endpoint", "R2 Endpoint is required", "R2_ENDPOINT_MISSING"),
    ("public_url", "R2 Public URL is required for serving files", "R2_PUBLIC_URL_MISSING"),
)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3StorageProvider(StorageProvider):
    """Storage backed by an S3-compatible bucket."""

    provider_id = R2
    concurrent_uploads = True

    def __init__(self, config: S3StorageConfig, client: Any = None):
        super().__init__(config)
        self._client = client

    def validate_config(self) -> None:
        for field_name, message, code in REQUIRED_FIELDS:
            if not getattr(self.config, field_name):
                raise ConfigurationError(message, code, field=field_name)

    @property
    def client(self):
        """boto3 client, created on first use so construction does no I/O."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name="auto",
                endpoint_url=self.config.endpoint,
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                config=BotoConfig(retries={"max_attempts": 3, "mode": "standard"}),
            )
        return self._client

    @property
    def bucket(self) -> str:
        return self.config.bucket

    @property
    def key_prefix(self) -> str:
        return self.config.path or ""

    def get_url(self, key: str) -> str:
        base_url = (self.config.public_url or "").rstrip("/")
        return f"{base_url}/{join_key(key)}"

    def _map_error(self, error: Exception, key: Optional[str], code: str) -> StorageError:
        if isinstance(error, ClientError):
            aws_code = _error_code(error)
            if aws_code in NOT_FOUND_CODES:
                return StorageNotFoundError(key or "")
            return StorageError(
                f"R2 {aws_code or 'error'}: {error}",
                code,
                key=key,
                retryable=aws_code not in FATAL_CODES,
            )
        if isinstance(error, BotoCoreError):
            return StorageError(f"R2 connection error: {error}", code, key=key, retryable=True)
        return StorageError(f"R2 error: {error}", code, key=key)

    async def _call(self, operation: str, key: Optional[str], code: str, **kwargs) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._map_error(e, key, code) from e

    # =========================================================================
    # Primitives
    # =========================================================================

    async def _put(self, key: str, data: bytes, content_type: str) -> None:
        await self._call(
            "put_object", key, "R2_UPLOAD_FAILED",
            Bucket=self.bucket, Key=key, Body=data, ContentType=content_type,
        )

    async def _get(self, key: str) -> bytes:
        def _read() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except (ClientError, BotoCoreError) as e:
            raise self._map_error(e, key, "R2_DOWNLOAD_FAILED") from e

    async def _remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in ABSENT_ON_DELETE_CODES:
                logger.info(f"R2 object already absent: {key}")
                return
            raise self._map_error(e, key, "R2_DELETE_FAILED") from e
        except BotoCoreError as e:
            raise self._map_error(e, key, "R2_DELETE_FAILED") from e

    async def _copy(self, source_key: str, dest_key: str) -> None:
        await self._call(
            "copy_object", source_key, "R2_COPY_FAILED",
            Bucket=self.bucket,
            CopySource={"Bucket": self.bucket, "Key": source_key},
            Key=dest_key,
        )
        # Confirm the new object is readable before the caller removes the old one
        await self._call("head_object", dest_key, "R2_COPY_FAILED", Bucket=self.bucket, Key=dest_key)

    async def _list(
        self,
        full_scan: bool,
        prefix: Optional[str],
        limit: Optional[int],
        cursor: Optional[str],
    ) -> ListResult:
        params: Dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": PAGE_SIZE}
        scan_prefix = None if full_scan else (prefix or self.key_prefix or None)
        if scan_prefix:
            params["Prefix"] = scan_prefix

        files: List[StorageFile] = []
        token = cursor
        while True:
            if token:
                params["ContinuationToken"] = token
            if limit:
                params["MaxKeys"] = min(limit - len(files), PAGE_SIZE)
            response = await self._call("list_objects_v2", scan_prefix, "R2_LIST_FAILED", **params)
            for obj in response.get("Contents", []):
                files.append(StorageFile(
                    key=obj["Key"],
                    size=obj.get("Size", 0),
                    last_modified=obj.get("LastModified") or datetime.now(timezone.utc),
                    url=self.get_url(obj["Key"]),
                ))

            token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
            if not token:
                break
            # A shallow listing returns one page; a full scan drains the bucket
            if not full_scan or (limit and len(files) >= limit):
                break

        return ListResult(files=files, cursor=token, has_more=token is not None)
