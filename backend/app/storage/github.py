"""
GitHub Repository Storage
Stores objects as files in a GitHub repository through the REST contents API
and serves them via raw.githubusercontent.com, the jsDelivr CDN or GitHub Pages.

Every write is a commit on the configured branch, so writes are issued one at
a time. Rate limits and commit conflicts are retried with backoff and, if they
persist, surfaced as retryable StorageErrors.
"""

import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from app.exceptions import ConfigurationError, StorageError, StorageNotFoundError
from app.storage.base import ListResult, StorageFile, StorageProvider, join_key, paginate, split_key
from app.storage.config import GITHUB, GitObjectStorageConfig

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
RETRYABLE_STATUSES = {409, 429, 500, 502, 503, 504}


class RetryableResponse(Exception):
    """A response worth another attempt (rate limit, conflict, server error)."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class GitObjectStorageProvider(StorageProvider):
    """Storage backed by a GitHub repository branch."""

    provider_id = GITHUB
    concurrent_uploads = False

    max_attempts = 3
    retry_delay = 1.0

    def __init__(
        self,
        config: GitObjectStorageConfig,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    # =========================================================================
    # Configuration
    # =========================================================================

    def validate_config(self) -> None:
        if not self.config.token:
            raise ConfigurationError("GitHub token is required", "GITHUB_TOKEN_MISSING", field="token")

        repo = self.config.repo or ""
        owner, _, name = repo.partition("/")
        if not owner or not name or "/" in name:
            raise ConfigurationError(
                'GitHub repo must be in format "owner/repo"', "GITHUB_REPO_INVALID", field="repo"
            )

        if self.config.access_method == "pages" and not self.config.pages_url:
            raise ConfigurationError(
                "GitHub Pages URL is required when using pages access method",
                "GITHUB_PAGES_URL_MISSING",
                field="pages_url",
            )

    @property
    def owner_repo(self) -> Tuple[str, str]:
        owner, _, name = (self.config.repo or "").partition("/")
        return owner, name

    @property
    def key_prefix(self) -> str:
        return self.config.path or "uploads"

    @property
    def branch(self) -> str:
        return self.config.branch or "main"

    def get_url(self, key: str) -> str:
        owner, repo = self.owner_repo
        key = join_key(key)
        if self.config.access_method == "raw":
            return f"https://raw.githubusercontent.com/{owner}/{repo}/{self.branch}/{key}"
        if self.config.access_method == "pages":
            return f"{self.config.pages_url.rstrip('/')}/{key}"
        return f"https://cdn.jsdelivr.net/gh/{owner}/{repo}@{self.branch}/{key}"

    # =========================================================================
    # HTTP
    # =========================================================================

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _contents_url(self, key: str) -> str:
        owner, repo = self.owner_repo
        return f"/repos/{owner}/{repo}/contents/{quote(join_key(key))}"

    @staticmethod
    def _is_retryable(response: httpx.Response) -> bool:
        if response.status_code in RETRYABLE_STATUSES:
            return True
        return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"

    def retry_delay_for(self, error: BaseException, attempt_number: int) -> float:
        """Seconds to wait before the next attempt; Retry-After wins over backoff."""
        response = getattr(error, "response", None)
        if response is not None:
            retry_after = response.headers.get("retry-after")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        return self.retry_delay * (2 ** (attempt_number - 1))

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.retry_delay_for(retry_state.outcome.exception(), retry_state.attempt_number)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            f"GitHub request failed (attempt {retry_state.attempt_number}): "
            f"{retry_state.outcome.exception()}"
        )

    async def _send(self, method: str, url: str, headers: Dict[str, str], **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, url, **kwargs)
        if self._is_retryable(response):
            raise RetryableResponse(response)
        return response

    async def _request(self, method: str, url: str, key: Optional[str] = None, **kwargs) -> httpx.Response:
        """Issue one API call, retrying rate limits, conflicts and server errors."""
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type((httpx.TransportError, RetryableResponse)),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            return await retrying(self._send, method, url, headers, **kwargs)
        except httpx.TransportError as e:
            raise StorageError(
                f"GitHub request failed: {e}", "GITHUB_NETWORK_ERROR", key=key, retryable=True
            ) from e
        except RetryableResponse as e:
            response = e.response
            raise StorageError(
                f"GitHub request kept failing with HTTP {response.status_code}: {self._message(response)}",
                "GITHUB_RATE_LIMITED" if response.status_code in (403, 429) else "GITHUB_UNAVAILABLE",
                key=key,
                retryable=True,
            ) from e

    @staticmethod
    def _message(response: httpx.Response) -> str:
        try:
            return response.json().get("message", response.text)
        except ValueError:
            return response.text

    def _raise_for_status(self, response: httpx.Response, key: Optional[str], code: str) -> None:
        if response.status_code == 404:
            raise StorageNotFoundError(key or response.request.url.path)
        if response.status_code >= 400:
            raise StorageError(
                f"GitHub returned HTTP {response.status_code}: {self._message(response)}",
                code,
                key=key,
            )

    async def _get_sha(self, key: str) -> Optional[str]:
        response = await self._request("GET", self._contents_url(key), key=key, params={"ref": self.branch})
        if response.status_code == 404:
            return None
        self._raise_for_status(response, key, "GITHUB_LOOKUP_FAILED")
        data = response.json()
        if isinstance(data, list):
            raise StorageError(f"Path is a directory, not a file: {key}", "GITHUB_PATH_CONFLICT", key=key)
        return data.get("sha")

    # =========================================================================
    # Primitives
    # =========================================================================

    async def _put(self, key: str, data: bytes, content_type: str) -> None:
        sha = await self._get_sha(key)
        body: Dict[str, Any] = {
            "message": f"Upload: {split_key(key)[1]}",
            "content": base64.b64encode(data).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha

        response = await self._request("PUT", self._contents_url(key), key=key, json=body)
        if response.status_code == 422 and "subdirectory" in self._message(response):
            raise StorageError(
                f"A file in the repository blocks the directory for {key}",
                "GITHUB_PATH_CONFLICT",
                key=key,
            )
        self._raise_for_status(response, key, "GITHUB_UPLOAD_FAILED")
        logger.debug(f"GitHub committed {key} ({len(data)} bytes)")

    async def _get(self, key: str) -> bytes:
        response = await self._request(
            "GET",
            self._contents_url(key),
            key=key,
            params={"ref": self.branch},
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        self._raise_for_status(response, key, "GITHUB_DOWNLOAD_FAILED")
        return response.content

    async def _remove(self, key: str) -> None:
        sha = await self._get_sha(key)
        if sha is None:
            logger.info(f"GitHub object already absent: {key}")
            return
        response = await self._request(
            "DELETE",
            self._contents_url(key),
            key=key,
            json={"message": f"Delete: {key}", "sha": sha, "branch": self.branch},
        )
        if response.status_code == 404:
            return
        self._raise_for_status(response, key, "GITHUB_DELETE_FAILED")

    async def _copy(self, source_key: str, dest_key: str) -> None:
        data = await self._get(source_key)
        await self._put(dest_key, data, "application/octet-stream")

    async def _list(
        self,
        full_scan: bool,
        prefix: Optional[str],
        limit: Optional[int],
        cursor: Optional[str],
    ) -> ListResult:
        if full_scan:
            files = await self._list_tree(prefix)
        else:
            files = await self._list_directory(prefix or self.key_prefix)
        files.sort(key=lambda f: f.key)
        return paginate(files, limit, cursor)

    async def _list_tree(self, root: Optional[str] = None) -> List[StorageFile]:
        """
        Every blob on the branch (or under root), via one recursive git tree read.
        GitHub cuts very large trees short; the contents API is then walked
        directory by directory so the listing stays complete.
        """
        owner, repo = self.owner_repo
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/trees/{quote(self.branch)}",
            params={"recursive": "1"},
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, None, "GITHUB_LIST_FAILED")
        data = response.json()
        if data.get("truncated"):
            logger.warning(
                f"GitHub tree listing for {owner}/{repo}@{self.branch} was truncated; "
                f"walking {root or 'the repository root'} through the contents API"
            )
            return await self._walk_directory(root or "")

        base = f"{join_key(root)}/" if root else ""
        return [
            self._as_file(entry)
            for entry in data.get("tree", [])
            if entry.get("type") == "blob" and entry["path"].startswith(base)
        ]

    async def _walk_directory(self, path: str) -> List[StorageFile]:
        files: List[StorageFile] = []
        for item in await self._directory_items(path):
            if item.get("type") == "file":
                files.append(self._as_file(item))
            elif item.get("type") == "dir":
                files.extend(await self._walk_directory(item["path"]))
        return files

    async def _list_directory(self, path: str) -> List[StorageFile]:
        return [self._as_file(item) for item in await self._directory_items(path) if item.get("type") == "file"]

    async def _directory_items(self, path: str) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET", self._contents_url(path), key=path or None, params={"ref": self.branch}
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, path, "GITHUB_LIST_FAILED")
        data = response.json()
        return data if isinstance(data, list) else [data]

    def _as_file(self, item: Dict[str, Any]) -> StorageFile:
        # Neither listing API carries timestamps
        return StorageFile(
            key=item["path"],
            size=item.get("size", 0),
            last_modified=datetime.now(timezone.utc),
            url=self.get_url(item["path"]),
        )
