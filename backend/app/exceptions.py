"""
Gallery Exceptions
Error taxonomy shared by the storage providers, extractors and photo services.
The API layer maps each family to an HTTP status in app.main.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class GalleryError(Exception):
    """Base exception carrying a machine-readable code and details."""

    def __init__(self, message: str, code: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ConfigurationError(GalleryError):
    """Required storage setting missing or invalid. Never retried."""

    def __init__(self, message: str, code: str = "CONFIGURATION_INVALID", field: Optional[str] = None):
        super().__init__(message, code, {"field": field} if field else None)
        self.field = field


class StorageError(GalleryError):
    """Backend I/O failure (network, auth, rate limit, disk)."""

    def __init__(
        self,
        message: str,
        code: str = "STORAGE_ERROR",
        key: Optional[str] = None,
        retryable: bool = False,
    ):
        details: Dict[str, Any] = {"retryable": retryable}
        if key:
            details["key"] = key
        super().__init__(message, code, details)
        self.key = key
        self.retryable = retryable


class StorageNotFoundError(StorageError):
    """Object does not exist in the backend."""

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}", "STORAGE_NOT_FOUND", key=key)


class StorageDeleteError(StorageError):
    """One or more keys of a multi-key delete failed."""

    def __init__(self, failures: Dict[str, str]):
        keys = ", ".join(sorted(failures))
        super().__init__(f"Failed to delete: {keys}", "STORAGE_DELETE_FAILED")
        self.failures = failures
        self.details["failures"] = failures


class ExtractionError(GalleryError):
    """A derived-data extractor could not process the buffer."""

    def __init__(self, extractor: str, reason: str):
        super().__init__(
            f"{extractor} extraction failed: {reason}",
            "EXTRACTION_FAILED",
            {"extractor": extractor, "reason": reason},
        )
        self.extractor = extractor
        self.reason = reason


class PersistenceError(GalleryError):
    """Database write failed."""

    def __init__(self, message: str):
        super().__init__(message, "PERSISTENCE_FAILED")


@dataclass(frozen=True)
class FieldIssue:
    field: str
    message: str


class ValidationError(GalleryError):
    """Caller-supplied input is malformed; reports every offending field."""

    def __init__(self, issues: List[FieldIssue]):
        super().__init__(
            "Invalid request",
            "VALIDATION_FAILED",
            {"issues": [{"field": i.field, "message": i.message} for i in issues]},
        )
        self.issues = issues


class IngestionError(GalleryError):
    """Photo ingestion failed at a given pipeline stage."""

    def __init__(self, stage: str, reason: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Ingestion failed while {stage.lower()}: {reason}",
            "INGESTION_FAILED",
            {"stage": stage, "reason": reason},
        )
        self.stage = stage
        self.reason = reason
        self.cause = cause


class PhotoNotFoundError(GalleryError):
    def __init__(self, photo_id: str):
        super().__init__(f"Photo not found: {photo_id}", "PHOTO_NOT_FOUND", {"photo_id": photo_id})
        self.photo_id = photo_id
