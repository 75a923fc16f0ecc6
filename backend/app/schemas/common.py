from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class BaseResponse(BaseModel):
    """Base response model."""
    success: bool = True


class DataResponse(BaseResponse, Generic[T]):
    """Standard envelope: {"success": true, "data": ...}."""
    data: T


class ErrorResponse(BaseModel):
    error: str
    code: str
    details: Dict[str, Any] = {}


class BatchResultSchema(BaseModel):
    succeeded: int
    failed: int
    errors: Dict[str, str] = {}


class TaskQueuedResponse(BaseResponse):
    task_id: str
    progress_key: Optional[str] = None
    items: Optional[List[str]] = None
