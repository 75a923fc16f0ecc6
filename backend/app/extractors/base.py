"""
Base Extractor
Abstract base class for extractors that derive data from an in-memory image buffer.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from app.exceptions import ExtractionError


class BaseExtractor(ABC):
    """
    Abstract base class for buffer extractors.
    Subclasses set `name` and implement extract().
    """

    name = "base"

    def __init__(self, data: bytes):
        if not data:
            raise ExtractionError(self.name, "empty buffer")
        self.data = data

    @abstractmethod
    def extract(self) -> Any:
        """Derive a value from self.data."""
        pass

    def fail(self, reason: str) -> ExtractionError:
        return ExtractionError(self.name, reason)

    @staticmethod
    def _parse_float(val: Any) -> Optional[float]:
        """Safely parse value to float, returns None if not a number."""
        if val is None:
            return None
        try:
            # exifread Ratio and Pillow IFDRational both expose num/den
            if hasattr(val, "num") and hasattr(val, "den"):
                return float(val.num) / float(val.den) if val.den else None
            if isinstance(val, tuple) and len(val) == 2:
                return float(val[0]) / float(val[1]) if val[1] else None
            return float(val)
        except (ValueError, TypeError, ZeroDivisionError):
            return None

    @staticmethod
    def _parse_int(val: Any) -> Optional[int]:
        """Safely parse value to int, returns None if not a number."""
        if val is None:
            return None
        try:
            # Handle float strings being converted to int (e.g. "1.0" -> 1)
            return int(float(val))
        except (ValueError, TypeError):
            return None
