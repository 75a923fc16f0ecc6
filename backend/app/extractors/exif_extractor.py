"""
EXIF Extractor
Extracts capture metadata and pixel dimensions from an uploaded image buffer.
Uses ExifRead first and Pillow's EXIF reader as a fallback. Missing metadata
is not an error; fields are left as None. A buffer Pillow cannot decode is.
"""

import io
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import exifread
from PIL import ExifTags, Image, UnidentifiedImageError

from app.extractors.base import BaseExtractor

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# Pillow tag ids
EXIF_IFD = 0x8769
GPS_IFD = 0x8825

# Tags not worth persisting (binary blobs)
SKIPPED_TAG_PREFIXES = ("JPEGThumbnail", "TIFFThumbnail", "Thumbnail ", "EXIF MakerNote", "MakerNote ")


@dataclass
class PhotoMetadata:
    width: int = 0
    height: int = 0
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    focal_length: Optional[str] = None
    aperture: Optional[str] = None
    shutter_speed: Optional[str] = None
    iso: Optional[int] = None
    taken_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    orientation: Optional[int] = None
    software: Optional[str] = None
    exif_raw: Dict[str, Any] = field(default_factory=dict)

    def as_photo_fields(self) -> Dict[str, Any]:
        """Column values for a Photo row."""
        values = asdict(self)
        values["exif_raw"] = self.exif_raw or None
        return values


def _format_number(value: float) -> str:
    return f"{round(value, 1):g}"


def format_focal_length(value: Optional[float]) -> Optional[str]:
    if not value:
        return None
    return f"{_format_number(value)}mm"


def format_aperture(value: Optional[float]) -> Optional[str]:
    if not value:
        return None
    return f"f/{_format_number(value)}"


def format_shutter_speed(seconds: Optional[float]) -> Optional[str]:
    """1/250s for fractions of a second, 2s or 2.5s for long exposures."""
    if not seconds or seconds <= 0:
        return None
    if seconds >= 1:
        return f"{_format_number(seconds)}s"
    return f"1/{round(1 / seconds)}s"


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip().rstrip("\x00"), DATE_FORMAT)
    except ValueError:
        return None


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).replace("\x00", "").strip()
    return text or None


class ExifExtractor(BaseExtractor):
    """Extractor for consumer camera images (JPEG, TIFF, PNG, WebP)."""

    name = "metadata"

    def extract(self) -> PhotoMetadata:
        metadata = PhotoMetadata()

        # Method 1: ExifRead
        try:
            tags = exifread.process_file(io.BytesIO(self.data), details=False)
        except Exception as e:
            logger.debug(f"ExifRead could not parse buffer: {e}")
            tags = {}
        if tags:
            self._apply_exifread(metadata, tags)

        # Method 2: Pillow for dimensions (the buffer must decode) and missing fields
        try:
            with Image.open(io.BytesIO(self.data)) as img:
                metadata.width, metadata.height = img.size
                pil_exif = img.getexif()
                if pil_exif:
                    self._apply_pillow(metadata, pil_exif)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise self.fail(f"not a readable image: {e}") from e

        return metadata

    # -------------------------------------------------------------------------
    # ExifRead
    # -------------------------------------------------------------------------

    def _apply_exifread(self, metadata: PhotoMetadata, tags: Dict[str, Any]) -> None:
        def first(name: str) -> Any:
            tag = tags.get(name)
            if tag is None:
                return None
            values = getattr(tag, "values", None)
            if isinstance(values, (list, tuple)):
                return values[0] if values else None
            return values if values is not None else tag

        metadata.camera_make = _clean_str(tags.get("Image Make"))
        metadata.camera_model = _clean_str(tags.get("Image Model"))
        metadata.lens_model = _clean_str(tags.get("EXIF LensModel"))
        metadata.software = _clean_str(tags.get("Image Software"))

        metadata.focal_length = format_focal_length(self._parse_float(first("EXIF FocalLength")))
        metadata.aperture = format_aperture(self._parse_float(first("EXIF FNumber")))
        metadata.shutter_speed = format_shutter_speed(self._parse_float(first("EXIF ExposureTime")))
        metadata.iso = self._parse_int(first("EXIF ISOSpeedRatings"))
        metadata.orientation = self._parse_int(first("Image Orientation"))

        date_tag = tags.get("EXIF DateTimeOriginal") or tags.get("Image DateTime")
        metadata.taken_at = _parse_date(date_tag)

        lat_tag = tags.get("GPS GPSLatitude")
        lon_tag = tags.get("GPS GPSLongitude")
        if lat_tag is not None and lon_tag is not None:
            metadata.latitude = self._to_degrees(lat_tag.values, str(tags.get("GPS GPSLatitudeRef", "N")))
            metadata.longitude = self._to_degrees(lon_tag.values, str(tags.get("GPS GPSLongitudeRef", "E")))

        metadata.exif_raw = {
            name: self._make_serializable(value)
            for name, value in tags.items()
            if not name.startswith(SKIPPED_TAG_PREFIXES)
        }

    # -------------------------------------------------------------------------
    # Pillow
    # -------------------------------------------------------------------------

    def _apply_pillow(self, metadata: PhotoMetadata, exif: Image.Exif) -> None:
        sub = exif.get_ifd(EXIF_IFD)
        gps = exif.get_ifd(GPS_IFD)
        tag_ids = {name: tag_id for tag_id, name in ExifTags.TAGS.items()}

        def lookup(name: str) -> Any:
            tag_id = tag_ids.get(name)
            if tag_id is None:
                return None
            value = sub.get(tag_id)
            return value if value is not None else exif.get(tag_id)

        if metadata.camera_make is None:
            metadata.camera_make = _clean_str(lookup("Make"))
        if metadata.camera_model is None:
            metadata.camera_model = _clean_str(lookup("Model"))
        if metadata.lens_model is None:
            metadata.lens_model = _clean_str(lookup("LensModel"))
        if metadata.software is None:
            metadata.software = _clean_str(lookup("Software"))
        if metadata.focal_length is None:
            metadata.focal_length = format_focal_length(self._parse_float(lookup("FocalLength")))
        if metadata.aperture is None:
            metadata.aperture = format_aperture(self._parse_float(lookup("FNumber")))
        if metadata.shutter_speed is None:
            metadata.shutter_speed = format_shutter_speed(self._parse_float(lookup("ExposureTime")))
        if metadata.iso is None:
            iso = lookup("ISOSpeedRatings")
            metadata.iso = self._parse_int(iso[0] if isinstance(iso, tuple) else iso)
        if metadata.orientation is None:
            metadata.orientation = self._parse_int(lookup("Orientation"))
        if metadata.taken_at is None:
            metadata.taken_at = _parse_date(lookup("DateTimeOriginal") or lookup("DateTime"))

        if metadata.latitude is None and gps.get(2) and gps.get(4):
            metadata.latitude = self._to_degrees(gps[2], gps.get(1, "N"))
            metadata.longitude = self._to_degrees(gps[4], gps.get(3, "E"))

        if not metadata.exif_raw:
            raw = {f"PIL:{ExifTags.TAGS.get(k, k)}": self._make_serializable(v) for k, v in exif.items()}
            raw.update({f"PIL:{ExifTags.TAGS.get(k, k)}": self._make_serializable(v) for k, v in sub.items()})
            metadata.exif_raw = raw

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _to_degrees(self, values: List[Any], ref: Any) -> Optional[float]:
        parts = [self._parse_float(v) for v in list(values)[:3]]
        if len(parts) < 3 or any(p is None for p in parts):
            return None
        degrees = parts[0] + parts[1] / 60 + parts[2] / 3600
        if _clean_str(ref) in ("S", "W"):
            degrees = -degrees
        return round(degrees, 7)

    def _make_serializable(self, obj: Any) -> Any:
        """Helper to ensure EXIF values are JSON serializable."""
        if isinstance(obj, str):
            return obj.replace("\x00", "")
        if isinstance(obj, (int, bool, type(None))):
            return obj
        if isinstance(obj, float):
            return obj if obj == obj else None
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace").replace("\x00", "")
        if isinstance(obj, (list, tuple)):
            return [self._make_serializable(i) for i in obj]
        if isinstance(obj, dict):
            return {str(k): self._make_serializable(v) for k, v in obj.items()}

        # ExifRead IfdTag
        if hasattr(obj, "values") and hasattr(obj, "printable"):
            if isinstance(obj.values, (list, tuple)):
                if len(obj.values) == 1:
                    return self._make_serializable(obj.values[0])
                if len(obj.values) <= 16:
                    return [self._make_serializable(v) for v in obj.values]
            return str(obj)

        number = self._parse_float(obj)
        if number is not None:
            return number

        # Fallback to string representation
        return str(obj)


def extract_metadata(data: bytes) -> PhotoMetadata:
    return ExifExtractor(data).extract()
