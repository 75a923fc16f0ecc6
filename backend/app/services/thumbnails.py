import io
import logging

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from app.exceptions import ExtractionError

logger = logging.getLogger(__name__)

HIGH_BIT_MODES = ('I', 'I;16', 'I;16L', 'I;16B', 'I;16S', 'F', 'I;32', 'I;32L', 'I;32B')


class ThumbnailGenerator:

    @staticmethod
    def load_source_image(data: bytes) -> Image.Image:
        """
        Decode an image buffer into an upright RGB PIL Image.
        The EXIF orientation tag is applied so the result never needs rotating.
        """
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ExtractionError("thumbnail", f"not a readable image: {e}") from e

        img = ImageOps.exif_transpose(img)

        # 16/32-bit greyscale (some PNG/TIFF): linear stretch to 8 bits
        if img.mode in HIGH_BIT_MODES:
            arr = np.nan_to_num(np.array(img).astype(float))
            d_min, d_max = np.min(arr), np.max(arr)
            if d_max > d_min:
                arr = (arr - d_min) / (d_max - d_min)
            else:
                arr = arr - d_min
            img = Image.fromarray((np.clip(arr, 0, 1) * 255).astype(np.uint8), mode='L')

        if img.mode in ('RGBA', 'LA', 'PA') or (img.mode == 'P' and 'transparency' in img.info):
            # JPEG has no alpha: flatten onto white
            rgba = img.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            img = background
        elif img.mode != 'RGB':
            img = img.convert('RGB')

        logger.debug(f"Loaded image {img.width}x{img.height} for thumbnailing")
        return img

    @staticmethod
    def generate(data: bytes, max_size: int = 800, quality: int = 80) -> bytes:
        """
        Generates a JPEG thumbnail that fits inside max_size x max_size.

        Args:
            data: Source image bytes
            max_size: Longest edge bound in pixels; smaller images are not enlarged
            quality: JPEG quality
        """
        img = ThumbnailGenerator.load_source_image(data)
        img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

        # Strip metadata to avoid save errors (e.g. malformed XMP)
        img.info = {}
        out = io.BytesIO()
        img.save(out, "JPEG", quality=quality, optimize=True)
        return out.getvalue()


def generate_thumbnail(data: bytes, max_size: int = 800, quality: int = 80) -> bytes:
    return ThumbnailGenerator.generate(data, max_size=max_size, quality=quality)
