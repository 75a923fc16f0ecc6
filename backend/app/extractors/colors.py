"""
Dominant Colour Analyzer
Buckets the pixels of a down-sampled copy of the image and reports the
average colour of the most populated buckets as #rrggbb strings.
"""

import io
import logging
from typing import List

import numpy as np
from PIL import Image, ImageOps

from app.extractors.base import BaseExtractor

logger = logging.getLogger(__name__)

SAMPLE_SIZE = (100, 100)
BUCKET_BITS = 3  # 8 levels per channel, 512 buckets
MIN_SHARE = 0.01


class DominantColorExtractor(BaseExtractor):
    name = "colors"

    def __init__(self, data: bytes, count: int = 5):
        super().__init__(data)
        self.count = count

    def extract(self) -> List[str]:
        try:
            with Image.open(io.BytesIO(self.data)) as img:
                img = ImageOps.exif_transpose(img)
                if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
                    rgba = img.convert("RGBA")
                    rgba.thumbnail(SAMPLE_SIZE)
                    pixels = np.asarray(rgba).reshape(-1, 4)
                    pixels = pixels[pixels[:, 3] > 0][:, :3]
                else:
                    rgb = img.convert("RGB")
                    rgb.thumbnail(SAMPLE_SIZE)
                    pixels = np.asarray(rgb).reshape(-1, 3)
        except Exception as e:
            raise self.fail(str(e)) from e

        if pixels.size == 0 or self.count <= 0:
            return []

        shift = 8 - BUCKET_BITS
        buckets = pixels.astype(np.int32) >> shift
        bucket_ids = (buckets[:, 0] << (2 * BUCKET_BITS)) | (buckets[:, 1] << BUCKET_BITS) | buckets[:, 2]
        counts = np.bincount(bucket_ids)
        total = len(bucket_ids)

        colors = []
        for bucket_id in np.argsort(counts)[::-1][: self.count]:
            if counts[bucket_id] / total < MIN_SHARE:
                break
            mean = pixels[bucket_ids == bucket_id].mean(axis=0)
            r, g, b = (int(round(c)) for c in mean)
            colors.append(f"#{r:02x}{g:02x}{b:02x}")
        return colors


def extract_dominant_colors(data: bytes, count: int = 5) -> List[str]:
    return DominantColorExtractor(data, count).extract()
