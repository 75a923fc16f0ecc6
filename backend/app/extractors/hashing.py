"""
Content Hash
SHA-256 of the raw upload bytes; the deduplication key for photos.
"""

import hashlib

CHUNK_SIZE = 64 * 1024


def compute_content_hash(data: bytes) -> str:
    sha256 = hashlib.sha256()
    view = memoryview(data)
    for offset in range(0, len(view), CHUNK_SIZE):
        sha256.update(view[offset:offset + CHUNK_SIZE])
    return sha256.hexdigest()
