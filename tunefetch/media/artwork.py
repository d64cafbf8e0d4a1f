"""
Cover art preparation: format detection, JPEG conversion and downscaling
so the image fits the target container's picture block.
"""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from tunefetch.exceptions import UnsupportedTagFormat

log = logging.getLogger(__name__)

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def detect_mime(data: bytes) -> Optional[str]:
    if data.startswith(JPEG_MAGIC):
        return "image/jpeg"
    if data.startswith(PNG_MAGIC):
        return "image/png"
    return None


def _reencode(data: bytes, max_dimension: int, quality: int) -> bytes:
    with Image.open(BytesIO(data)) as img:
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        if img.width > max_dimension or img.height > max_dimension:
            img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        output = BytesIO()
        img.save(output, format="JPEG", quality=quality, optimize=True)
        return output.getvalue()


def prepare_cover(
    data: bytes, max_bytes: int, max_dimension: int = 1400
) -> tuple[bytes, str]:
    """
    Returns (image bytes, mime type) ready for embedding.

    JPEG and PNG within ``max_bytes`` pass through untouched. Anything else
    is re-encoded as JPEG, shrinking dimensions and quality until it fits.

    Raises:
        UnsupportedTagFormat: The image is unreadable or cannot be made small enough.
    """
    mime = detect_mime(data)
    if mime and len(data) <= max_bytes:
        return data, mime

    dimension = max_dimension
    for quality in (90, 80, 70):
        try:
            encoded = _reencode(data, dimension, quality)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise UnsupportedTagFormat(f"Cover art is not a readable image: {e}") from e
        if len(encoded) <= max_bytes:
            log.debug(
                f"Re-encoded cover art {len(data)} -> {len(encoded)} bytes "
                f"(max {dimension}px, q={quality})"
            )
            return encoded, "image/jpeg"
        dimension = max(300, dimension // 2)

    raise UnsupportedTagFormat(
        f"Cover art is larger than {max_bytes} bytes even after re-encoding"
    )
