"""
Image probing with Pillow: dimensions, format, transparency.
"""

import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .content_store import sniff_extension
from .types import FileMetadata

logger = logging.getLogger(__name__)

_ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}

# Pillow format name -> stored format label
_FORMAT_LABELS = {
    "PNG": "png",
    "JPEG": "jpg",
    "WEBP": "webp",
    "GIF": "gif",
}


def probe_image(data: bytes, generation_time: Optional[float] = None) -> FileMetadata:
    """
    Describe encoded image bytes.

    Bytes Pillow cannot decode still get a size and a format guessed from
    their leading bytes; width and height are left at 0.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            fmt = _FORMAT_LABELS.get(img.format or "", (img.format or "").lower())
            has_alpha = img.mode in _ALPHA_MODES or "transparency" in img.info
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Could not decode image (%d bytes): %s", len(data), e)
        return FileMetadata(
            size=len(data),
            format=sniff_extension(data),
            generation_time=generation_time,
        )

    return FileMetadata(
        size=len(data),
        width=width,
        height=height,
        format=fmt or sniff_extension(data),
        generation_time=generation_time,
        has_alpha=has_alpha,
    )
