"""Optional screenshot compression."""

from __future__ import annotations

from io import BytesIO
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from flakeboard.logging import get_logger

logger = get_logger(__name__)

JPEG_CONTENT_TYPE = "image/jpeg"
PNG_CONTENT_TYPE = "image/png"


def content_type_for(path: str) -> str:
    """Guess a screenshot content type from its extension."""
    return JPEG_CONTENT_TYPE if path.lower().endswith((".jpg", ".jpeg")) else PNG_CONTENT_TYPE


class ImageCompressor(Protocol):
    """Re-encodes PNG screenshots before upload."""

    def compress(self, data: bytes) -> bytes | None:
        """Return JPEG bytes, or None to keep the original image."""
        ...


class PillowJpegCompressor:
    """Convert screenshots to JPEG with Pillow."""

    def __init__(self, quality: int = 80):
        if not 1 <= quality <= 95:
            raise ValueError(f"JPEG quality must be between 1 and 95, got {quality}")
        self.quality = quality

    def compress(self, data: bytes) -> bytes | None:
        try:
            image = Image.open(BytesIO(data)).convert("RGB")
            output = BytesIO()
            image.save(output, format="JPEG", quality=self.quality, optimize=True)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("image_compression_failed", error=str(e))
            return None

        return output.getvalue()
