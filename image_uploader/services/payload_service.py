"""Payload Service for serializing rasters to the upload format.

Every payload is WebP. This is the only stage that fixes the MIME type and
byte size sent with the upload request.
"""

import logging
from io import BytesIO
from pathlib import Path
from typing import Optional

from image_uploader.config import settings
from image_uploader.exceptions import EncodeError
from image_uploader.models.media import RasterImage, SourceFile


logger = logging.getLogger(__name__)


OUTPUT_FORMAT = "WEBP"
OUTPUT_MIME_TYPE = "image/webp"
OUTPUT_EXTENSION = ".webp"


def webp_name(name: str) -> str:
    """Replace a file name's extension with ``.webp``."""
    stem = Path(name).stem or "image"
    return f"{stem}{OUTPUT_EXTENSION}"


class PayloadService:
    """Service encoding rasters into named WebP payloads."""

    def __init__(self, quality: Optional[int] = None):
        """
        Initialize the payload service.

        Args:
            quality: WebP quality (1-100). Defaults to settings.
        """
        self.quality = quality if quality is not None else settings.IMAGE_OUTPUT_QUALITY
        if not 1 <= self.quality <= 100:
            raise ValueError(f"Quality must be 1-100, got {self.quality}")

    def encode(self, raster: RasterImage, name: str) -> SourceFile:
        """
        Serialize a raster and wrap it as a SourceFile.

        Args:
            raster: Raster to encode
            name: Display name for the resulting file

        Returns:
            SourceFile: WebP payload with its final MIME type and size

        Raises:
            EncodeError: If the raster is released, empty, or cannot be encoded
        """
        if not name or not name.strip():
            raise EncodeError("Payload name must be a non-empty string")

        if raster.released:
            raise EncodeError("Cannot encode a released raster")

        width, height = raster.size
        if width <= 0 or height <= 0:
            raise EncodeError(f"Cannot encode zero-area raster: {width}x{height}")

        buffer = BytesIO()
        try:
            raster.image.save(buffer, format=OUTPUT_FORMAT, quality=self.quality, method=4)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(f"Failed to encode {width}x{height} raster as WebP: {str(e)}") from e

        content = buffer.getvalue()
        if not content:
            raise EncodeError(f"Encoder produced an empty payload for {width}x{height} raster")

        logger.info(f"Encoded {width}x{height} raster to {name} ({len(content)} bytes)")

        return SourceFile(content=content, name=name, mime_type=OUTPUT_MIME_TYPE)
