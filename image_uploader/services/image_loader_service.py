"""Image Loader Service for decoding user-selected images.

This service handles:
- Reading local files into SourceFile values
- Decoding SourceFile content into RasterImage handles
- Downloading and decoding images from URLs (HTTP/HTTPS)
"""

import asyncio
import logging
import mimetypes
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import aiohttp
from PIL import Image, ImageOps, UnidentifiedImageError

from image_uploader.config import settings
from image_uploader.exceptions import DecodeError
from image_uploader.models.media import SourceFile, RasterImage


logger = logging.getLogger(__name__)


# Magic-byte prefixes for the formats browsers can decode
_SIGNATURES = (
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'BM', 'image/bmp'),
)


def sniff_mime_type(content: bytes, name: Optional[str] = None) -> str:
    """
    Detect the MIME type of image content.

    Checks magic bytes first and falls back to the file extension.

    Args:
        content: Raw file content
        name: Optional file name for extension-based detection

    Returns:
        str: Detected MIME type, ``application/octet-stream`` if unknown
    """
    if len(content) >= 12 and content[:4] == b'RIFF' and content[8:12] == b'WEBP':
        return 'image/webp'

    for signature, mime_type in _SIGNATURES:
        if content.startswith(signature):
            return mime_type

    if name:
        guessed, _ = mimetypes.guess_type(name)
        if guessed:
            return guessed

    return 'application/octet-stream'


class ImageLoaderService:
    """
    Service for turning raw file content into decoded rasters.

    Decoding always completes before a raster is returned: callers never
    observe a partially decoded image.
    """

    # Maximum image size: 50MB
    MAX_IMAGE_SIZE = 52428800

    def __init__(
        self,
        max_dimension: Optional[int] = None,
        download_timeout: Optional[int] = None
    ):
        """
        Initialize the image loader service.

        Args:
            max_dimension: Maximum width/height in pixels. Defaults to settings.
            download_timeout: URL download timeout in seconds. Defaults to settings.
        """
        self.max_dimension = max_dimension or settings.IMAGE_MAX_DIMENSION
        self.download_timeout = download_timeout or settings.URL_DOWNLOAD_TIMEOUT

    async def read_file(self, file_path: str) -> SourceFile:
        """
        Read a local image file into a SourceFile.

        Args:
            file_path: Path to the image file

        Returns:
            SourceFile: File content with name, size and detected MIME type

        Raises:
            DecodeError: If the file is missing, empty or too large
        """
        path = Path(file_path)
        if not path.is_file():
            raise DecodeError(f"File not found: {file_path}")

        file_size = path.stat().st_size
        if file_size <= 0:
            raise DecodeError(f"File is empty: {file_path}")

        if file_size > self.MAX_IMAGE_SIZE:
            size_mb = file_size / (1024 * 1024)
            max_mb = self.MAX_IMAGE_SIZE / (1024 * 1024)
            raise DecodeError(f"File size {size_mb:.1f}MB exceeds maximum {max_mb:.0f}MB")

        async with aiofiles.open(path, 'rb') as f:
            content = await f.read()

        return SourceFile(
            content=content,
            name=path.name,
            mime_type=sniff_mime_type(content, path.name)
        )

    async def load(self, source: SourceFile) -> RasterImage:
        """
        Decode a SourceFile into a RasterImage.

        Args:
            source: Selected file

        Returns:
            RasterImage: Fully decoded raster in RGBA mode

        Raises:
            DecodeError: If the content is not a decodable image
        """
        logger.info(f"Decoding image: {source.name} ({source.size} bytes, {source.mime_type})")

        if not source.content:
            raise DecodeError(f"Image is empty: {source.name}")

        raster = await asyncio.to_thread(self._decode, source.content)

        logger.info(f"Decoded image {source.name}: {raster.width}x{raster.height}")
        return raster

    async def load_from_url(self, url: str) -> RasterImage:
        """
        Download an image and decode it.

        Args:
            url: HTTP/HTTPS URL to image

        Returns:
            RasterImage: Decoded raster

        Raises:
            DecodeError: If the download fails or the content is not an image
        """
        logger.info(f"Loading image from URL: {url}")

        if not url.startswith(('http://', 'https://')):
            raise DecodeError(f"Invalid image URL: {url}")

        try:
            timeout_obj = aiohttp.ClientTimeout(total=self.download_timeout)

            async with aiohttp.ClientSession(timeout=timeout_obj) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise DecodeError(f"HTTP {response.status}: Failed to download image from {url}")

                    content_type = response.headers.get('Content-Type', '')
                    if not content_type.startswith('image/'):
                        raise DecodeError(f"URL does not point to an image. Content-Type: {content_type}")

                    content_length = response.headers.get('Content-Length')
                    if content_length and int(content_length) > self.MAX_IMAGE_SIZE:
                        size_mb = int(content_length) / (1024 * 1024)
                        raise DecodeError(f"Image too large: {size_mb:.1f}MB (max 50MB)")

                    image_data = await response.read()

        except asyncio.TimeoutError:
            raise DecodeError(f"Timeout downloading image from {url} (>{self.download_timeout}s)")
        except aiohttp.ClientError as e:
            raise DecodeError(f"Download failed: {str(e)}") from e

        if len(image_data) > self.MAX_IMAGE_SIZE:
            size_mb = len(image_data) / (1024 * 1024)
            raise DecodeError(f"Image too large: {size_mb:.1f}MB (max 50MB)")

        name = Path(url.split('?', 1)[0]).name or 'image'
        source = SourceFile(
            content=image_data,
            name=name,
            mime_type=content_type.split(';', 1)[0].strip()
        )
        return await self.load(source)

    def _decode(self, content: bytes) -> RasterImage:
        """Decode content synchronously. Runs in a worker thread."""
        image = None
        try:
            # Verify integrity first; verify() leaves the image unusable
            with Image.open(BytesIO(content)) as header:
                header.verify()

            image = Image.open(BytesIO(content))
            image.load()

            self._validate_dimensions(image.size)

            # Apply EXIF orientation the way browsers do when decoding
            oriented = ImageOps.exif_transpose(image)
            if oriented is not image:
                image.close()
                image = oriented

            raster = RasterImage(image)
            image = None
            return raster

        except DecodeError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Unsupported or unsafe image content: {str(e)}") from e
        except (OSError, ValueError, SyntaxError) as e:
            raise DecodeError(f"Corrupt or invalid image content: {str(e)}") from e
        except Exception as e:
            raise DecodeError(f"Failed to decode image: {str(e)}") from e
        finally:
            if image is not None:
                image.close()

    def _validate_dimensions(self, size: Tuple[int, int]) -> None:
        """
        Validate image dimensions are within limits.

        Raises:
            DecodeError: If dimensions are empty or exceed the canvas limit
        """
        width, height = size

        if width <= 0 or height <= 0:
            raise DecodeError(f"Invalid dimensions: {width}x{height}")

        if width > self.max_dimension or height > self.max_dimension:
            raise DecodeError(
                f"Image dimensions {width}x{height} exceed maximum "
                f"{self.max_dimension}x{self.max_dimension} (Canvas API limit)"
            )
