"""Blurhash Service for compact image placeholders.

Encodes a raster into a short BlurHash string (a grid of DCT-style colour
coefficients in base83) and decodes such strings back into small placeholder
rasters. The hash is safe to store as a plain string next to the uploaded
image URL. The codec itself comes from ``blurhash-python``; this module adds
the structural checks and the raster / data URL plumbing around it.
"""

import base64
import logging
from io import BytesIO
from typing import Optional, Tuple

import blurhash as blurhash_codec

from image_uploader.config import settings
from image_uploader.exceptions import InvalidHashError
from image_uploader.models.media import RasterImage


logger = logging.getLogger(__name__)


BASE83_ALPHABET = (
    "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz#$%*+,-.:;=?@[]^_{|}~"
)
_BASE83_INDEX = {char: index for index, char in enumerate(BASE83_ALPHABET)}

MIN_COMPONENTS = 1
MAX_COMPONENTS = 9


def components(blurhash: str) -> Tuple[int, int]:
    """
    Read the component counts a hash declares and check its structure.

    Args:
        blurhash: Hash string

    Returns:
        Tuple[int, int]: (components_x, components_y)

    Raises:
        InvalidHashError: If the hash has the wrong alphabet or length
    """
    if not isinstance(blurhash, str) or len(blurhash) < 6:
        raise InvalidHashError("Invalid blurhash: must be at least 6 characters")

    invalid = sorted({char for char in blurhash if char not in _BASE83_INDEX})
    if invalid:
        raise InvalidHashError(f"Invalid blurhash: characters outside base83 alphabet: {''.join(invalid)}")

    size_flag = _BASE83_INDEX[blurhash[0]]
    components_y = size_flag // 9 + 1
    components_x = size_flag % 9 + 1
    if components_y > MAX_COMPONENTS:
        raise InvalidHashError(f"Invalid blurhash: size flag {blurhash[0]!r} declares {components_y} rows")

    expected_length = 4 + 2 * components_x * components_y
    if len(blurhash) != expected_length:
        raise InvalidHashError(
            f"Invalid blurhash length: {len(blurhash)} "
            f"(expected {expected_length} for {components_x}x{components_y} components)"
        )

    return components_x, components_y


def is_valid(blurhash: str) -> bool:
    """Check a hash is structurally valid without decoding it."""
    try:
        components(blurhash)
    except InvalidHashError:
        return False
    return True


class BlurhashService:
    """
    Service encoding rasters to blurhash strings and back.

    Encoding is deterministic: the same raster and component counts always
    give the same string.
    """

    def __init__(
        self,
        components_x: Optional[int] = None,
        components_y: Optional[int] = None,
        placeholder_size: Optional[int] = None
    ):
        """
        Initialize the blurhash service.

        Args:
            components_x: Default horizontal components. Defaults to settings.
            components_y: Default vertical components. Defaults to settings.
            placeholder_size: Default decode width/height. Defaults to settings.
        """
        self.components_x = components_x or settings.BLURHASH_COMPONENTS_X
        self.components_y = components_y or settings.BLURHASH_COMPONENTS_Y
        self.placeholder_size = placeholder_size or settings.BLURHASH_PLACEHOLDER_SIZE

    def encode(
        self,
        raster: RasterImage,
        components_x: Optional[int] = None,
        components_y: Optional[int] = None
    ) -> str:
        """
        Encode a raster into a blurhash string.

        Alpha is ignored: only the colour channels contribute.

        Args:
            raster: Source raster
            components_x: Horizontal components (1-9)
            components_y: Vertical components (1-9)

        Returns:
            str: Blurhash of length 4 + 2 * components_x * components_y

        Raises:
            ValueError: If component counts are out of range or the raster is empty
        """
        components_x = components_x or self.components_x
        components_y = components_y or self.components_y

        for name, count in (("components_x", components_x), ("components_y", components_y)):
            if not MIN_COMPONENTS <= count <= MAX_COMPONENTS:
                raise ValueError(f"{name} must be between {MIN_COMPONENTS} and {MAX_COMPONENTS}, got {count}")

        width, height = raster.size
        if width <= 0 or height <= 0:
            raise ValueError(f"Cannot encode empty raster: {width}x{height}")

        rgb = raster.image.convert("RGB")
        try:
            blurhash = blurhash_codec.encode(rgb, x_components=components_x, y_components=components_y)
        finally:
            rgb.close()

        logger.debug(f"Encoded {width}x{height} raster to blurhash {blurhash}")
        return blurhash

    def decode(
        self,
        blurhash: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        punch: float = 1.0
    ) -> RasterImage:
        """
        Decode a blurhash into a placeholder raster.

        Output resolution is independent of the original image: this is a
        cheap low-fidelity preview, not a reconstruction.

        Args:
            blurhash: Hash string
            width: Output width. Defaults to placeholder_size.
            height: Output height. Defaults to placeholder_size.
            punch: Contrast factor applied to the AC components

        Returns:
            RasterImage: Placeholder raster

        Raises:
            InvalidHashError: If the hash fails the structural check
            ValueError: If the output size is not positive
        """
        components_x, components_y = components(blurhash)

        width = width or self.placeholder_size
        height = height or self.placeholder_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Placeholder size must be positive: {width}x{height}")

        placeholder = blurhash_codec.decode(blurhash, width, height, punch=punch)
        logger.debug(f"Decoded {components_x}x{components_y} blurhash to {width}x{height} placeholder")
        return RasterImage(placeholder)

    def placeholder_data_url(
        self,
        blurhash: str,
        width: Optional[int] = None,
        height: Optional[int] = None
    ) -> str:
        """
        Render a hash into a ``data:image/webp;base64,...`` URL.

        Raises:
            InvalidHashError: If the hash fails the structural check
        """
        with self.decode(blurhash, width, height) as placeholder:
            buffer = BytesIO()
            placeholder.image.save(buffer, format="WEBP")

        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/webp;base64,{encoded}"
