"""Image pipeline value types.

SourceFile, RasterImage, CropRegion and TransformParams flow between the
loader, transform, blurhash, payload and upload services.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image

from image_uploader.exceptions import GeometryError


@dataclass(frozen=True)
class SourceFile:
    """A user-selected (or re-encoded) file: content plus display metadata."""
    content: bytes = field(repr=False)
    name: str
    mime_type: str
    size: int = -1

    def __post_init__(self):
        """Derive size from content."""
        if self.size != len(self.content):
            object.__setattr__(self, "size", len(self.content))

    @property
    def extension(self) -> str:
        """Lowercase file extension without the leading dot."""
        return Path(self.name).suffix.lower().lstrip(".")


class RasterImage:
    """
    Decoded pixel surface.

    Wraps a Pillow image in RGBA mode. A raster is owned by the operation
    that created it until handed to the next stage, and must be released
    once nothing references it.
    """

    MODE = "RGBA"

    def __init__(self, image: Image.Image):
        if image.mode != self.MODE:
            converted = image.convert(self.MODE)
            image.close()
            image = converted
        self._image: Optional[Image.Image] = image

    @classmethod
    def new(cls, width: int, height: int, color=(0, 0, 0, 0)) -> "RasterImage":
        """Allocate a blank raster."""
        return cls(Image.new(cls.MODE, (width, height), color))

    @property
    def image(self) -> Image.Image:
        """Backing Pillow image."""
        if self._image is None:
            raise ValueError("Raster has been released")
        return self._image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def released(self) -> bool:
        return self._image is None

    def getpixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        return self.image.getpixel((x, y))

    def copy(self) -> "RasterImage":
        return RasterImage(self.image.copy())

    def release(self) -> None:
        """Free the backing pixel buffer. Safe to call more than once."""
        if self._image is not None:
            self._image.close()
            self._image = None

    def __enter__(self) -> "RasterImage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def __repr__(self) -> str:
        if self._image is None:
            return "<RasterImage released>"
        return f"<RasterImage {self.width}x{self.height}>"


@dataclass(frozen=True)
class CropRegion:
    """Integer crop rectangle relative to the post-rotation bounding raster."""
    x: int
    y: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """Pillow crop box: (left, upper, right, lower)."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def validate_within(self, bounding_width: int, bounding_height: int) -> None:
        """
        Check the rectangle lies inside a bounding surface.

        Raises:
            GeometryError: If the rectangle is empty or falls outside the bounds
        """
        if self.x < 0 or self.y < 0:
            raise GeometryError(f"Crop coordinates cannot be negative: x={self.x}, y={self.y}")

        if self.width <= 0 or self.height <= 0:
            raise GeometryError(
                f"Crop dimensions must be positive: width={self.width}, height={self.height}"
            )

        if self.x + self.width > bounding_width:
            raise GeometryError(
                f"Crop exceeds bounding width: x={self.x} + width={self.width} > {bounding_width}"
            )

        if self.y + self.height > bounding_height:
            raise GeometryError(
                f"Crop exceeds bounding height: y={self.y} + height={self.height} > {bounding_height}"
            )


@dataclass(frozen=True)
class TransformParams:
    """User adjustments applied to a raster before cropping."""
    rotation_degrees: float = 0.0
    zoom: float = 1.0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    def __post_init__(self):
        """Validate transform parameters."""
        if not 0 <= self.rotation_degrees < 360:
            raise GeometryError(
                f"Rotation must be in [0, 360) degrees, got {self.rotation_degrees}"
            )

        if self.zoom < 1:
            raise GeometryError(f"Zoom must be >= 1, got {self.zoom}")

    @classmethod
    def normalized(
        cls,
        rotation_degrees: Union[int, float] = 0,
        zoom: float = 1.0,
        flip_horizontal: bool = False,
        flip_vertical: bool = False
    ) -> "TransformParams":
        """Build params from any rotation angle, wrapping it into [0, 360)."""
        rotation = float(rotation_degrees) % 360
        if rotation >= 360:  # -1e-20 % 360 == 360.0
            rotation = 0.0
        return cls(
            rotation_degrees=rotation,
            zoom=zoom,
            flip_horizontal=flip_horizontal,
            flip_vertical=flip_vertical
        )
