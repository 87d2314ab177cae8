"""Transform Service for rotate / flip / crop operations.

All geometry is computed in floating point. Working surfaces are sized to
the rotated bounding rectangle, rounded up to whole pixels, and are released
as soon as the crop has been extracted.
"""

import logging
import math
from typing import Optional, Tuple

from PIL import Image

from image_uploader.exceptions import GeometryError
from image_uploader.models.media import RasterImage, CropRegion, TransformParams


logger = logging.getLogger(__name__)

# Sizes closer than this to a whole pixel are treated as that pixel count
SIZE_EPSILON = 1e-6

# Clockwise quarter turns expressed as Pillow transpositions
_QUARTER_TURNS = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def bounding_size(width: float, height: float, rotation_degrees: float) -> Tuple[float, float]:
    """
    Calculate the bounding box dimensions of a rectangle after rotation.

    Args:
        width: Original width
        height: Original height
        rotation_degrees: Rotation angle in degrees

    Returns:
        Tuple[float, float]: (bounding_width, bounding_height)

    Example:
        >>> bounding_size(100, 50, 45)
        (106.06..., 106.06...)
    """
    theta = math.radians(rotation_degrees)
    cos_t = abs(math.cos(theta))
    sin_t = abs(math.sin(theta))

    return (
        cos_t * width + sin_t * height,
        sin_t * width + cos_t * height,
    )


def _ceil_pixels(value: float) -> int:
    nearest = round(value)
    if abs(value - nearest) < SIZE_EPSILON:
        return int(nearest)
    return int(math.ceil(value))


def surface_size(width: int, height: int, rotation_degrees: float) -> Tuple[int, int]:
    """Integer size of the working surface that holds the rotated image."""
    bounding_width, bounding_height = bounding_size(width, height, rotation_degrees)
    return _ceil_pixels(bounding_width), _ceil_pixels(bounding_height)


def centered_crop(
    width: int,
    height: int,
    params: TransformParams,
    aspect: Optional[float] = None
) -> CropRegion:
    """
    Crop rectangle a cropper with no pan offset produces for ``params``.

    The visible area is the bounding surface divided by the zoom factor,
    shrunk to ``aspect`` (width / height) when given, and centred.

    Args:
        width: Source raster width
        height: Source raster height
        params: Transform parameters (rotation and zoom are used)
        aspect: Optional crop aspect ratio

    Returns:
        CropRegion: Crop inside the rotated bounding surface
    """
    surface_width, surface_height = surface_size(width, height, params.rotation_degrees)

    crop_width = surface_width / params.zoom
    crop_height = surface_height / params.zoom

    if aspect is not None:
        if aspect <= 0:
            raise GeometryError(f"Aspect ratio must be positive, got {aspect}")
        if crop_width / crop_height > aspect:
            crop_width = crop_height * aspect
        else:
            crop_height = crop_width / aspect

    crop_width = max(1, min(surface_width, int(round(crop_width))))
    crop_height = max(1, min(surface_height, int(round(crop_height))))

    return CropRegion(
        x=(surface_width - crop_width) // 2,
        y=(surface_height - crop_height) // 2,
        width=crop_width,
        height=crop_height
    )


class TransformService:
    """
    Service producing cropped, rotated and flipped rasters.

    Pure computation: no I/O and no shared state, so it can run in a worker
    thread and be tested without any session harness.
    """

    def transform(
        self,
        raster: RasterImage,
        params: TransformParams,
        crop: CropRegion
    ) -> RasterImage:
        """
        Rotate and flip ``raster`` onto its bounding surface, then crop.

        The source is mapped as: translate to the surface centre, rotate,
        flip, translate back by the source half-size.

        Args:
            raster: Source raster (not modified, not released)
            params: Rotation and flip parameters
            crop: Rectangle relative to the rotated bounding surface

        Returns:
            RasterImage: New raster of exactly crop.width x crop.height

        Raises:
            GeometryError: If the crop falls outside the bounding surface
        """
        width, height = raster.size
        surface_width, surface_height = surface_size(width, height, params.rotation_degrees)

        crop.validate_within(surface_width, surface_height)

        logger.debug(
            f"Transforming {width}x{height}: rotation={params.rotation_degrees}, "
            f"flip=({params.flip_horizontal}, {params.flip_vertical}), "
            f"surface={surface_width}x{surface_height}, crop={crop.box}"
        )

        surface = self._draw_surface(raster.image, params, (surface_width, surface_height))
        try:
            cropped = surface.crop(crop.box)
        finally:
            surface.close()

        return RasterImage(cropped)

    def _draw_surface(
        self,
        source: Image.Image,
        params: TransformParams,
        size: Tuple[int, int]
    ) -> Image.Image:
        """Allocate the bounding surface and draw the transformed source onto it."""
        rotation = params.rotation_degrees
        quarter = int(rotation)

        if rotation == quarter and quarter % 90 == 0:
            return self._draw_quarter_turn(source, params, quarter)

        return self._draw_affine(source, params, size)

    def _draw_quarter_turn(
        self,
        source: Image.Image,
        params: TransformParams,
        quarter: int
    ) -> Image.Image:
        """Exact pixel transposition for 0/90/180/270 degree rotations."""
        # Flips act in source space, before rotation
        surface = source.copy()

        if params.flip_horizontal:
            flipped = surface.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
            surface.close()
            surface = flipped

        if params.flip_vertical:
            flipped = surface.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
            surface.close()
            surface = flipped

        if quarter in _QUARTER_TURNS:
            rotated = surface.transpose(_QUARTER_TURNS[quarter])
            surface.close()
            surface = rotated

        return surface

    def _draw_affine(
        self,
        source: Image.Image,
        params: TransformParams,
        size: Tuple[int, int]
    ) -> Image.Image:
        """Resample the source for an arbitrary angle.

        Pillow's affine transform takes the inverse mapping, from surface
        coordinates back to source coordinates:
            p = H + S . R(-theta) . (c - C)
        where C is the surface centre, H the source half-size and S the flip.
        """
        surface_width, surface_height = size
        theta = math.radians(params.rotation_degrees)
        cos_t = math.cos(theta)
        sin_t = math.sin(theta)
        sx = -1.0 if params.flip_horizontal else 1.0
        sy = -1.0 if params.flip_vertical else 1.0

        cx, cy = surface_width / 2, surface_height / 2
        hx, hy = source.width / 2, source.height / 2

        a = sx * cos_t
        b = sx * sin_t
        c = hx - sx * (cos_t * cx + sin_t * cy)
        d = -sy * sin_t
        e = sy * cos_t
        f = hy - sy * (-sin_t * cx + cos_t * cy)

        return source.transform(
            size,
            Image.Transform.AFFINE,
            (a, b, c, d, e, f),
            resample=Image.Resampling.BICUBIC,
            fillcolor=(0, 0, 0, 0)
        )
