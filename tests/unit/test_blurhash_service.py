"""Unit tests for BlurhashService.

Tests cover:
- Agreement with the reference codec
- Structural validity checks
- Encoding length and determinism
- Decoding to placeholder rasters
- Placeholder data URLs
"""

import base64
import io

import blurhash as blurhash_codec
import pytest
from PIL import Image

from image_uploader.exceptions import InvalidHashError
from image_uploader.models.media import RasterImage
from image_uploader.services.blurhash_service import (
    BlurhashService,
    components,
    is_valid,
)


# Reference hash with 4x3 components
REFERENCE_HASH = "LEHV6nWB2yk8pyo0adR*.7kCMdnj"


def solid_raster(color, size=(32, 32)) -> RasterImage:
    return RasterImage(Image.new('RGB', size, color))


class TestValidity:
    """Test structural checks that need no decoding."""

    def test_reference_hash(self):
        assert components(REFERENCE_HASH) == (4, 3)
        assert is_valid(REFERENCE_HASH)

    @pytest.mark.parametrize("blurhash", [
        "",
        "L00",
        REFERENCE_HASH[:-1],
        REFERENCE_HASH + "0",
        REFERENCE_HASH[:-1] + '"',
        REFERENCE_HASH[:-1] + " ",
    ])
    def test_invalid_hashes(self, blurhash):
        assert not is_valid(blurhash)
        with pytest.raises(InvalidHashError):
            components(blurhash)

    def test_size_flag_beyond_nine_rows(self):
        # '}' is 81, which would declare 10 rows
        with pytest.raises(InvalidHashError):
            components("}" + "0" * 183)

    def test_non_string(self):
        assert not is_valid(None)


class TestBlurhashService:
    """Test BlurhashService encode/decode."""

    @pytest.fixture
    def service(self):
        """Create BlurhashService with 4x4 components and 32px placeholders."""
        return BlurhashService(components_x=4, components_y=4, placeholder_size=32)

    def test_encode_length(self, service):
        blurhash = service.encode(solid_raster((200, 100, 50)))

        assert len(blurhash) == 4 + 2 * 4 * 4
        assert components(blurhash) == (4, 4)

    def test_encode_custom_components(self, service):
        blurhash = service.encode(solid_raster((10, 20, 30)), components_x=3, components_y=2)

        assert len(blurhash) == 4 + 2 * 3 * 2
        assert components(blurhash) == (3, 2)

    def test_single_component(self, service):
        blurhash = service.encode(solid_raster((10, 20, 30)), components_x=1, components_y=1)

        assert len(blurhash) == 6
        assert is_valid(blurhash)

    def test_encode_is_deterministic(self, service):
        raster = RasterImage(Image.effect_noise((40, 30), 50).convert('RGB'))

        assert service.encode(raster) == service.encode(raster)

    def test_encode_does_not_release_raster(self, service):
        raster = solid_raster((1, 2, 3))
        service.encode(raster)
        assert not raster.released

    def test_encode_matches_reference_codec(self, service):
        img = Image.effect_noise((40, 30), 50).convert('RGB')

        expected = blurhash_codec.encode(img, x_components=4, y_components=4)

        assert service.encode(RasterImage(img.copy())) == expected

    def test_alpha_is_ignored(self, service):
        opaque = Image.new('RGBA', (16, 16), (90, 30, 200, 255))
        translucent = Image.new('RGBA', (16, 16), (90, 30, 200, 40))

        assert service.encode(RasterImage(opaque)) == service.encode(RasterImage(translucent))

    @pytest.mark.parametrize("count", [-1, 10])
    def test_encode_rejects_component_range(self, service, count):
        with pytest.raises(ValueError):
            service.encode(solid_raster((1, 2, 3)), components_x=count, components_y=4)

    def test_uniform_colour_round_trip(self, service):
        color = (200, 100, 50)
        blurhash = service.encode(solid_raster(color))

        placeholder = service.decode(blurhash)

        assert placeholder.size == (32, 32)
        # Odd AC terms vanish at the centre, leaving the average colour
        r, g, b, a = placeholder.getpixel(16, 16)
        assert abs(r - color[0]) <= 1
        assert abs(g - color[1]) <= 1
        assert abs(b - color[2]) <= 1
        assert a == 255

    def test_uniform_colour_every_pixel(self, service):
        color = (200, 100, 50)
        blurhash = service.encode(solid_raster(color, size=(512, 512)))

        placeholder = service.decode(blurhash)

        for y in range(32):
            for x in range(32):
                r, g, b, _ = placeholder.getpixel(x, y)
                assert abs(r - color[0]) <= 3
                assert abs(g - color[1]) <= 3
                assert abs(b - color[2]) <= 3

    def test_single_component_round_trip_is_exact(self, service):
        blurhash = service.encode(solid_raster((12, 200, 99)), components_x=1, components_y=1)

        placeholder = service.decode(blurhash, 4, 4)

        assert placeholder.getpixel(0, 0) == (12, 200, 99, 255)
        assert placeholder.getpixel(3, 3) == (12, 200, 99, 255)

    def test_decode_keeps_left_right_structure(self, service):
        img = Image.new('RGB', (64, 32), (0, 0, 255))
        img.paste(Image.new('RGB', (32, 32), (255, 0, 0)), (0, 0))

        placeholder = service.decode(service.encode(RasterImage(img)), 64, 32)

        left = placeholder.getpixel(4, 16)
        right = placeholder.getpixel(59, 16)
        assert left[0] > left[2]
        assert right[2] > right[0]

    def test_decode_size_is_independent_of_source(self, service):
        placeholder = service.decode(REFERENCE_HASH, 20, 12)
        assert placeholder.size == (20, 12)

    def test_decode_invalid_hash(self, service):
        with pytest.raises(InvalidHashError):
            service.decode("not-a-hash")

    def test_decode_invalid_size(self, service):
        with pytest.raises(ValueError):
            service.decode(REFERENCE_HASH, -1, 10)

    def test_placeholder_data_url(self, service):
        url = service.placeholder_data_url(REFERENCE_HASH, 16, 8)

        prefix = "data:image/webp;base64,"
        assert url.startswith(prefix)

        with Image.open(io.BytesIO(base64.b64decode(url[len(prefix):]))) as img:
            assert img.format == "WEBP"
            assert img.size == (16, 8)

    def test_placeholder_data_url_invalid_hash(self, service):
        with pytest.raises(InvalidHashError):
            service.placeholder_data_url("short")
