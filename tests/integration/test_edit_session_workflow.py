"""Integration test for the edit-and-upload workflow.

Tests the complete user journey:
1. Select an image
2. Preview transforms (rotate / flip / crop)
3. Confirm: encode WebP, compute blurhash, two-phase upload
4. Every session resource is released afterwards

The upload backend is an ``httpx.MockTransport``; nothing leaves the process.
"""

import asyncio
import io
import threading
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from PIL import Image

from image_uploader.exceptions import (
    CancelledError,
    DecodeError,
    GeometryError,
    UploadAuthError,
    UploadRejectedError,
)
from image_uploader.models.media import CropRegion, RasterImage, SourceFile, TransformParams
from image_uploader.models.notice import NoticeLevel
from image_uploader.services import (
    BlurhashService,
    ImageUploader,
    NotificationService,
    UploadService,
)
from image_uploader.services.blurhash_service import is_valid


ENDPOINT = "https://api.example.com/image"
PUBLIC_URL = "https://cdn.example.com/f/abc123"


def png_source(size=(64, 48), name="photo.png") -> SourceFile:
    buffer = io.BytesIO()
    Image.new('RGB', size, color='orange').save(buffer, 'PNG')
    return SourceFile(content=buffer.getvalue(), name=name, mime_type="image/png")


def hold_preview_writes(session):
    """Patch the session's preview writer to block in its worker thread until released."""
    started = threading.Event()
    release = threading.Event()
    write = session.resources.write

    def held_write(raster):
        started.set()
        release.wait(5)
        return write(raster)

    return patch.object(session.resources, "write", side_effect=held_write), started, release


class FakeBackend:
    """Authorize/submit backend recording every request."""

    def __init__(self, authorize_status=200, submit_status=204):
        self.authorize_status = authorize_status
        self.submit_status = submit_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/upload"):
            if self.authorize_status != 200:
                return httpx.Response(self.authorize_status)
            return httpx.Response(200, json={"file": {
                "key": "abc123",
                "file_name": "photo.webp",
                "file_type": "image/webp",
                "file_url": PUBLIC_URL,
                "custom_id": None,
                "url": "https://storage.example.com/bucket",
                "fields": {"policy": "p"},
            }})
        return httpx.Response(self.submit_status)

    def client_factory(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.mark.asyncio
@pytest.mark.integration
class TestEditSessionWorkflow:
    """Integration test for select, preview and confirm."""

    @pytest.fixture
    def backend(self):
        return FakeBackend()

    @pytest.fixture
    def notifications(self):
        return NotificationService()

    @pytest.fixture
    def uploader(self, backend, notifications, tmp_path):
        """Create ImageUploader wired to the fake backend."""
        return ImageUploader(
            upload_service=UploadService(endpoint=ENDPOINT, client_factory=backend.client_factory),
            notifications=notifications,
            temp_dir=str(tmp_path),
        )

    async def test_complete_workflow(self, uploader, backend, notifications, tmp_path):
        session = await uploader.select(png_source())
        assert uploader.session is session
        source_raster = session.raster

        preview = await session.preview(
            TransformParams(rotation_degrees=90, flip_horizontal=True),
            CropRegion(0, 0, 48, 64)
        )
        assert preview.size == (48, 64)
        handle = session.preview_handle
        assert handle is not None and handle.exists()

        outcome = await session.confirm()

        assert outcome.url == PUBLIC_URL
        assert outcome.uploaded
        assert is_valid(outcome.blurhash)
        assert outcome.placeholder.startswith("data:image/webp;base64,")

        assert len(backend.requests) == 2
        assert b'filename="photo.webp"' in backend.requests[1].content

        last = notifications.history[-1]
        assert last.level == NoticeLevel.SUCCESS
        assert last.title == "Image upload complete"
        assert last.description == "photo.webp uploaded successfully!"

        # Everything the session owned is gone
        assert session.closed
        assert uploader.session is None
        assert source_raster.released
        assert preview.released
        assert not handle.exists()
        assert list(tmp_path.iterdir()) == []

    async def test_confirm_without_preview_uploads_source(self, uploader, backend):
        session = await uploader.select(png_source(size=(20, 10)))

        outcome = await session.confirm(name="custom.webp")

        assert outcome.url == PUBLIC_URL
        assert b'filename="custom.webp"' in backend.requests[1].content

    async def test_default_preview_uses_centred_crop(self, uploader):
        session = await uploader.select(png_source(size=(100, 100)))

        preview = await session.preview(TransformParams(zoom=2))

        assert preview.size == (50, 50)
        await session.close()

    async def test_new_preview_replaces_previous(self, uploader):
        session = await uploader.select(png_source())

        first = await session.preview(TransformParams(), CropRegion(0, 0, 32, 32))
        first_handle = session.preview_handle
        second = await session.preview(TransformParams(rotation_degrees=180), CropRegion(0, 0, 16, 16))

        assert first.released
        assert not first_handle.exists()
        assert session.current is second
        assert session.preview_handle.exists()
        await session.close()

    async def test_superseded_preview_is_cancelled(self, uploader):
        session = await uploader.select(png_source())

        stale = asyncio.ensure_future(
            session.preview(TransformParams(rotation_degrees=30), CropRegion(0, 0, 20, 20))
        )
        fresh = asyncio.ensure_future(
            session.preview(TransformParams(rotation_degrees=60), CropRegion(0, 0, 10, 10))
        )
        results = await asyncio.gather(stale, fresh, return_exceptions=True)

        assert isinstance(results[0], CancelledError)
        assert isinstance(results[1], RasterImage)
        assert session.current is results[1]
        assert results[1].size == (10, 10)
        await session.close()

    async def test_cancel_while_preview_is_written(self, uploader, notifications, tmp_path):
        session = await uploader.select(png_source())
        writes, started, release = hold_preview_writes(session)

        with writes:
            pending = asyncio.ensure_future(
                session.preview(TransformParams(), CropRegion(0, 0, 10, 10))
            )
            await asyncio.to_thread(started.wait, 5)
            cancelling = asyncio.ensure_future(session.cancel())
            await asyncio.sleep(0)
            release.set()
            results = await asyncio.gather(pending, cancelling, return_exceptions=True)

        assert isinstance(results[0], CancelledError)
        assert results[1] is None
        assert session.closed
        assert session.current is None
        assert session.preview_handle is None
        assert list(tmp_path.iterdir()) == []
        assert all(notice.level != NoticeLevel.ERROR for notice in notifications.history)

    async def test_preview_superseded_while_written(self, uploader, tmp_path):
        session = await uploader.select(png_source())
        first = await session.preview(TransformParams(), CropRegion(0, 0, 30, 30))
        writes, started, release = hold_preview_writes(session)

        with writes:
            stale = asyncio.ensure_future(
                session.preview(TransformParams(rotation_degrees=30), CropRegion(0, 0, 20, 20))
            )
            await asyncio.to_thread(started.wait, 5)
            # The current preview stays intact while the stale file is being written
            assert not first.released
            assert session.preview_handle.exists()

            fresh = asyncio.ensure_future(
                session.preview(TransformParams(rotation_degrees=60), CropRegion(0, 0, 10, 10))
            )
            await asyncio.sleep(0)
            release.set()
            results = await asyncio.gather(stale, fresh, return_exceptions=True)

        assert isinstance(results[0], CancelledError)
        assert isinstance(results[1], RasterImage)
        assert session.current is results[1]
        assert not results[1].released
        assert first.released
        assert list(tmp_path.iterdir()) == [session.preview_handle]
        await session.close()

    async def test_invalid_crop_keeps_session_usable(self, uploader, notifications):
        session = await uploader.select(png_source(size=(100, 50)))

        with pytest.raises(GeometryError):
            await session.preview(TransformParams(rotation_degrees=90), CropRegion(0, 0, 60, 100))

        assert notifications.history[-1].title == "Could not process image"
        assert not session.closed

        preview = await session.preview(TransformParams(rotation_degrees=90), CropRegion(0, 0, 50, 100))
        assert preview.size == (50, 100)
        await session.close()

    async def test_upload_failure_releases_resources(self, uploader, backend, notifications, tmp_path):
        backend.authorize_status = 500
        session = await uploader.select(png_source())
        preview = await session.preview(TransformParams(), CropRegion(0, 0, 10, 10))

        with pytest.raises(UploadAuthError):
            await session.confirm()

        assert len(backend.requests) == 1
        assert notifications.history[-1].level == NoticeLevel.ERROR
        assert notifications.history[-1].title == "Upload failed"
        assert session.closed
        assert preview.released
        assert session.raster.released
        assert list(tmp_path.iterdir()) == []

    async def test_blurhash_failure_does_not_block_upload(self, backend, notifications, tmp_path):
        blurhash_service = BlurhashService()
        blurhash_service.encode = Mock(side_effect=ValueError("hash failed"))
        uploader = ImageUploader(
            blurhash_service=blurhash_service,
            upload_service=UploadService(endpoint=ENDPOINT, client_factory=backend.client_factory),
            notifications=notifications,
            temp_dir=str(tmp_path),
        )
        session = await uploader.select(png_source())

        outcome = await session.confirm()

        assert outcome.url == PUBLIC_URL
        assert outcome.blurhash is None
        assert outcome.placeholder is None
        titles = [notice.title for notice in notifications.history]
        assert "Blurhash generation failed" in titles
        assert titles[-1] == "Image upload complete"

    async def test_cancel_releases_everything(self, uploader, notifications, tmp_path):
        session = await uploader.select(png_source())
        await session.preview(TransformParams(), CropRegion(0, 0, 10, 10))

        await session.cancel()

        assert session.closed
        assert session.token.cancelled
        assert session.raster.released
        assert list(tmp_path.iterdir()) == []
        assert uploader.session is None
        # Cancellation is not reported as a failure
        assert all(notice.level != NoticeLevel.ERROR for notice in notifications.history)

        with pytest.raises(CancelledError):
            await session.preview(TransformParams())
        with pytest.raises(CancelledError):
            await session.confirm()

    async def test_close_is_idempotent(self, uploader):
        session = await uploader.select(png_source())

        await session.close()
        await session.close()

        assert session.closed

    async def test_new_selection_tears_down_previous(self, uploader):
        first = await uploader.select(png_source(name="first.png"))
        await first.preview(TransformParams(), CropRegion(0, 0, 10, 10))

        second = await uploader.select(png_source(name="second.png"))

        assert first.closed
        assert first.raster.released
        assert first.token.cancelled
        assert uploader.session is second
        assert not second.closed
        await uploader.close()
        assert second.closed

    async def test_concurrent_selection_keeps_latest(self, uploader):
        older = asyncio.ensure_future(uploader.select(png_source(name="older.png")))
        await asyncio.sleep(0)
        newer = await uploader.select(png_source(name="newer.png"))

        with pytest.raises(CancelledError):
            await older

        assert uploader.session is newer
        assert newer.source.name == "newer.png"
        await uploader.close()

    async def test_replaced_corrupt_selection_is_cancelled(self, uploader, notifications):
        older = asyncio.ensure_future(uploader.select(
            SourceFile(content=b"garbage", name="bad.png", mime_type="image/png")
        ))
        await asyncio.sleep(0)
        newer = await uploader.select(png_source(name="newer.png"))

        with pytest.raises(CancelledError):
            await older

        assert uploader.session is newer
        assert all(notice.level != NoticeLevel.ERROR for notice in notifications.history)
        await uploader.close()

    async def test_corrupt_selection(self, uploader, notifications):
        with pytest.raises(DecodeError):
            await uploader.select(SourceFile(content=b"garbage", name="bad.png", mime_type="image/png"))

        assert uploader.session is None
        assert notifications.history[-1].title == "Could not process image"

    async def test_oversize_selection(self, backend, notifications, tmp_path):
        uploader = ImageUploader(
            upload_service=UploadService(
                endpoint=ENDPOINT, max_bytes=50, client_factory=backend.client_factory
            ),
            notifications=notifications,
            temp_dir=str(tmp_path),
        )

        with pytest.raises(UploadRejectedError):
            await uploader.select(png_source(size=(300, 300)))

        assert uploader.session is None
        assert backend.requests == []
        assert notifications.history[-1].title.startswith("Image must be less than")

    async def test_open_file(self, uploader, tmp_path):
        image_path = tmp_path / "from_disk.png"
        image_path.write_bytes(png_source().content)

        session = await uploader.open_file(str(image_path))

        assert session.source.name == "from_disk.png"
        assert session.raster.size == (64, 48)
        await uploader.close()

    async def test_hash_remote(self, uploader):
        content = png_source(size=(30, 30)).content

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_response = AsyncMock()
            mock_response.status = 200
            mock_response.headers = {'Content-Type': 'image/png', 'Content-Length': str(len(content))}
            mock_response.read = AsyncMock(return_value=content)
            mock_response.__aenter__ = AsyncMock(return_value=mock_response)
            mock_response.__aexit__ = AsyncMock(return_value=None)

            mock_session = AsyncMock()
            mock_session.get = Mock(return_value=mock_response)
            mock_session.__aenter__ = AsyncMock(return_value=mock_session)
            mock_session.__aexit__ = AsyncMock(return_value=None)
            mock_session_class.return_value = mock_session

            blurhash = await uploader.hash_remote("https://cdn.example.com/f/abc123.png")

        assert is_valid(blurhash)

    async def test_uploader_context_manager(self, backend, tmp_path):
        async with ImageUploader(
            upload_service=UploadService(endpoint=ENDPOINT, client_factory=backend.client_factory),
            temp_dir=str(tmp_path),
        ) as uploader:
            session = await uploader.select(png_source())

        assert session.closed
        assert session.raster.released
