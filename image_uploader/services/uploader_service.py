"""Uploader Service wiring the image pipeline into edit sessions.

This service handles:
- Starting an edit session for a selected file (one active session at a time)
- Previewing transforms, with newer requests superseding older ones
- Confirming: encode payload, compute blurhash, upload
- Releasing every session resource on confirm, cancel, failure or teardown
- Turning outcomes into user notices
"""

import asyncio
import logging
import uuid
from typing import Optional, Set

from image_uploader.exceptions import (
    CancelledError,
    EncodeError,
    GeometryError,
    ImagePipelineError,
    InvalidHashError,
)
from image_uploader.models.media import SourceFile, RasterImage, CropRegion, TransformParams
from image_uploader.models.upload import UploadOutcome
from image_uploader.services.blurhash_service import BlurhashService
from image_uploader.services.image_loader_service import ImageLoaderService
from image_uploader.services.notification_service import NotificationService
from image_uploader.services.payload_service import PayloadService, webp_name
from image_uploader.services.resource_service import ResourceManager
from image_uploader.services.transform_service import TransformService, centered_crop
from image_uploader.services.upload_service import UploadService
from image_uploader.utils.cancellation import CancellationToken


logger = logging.getLogger(__name__)


class EditSession:
    """
    One selection being edited.

    Operations run strictly in order: transform* then confirm. The session
    owns the decoded source raster, the latest transformed raster and the
    current preview handle, and releases all of them when it ends.
    """

    def __init__(
        self,
        source: SourceFile,
        raster: RasterImage,
        uploader: "ImageUploader",
        resources: ResourceManager,
        token: CancellationToken
    ):
        self.id = str(uuid.uuid4())
        self.source = source
        self.raster = raster
        self.token = token
        self.resources = resources
        self._uploader = uploader

        self._current: Optional[RasterImage] = None
        self._generation = 0
        self._pending: Set[asyncio.Future] = set()
        self.closed = False

    @property
    def current(self) -> Optional[RasterImage]:
        """Latest transformed raster, or None before the first preview."""
        return self._current

    @property
    def preview_handle(self):
        return self.resources.current_handle

    async def preview(
        self,
        params: TransformParams,
        crop: Optional[CropRegion] = None
    ) -> RasterImage:
        """
        Apply a transform and make the result the current preview.

        A newer call supersedes this one: when that happens the stale result
        is released and this call raises CancelledError.

        Args:
            params: Rotation, zoom and flip parameters
            crop: Crop rectangle; defaults to the centred crop for params.zoom

        Returns:
            RasterImage: Transformed raster (owned by the session)

        Raises:
            GeometryError: If the crop falls outside the rotated bounds
            EncodeError: If the preview file cannot be written
            CancelledError: If superseded or the session ended meanwhile
        """
        self._ensure_active()

        self._generation += 1
        generation = self._generation

        try:
            if crop is None:
                crop = centered_crop(self.raster.width, self.raster.height, params)

            result = await self._in_flight(asyncio.to_thread(
                self._uploader.transform_service.transform, self.raster, params, crop
            ))

        except GeometryError as e:
            if generation == self._generation:
                logger.warning(f"Session {self.id}: invalid transform: {str(e)}")
                self._uploader.notifications.notify_failure(e, "Adjust the crop and try again.")
            raise

        if self._is_stale(generation):
            result.release()
            raise CancelledError(f"Transform {generation} superseded in session {self.id}")

        try:
            handle = await self._in_flight(asyncio.to_thread(self.resources.write, result))
        except (OSError, ValueError, RuntimeError) as e:
            result.release()
            if self._is_stale(generation):
                raise CancelledError(f"Preview {generation} superseded in session {self.id}") from e
            error = EncodeError(f"Failed to write preview: {str(e)}")
            logger.error(f"Session {self.id}: {str(error)}")
            self._uploader.notifications.notify_failure(error)
            raise error from e

        # The session may have ended or moved on while the file was written
        if self._is_stale(generation):
            result.release()
            self.resources.discard(handle)
            raise CancelledError(f"Preview {generation} superseded in session {self.id}")

        previous = self._current
        self._current = self.resources.track(result)
        self.resources.adopt(handle)
        if previous is not None:
            self.resources.release(previous)

        logger.info(f"Session {self.id}: preview {generation} ready ({result.width}x{result.height})")
        return result

    async def confirm(self, name: Optional[str] = None) -> UploadOutcome:
        """
        Encode, hash and upload the current raster, then end the session.

        A blurhash failure is reported on its own and does not block the
        upload; the outcome then carries no blurhash.

        Args:
            name: Display name for the payload; defaults to the source name as .webp

        Returns:
            UploadOutcome: Public URL, blurhash and placeholder data URL

        Raises:
            EncodeError: If the payload cannot be produced
            UploadError: If the upload is rejected or fails
            CancelledError: If the session is cancelled meanwhile
        """
        self._ensure_active()

        uploader = self._uploader
        raster = self._current or self.raster
        name = name or webp_name(self.source.name)

        try:
            payload = await asyncio.to_thread(uploader.payload_service.encode, raster, name)
            self.token.raise_if_cancelled()

            blurhash, placeholder = await self._hash(raster)
            self.token.raise_if_cancelled()

            url = await uploader.upload_service.upload(payload, self.token)

        except ImagePipelineError as e:
            logger.warning(f"Session {self.id}: confirm failed: {type(e).__name__}: {str(e)}")
            uploader.notifications.notify_failure(e)
            raise
        finally:
            await self.close()

        uploader.notifications.success("Image upload complete", f"{payload.name} uploaded successfully!")
        return UploadOutcome(url=url, blurhash=blurhash, placeholder=placeholder)

    async def _hash(self, raster: RasterImage):
        blurhash_service = self._uploader.blurhash_service
        try:
            blurhash = await asyncio.to_thread(blurhash_service.encode, raster)
            placeholder = blurhash_service.placeholder_data_url(blurhash)
        except (ValueError, OSError, InvalidHashError) as e:
            logger.error(f"Session {self.id}: blurhash generation failed: {str(e)}")
            self._uploader.notifications.error(
                "Blurhash generation failed",
                "Please try uploading the image again."
            )
            return None, None
        return blurhash, placeholder

    async def cancel(self) -> None:
        """Abandon the session: cancel in-flight work and release everything."""
        self.token.cancel("edit session cancelled")
        await self.close()

    async def close(self) -> None:
        """Release every session resource. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self._generation += 1

        # Transforms and preview writes still running read session rasters
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        self._current = None
        self.resources.release_all()
        self._uploader._session_closed(self)
        logger.info(f"Session {self.id}: closed")

    async def _in_flight(self, awaitable):
        """Await worker-thread work that close() must wait for."""
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        try:
            return await task
        finally:
            self._pending.discard(task)

    def _is_stale(self, generation: int) -> bool:
        return self.closed or generation != self._generation

    def _ensure_active(self) -> None:
        if self.closed:
            raise CancelledError(f"Edit session {self.id} has ended")

    async def __aenter__(self) -> "EditSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class ImageUploader:
    """
    Entry point of the image pipeline.

    Holds the pipeline services and at most one active edit session.
    Selecting a new file tears the previous session down first.
    """

    def __init__(
        self,
        loader: Optional[ImageLoaderService] = None,
        transform_service: Optional[TransformService] = None,
        blurhash_service: Optional[BlurhashService] = None,
        payload_service: Optional[PayloadService] = None,
        upload_service: Optional[UploadService] = None,
        notifications: Optional[NotificationService] = None,
        temp_dir: Optional[str] = None
    ):
        self.loader = loader or ImageLoaderService()
        self.transform_service = transform_service or TransformService()
        self.blurhash_service = blurhash_service or BlurhashService()
        self.payload_service = payload_service or PayloadService()
        self.upload_service = upload_service or UploadService()
        self.notifications = notifications or NotificationService()
        self.temp_dir = temp_dir

        self._session: Optional[EditSession] = None
        self._selection_token: Optional[CancellationToken] = None

    @property
    def session(self) -> Optional[EditSession]:
        return self._session

    async def select(self, source: SourceFile) -> EditSession:
        """
        Start an edit session for a selected file.

        Args:
            source: Selected file

        Returns:
            EditSession: The new active session

        Raises:
            UploadRejectedError: If the file exceeds the upload size limit
            DecodeError: If the file cannot be decoded
            CancelledError: If another selection replaced this one meanwhile
        """
        await self.close()

        token = CancellationToken()
        self._selection_token = token

        try:
            self.upload_service.validate_size(source)
            raster = await self.loader.load(source)
        except ImagePipelineError as e:
            if token.cancelled or self._selection_token is not token:
                raise CancelledError(f"Selection of {source.name} was replaced") from e
            self._selection_token = None
            self.notifications.notify_failure(e)
            raise

        if token.cancelled or self._selection_token is not token:
            raster.release()
            raise CancelledError(f"Selection of {source.name} was replaced")

        self._selection_token = None

        resources = ResourceManager(self.temp_dir)
        resources.track(raster)

        session = EditSession(source, raster, self, resources, token)
        self._session = session
        logger.info(f"Session {session.id}: started for {source.name} ({raster.width}x{raster.height})")
        return session

    async def open_file(self, file_path: str) -> EditSession:
        """Read a local file and start an edit session for it."""
        try:
            source = await self.loader.read_file(file_path)
        except ImagePipelineError as e:
            self.notifications.notify_failure(e)
            raise
        return await self.select(source)

    async def hash_remote(self, url: str) -> str:
        """
        Compute the blurhash of an already published image.

        Raises:
            DecodeError: If the image cannot be downloaded or decoded
        """
        with await self.loader.load_from_url(url) as raster:
            return await asyncio.to_thread(self.blurhash_service.encode, raster)

    async def close(self) -> None:
        """Tear down the active session and any selection still loading."""
        if self._selection_token is not None:
            self._selection_token.cancel("selection replaced")
            self._selection_token = None

        if self._session is not None:
            await self._session.cancel()

    def _session_closed(self, session: EditSession) -> None:
        if self._session is session:
            self._session = None

    async def __aenter__(self) -> "ImageUploader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
