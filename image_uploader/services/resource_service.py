"""Resource Service for ephemeral preview handles.

A preview handle is a temporary WebP file written for an intermediate
raster so a viewer can display it. At most one handle is current per edit
session; adopting a new file releases the previous handle.
"""

import logging
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

from image_uploader.config import settings
from image_uploader.models.media import RasterImage


logger = logging.getLogger(__name__)


class ResourceManager:
    """
    Tracks preview handles and rasters created during one edit session.

    ``release_all()`` runs on every exit path (confirm, cancel, failure or
    teardown) and may be called any number of times.
    """

    def __init__(self, temp_dir: Optional[str] = None, prefix: str = "preview"):
        """
        Initialize the resource manager.

        Args:
            temp_dir: Directory for preview files. Defaults to settings, then system temp.
            prefix: File name prefix for preview files
        """
        directory = temp_dir or settings.PREVIEW_TEMP_DIR
        self.temp_dir = Path(directory) if directory else Path(tempfile.gettempdir())
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix

        self._current_handle: Optional[Path] = None
        self._rasters: List[RasterImage] = []
        self.closed = False

    @property
    def current_handle(self) -> Optional[Path]:
        return self._current_handle

    @property
    def tracked_rasters(self) -> List[RasterImage]:
        return list(self._rasters)

    def show(self, raster: RasterImage) -> Path:
        """
        Create the current preview handle for ``raster``.

        The previous handle is released once the new one is written.

        Returns:
            Path: Temporary preview file
        """
        return self.adopt(self.write(raster))

    def write(self, raster: RasterImage) -> Path:
        """
        Write ``raster`` to a new preview file without making it current.

        Touches no manager state, so it may run in a worker thread while
        other handles are adopted or released.

        Returns:
            Path: Temporary preview file, owned by the caller until adopted
        """
        self._ensure_open()

        handle = self.temp_dir / f"{self.prefix}_{uuid.uuid4().hex}.webp"
        try:
            raster.image.save(handle, format="WEBP", lossless=True)
        except Exception:
            # Partially written file must not outlive the failed call
            handle.unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote preview file: {handle}")
        return handle

    def adopt(self, handle: Path) -> Path:
        """Make a written preview file the current handle, releasing the previous one."""
        if self.closed:
            self.discard(handle)
            raise RuntimeError("Resource manager has already been released")

        self.release_handle()
        self._current_handle = handle
        logger.debug(f"Created preview handle: {handle}")
        return handle

    def discard(self, handle: Path) -> None:
        """Delete a preview file that never became current."""
        try:
            handle.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove preview file {handle}: {str(e)}")

    def release_handle(self) -> None:
        """Delete the current preview file, if any."""
        handle = self._current_handle
        self._current_handle = None
        if handle is not None:
            try:
                handle.unlink(missing_ok=True)
                logger.debug(f"Released preview handle: {handle}")
            except OSError as e:
                logger.warning(f"Failed to remove preview handle {handle}: {str(e)}")

    def track(self, raster: RasterImage) -> RasterImage:
        """Register a raster to be released with the session."""
        self._ensure_open()
        if raster not in self._rasters:
            self._rasters.append(raster)
        return raster

    def release(self, raster: RasterImage) -> None:
        """Release one tracked raster now."""
        if raster in self._rasters:
            self._rasters.remove(raster)
        raster.release()

    def release_all(self) -> None:
        """Release every tracked handle and raster."""
        self.release_handle()

        rasters, self._rasters = self._rasters, []
        for raster in rasters:
            raster.release()

        if not self.closed:
            logger.debug(f"Released {len(rasters)} raster(s)")
        self.closed = True

    def _ensure_open(self) -> None:
        if self.closed:
            raise RuntimeError("Resource manager has already been released")

    def __enter__(self) -> "ResourceManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release_all()
