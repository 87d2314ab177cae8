"""Upload Service for the two-phase signed upload protocol.

Phase 1 (authorize): ``POST {endpoint}/upload`` with the file's name, size and
type. The backend answers with a signed target URL and the form fields the
storage provider requires.

Phase 2 (submit): multipart ``POST`` of every form field plus the payload
under ``file`` to the signed URL.

Both phases share one cancellation token. Neither phase is retried.
"""

import logging
from typing import Callable, FrozenSet, Optional

import httpx
from pydantic import ValidationError

from image_uploader.config import settings
from image_uploader.exceptions import (
    UploadRejectedError,
    UploadAuthError,
    UploadSubmitError,
)
from image_uploader.models.media import SourceFile
from image_uploader.models.upload import (
    FileUploadRequest,
    UploadAuthorizationRequest,
    UploadDescriptor,
)
from image_uploader.utils.cancellation import CancellationToken


logger = logging.getLogger(__name__)


# Multipart field carrying the binary payload
FILE_FIELD = "file"


class UploadService:
    """
    Service uploading one file through the authorize/submit handshake.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        max_bytes: Optional[int] = None,
        allowed_types: Optional[FrozenSet[str]] = None,
        timeout: Optional[float] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None
    ):
        """
        Initialize the upload service.

        Args:
            endpoint: Base URL of the upload authorization API. Defaults to settings.
            max_bytes: Maximum payload size. Defaults to settings.
            allowed_types: Accepted MIME types. Defaults to settings.
            timeout: Per-request timeout in seconds. Defaults to settings.
            client_factory: Builds the HTTP client used for both phases.
        """
        self.endpoint = (endpoint or settings.UPLOAD_API_ENDPOINT).rstrip("/")
        self.max_bytes = max_bytes or settings.UPLOAD_MAX_BYTES
        self.allowed_types = allowed_types or settings.allowed_upload_types
        self.timeout = timeout or settings.UPLOAD_TIMEOUT
        self._client_factory = client_factory or self._default_client

    @property
    def authorize_url(self) -> str:
        return f"{self.endpoint}/upload"

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    def validate(self, source: SourceFile) -> None:
        """
        Check a file against the local upload constraints.

        Raises:
            UploadRejectedError: If the file is empty, too large or of a
                type that is not accepted
        """
        self.validate_size(source)

        if source.mime_type.lower() not in self.allowed_types:
            raise UploadRejectedError(
                f"Unsupported file type: {source.mime_type}. "
                f"Allowed types: {', '.join(sorted(self.allowed_types))}"
            )

    def validate_size(self, source: SourceFile) -> None:
        """
        Check a file is not empty and within the byte limit.

        Raises:
            UploadRejectedError: If the file is empty or too large
        """
        if source.size <= 0:
            raise UploadRejectedError(f"File is empty: {source.name}")

        if source.size > self.max_bytes:
            size_mb = source.size / (1024 * 1024)
            max_mb = self.max_bytes / (1024 * 1024)
            raise UploadRejectedError(
                f"File size {size_mb:.1f}MB exceeds maximum {max_mb:.0f}MB",
                user_message=f"Image must be less than {max_mb:.0f}MB"
            )

    async def upload(
        self,
        source: SourceFile,
        token: Optional[CancellationToken] = None
    ) -> str:
        """
        Upload a file and return its public URL.

        Args:
            source: Payload to upload
            token: Cancellation token shared by both phases

        Returns:
            str: Public URL of the stored file

        Raises:
            UploadRejectedError: If the file fails local validation (no network call)
            UploadAuthError: If phase 1 fails; phase 2 is not attempted
            UploadSubmitError: If phase 2 fails
            CancelledError: If the token fires before the upload completes
        """
        token = token or CancellationToken()

        self.validate(source)
        token.raise_if_cancelled()

        logger.info(f"Uploading {source.name} ({source.size} bytes, {source.mime_type})")

        async with self._client_factory() as client:
            descriptor = await token.run(self.authorize(client, source))

            token.raise_if_cancelled()

            await token.run(self.submit(client, descriptor, source))

        logger.info(f"Upload complete: {source.name} -> {descriptor.public_file_url}")
        return descriptor.public_file_url

    async def authorize(self, client: httpx.AsyncClient, source: SourceFile) -> UploadDescriptor:
        """
        Phase 1: request a signed upload target.

        Raises:
            UploadAuthError: On transport failure, non-2xx status or a
                malformed response
        """
        body = UploadAuthorizationRequest(
            files=[FileUploadRequest(name=source.name, size=source.size, type=source.mime_type)]
        )

        try:
            response = await client.post(self.authorize_url, json=body.model_dump())
        except httpx.TimeoutException as e:
            raise UploadAuthError(f"Upload authorization timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise UploadAuthError(f"Upload authorization request failed: {str(e)}") from e

        if not response.is_success:
            raise UploadAuthError(
                f"Failed to authorize upload (status: {response.status_code} - {response.reason_phrase})"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UploadAuthError(f"Upload authorization returned invalid JSON: {str(e)}") from e

        if not isinstance(data, dict) or not isinstance(data.get("file"), dict):
            raise UploadAuthError("Upload authorization response is missing 'file'")

        try:
            descriptor = UploadDescriptor.model_validate(data["file"])
        except ValidationError as e:
            raise UploadAuthError(f"Invalid upload descriptor: {str(e)}") from e

        logger.debug(f"Authorized upload of {source.name}: key={descriptor.storage_key}")
        return descriptor

    async def submit(
        self,
        client: httpx.AsyncClient,
        descriptor: UploadDescriptor,
        source: SourceFile
    ) -> None:
        """
        Phase 2: post the payload to the signed target URL.

        Raises:
            UploadSubmitError: On transport failure or non-2xx status
        """
        files = {FILE_FIELD: (source.name, source.content, source.mime_type)}

        try:
            response = await client.post(
                descriptor.target_url,
                data=dict(descriptor.form_fields),
                files=files
            )
        except httpx.TimeoutException as e:
            raise UploadSubmitError(f"Upload to storage timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise UploadSubmitError(f"Upload to storage failed: {str(e)}") from e

        if not response.is_success:
            raise UploadSubmitError(f"Failed to upload file to storage (status: {response.status_code})")
