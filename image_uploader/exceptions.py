"""Exceptions raised by the image pipeline.

Every error carries a ``user_message`` that names the action that failed
without exposing internal details. The exception message itself is meant
for logs.
"""

from typing import Optional


class ImagePipelineError(Exception):
    """Base exception for image pipeline operations."""

    user_message = "Something went wrong"

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class DecodeError(ImagePipelineError):
    """Raised when binary content cannot be decoded as an image."""

    user_message = "Could not process image"


class GeometryError(ImagePipelineError):
    """Raised when transform parameters or crop bounds are invalid."""

    user_message = "Could not process image"


class EncodeError(ImagePipelineError):
    """Raised when a raster cannot be serialized to the output format."""

    user_message = "Could not process image"


class InvalidHashError(ImagePipelineError):
    """Raised when a blurhash string fails the structural validity check."""

    user_message = "Blurhash generation failed"


class UploadError(ImagePipelineError):
    """Base exception for upload operations."""

    user_message = "Upload failed"


class UploadRejectedError(UploadError):
    """Raised when a file is rejected locally, before any network call."""
    pass


class UploadAuthError(UploadError):
    """Raised when the upload authorization phase fails."""
    pass


class UploadSubmitError(UploadError):
    """Raised when submitting the payload to storage fails."""
    pass


class CancelledError(ImagePipelineError):
    """Raised when an operation is abandoned through its cancellation token.

    Callers treat this as a non-error outcome.
    """

    user_message = "Cancelled"
