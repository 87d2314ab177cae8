"""Image pipeline data models."""

from .media import SourceFile, RasterImage, CropRegion, TransformParams
from .upload import UploadDescriptor, UploadAuthorizationRequest, FileUploadRequest, UploadOutcome
from .notice import Notice, NoticeLevel

__all__ = [
    "SourceFile",
    "RasterImage",
    "CropRegion",
    "TransformParams",
    "UploadDescriptor",
    "UploadAuthorizationRequest",
    "FileUploadRequest",
    "UploadOutcome",
    "Notice",
    "NoticeLevel",
]
