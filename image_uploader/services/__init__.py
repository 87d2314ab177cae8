"""Image pipeline services."""

from .image_loader_service import ImageLoaderService
from .transform_service import TransformService
from .blurhash_service import BlurhashService
from .payload_service import PayloadService
from .upload_service import UploadService
from .resource_service import ResourceManager
from .notification_service import NotificationService
from .uploader_service import ImageUploader, EditSession

__all__ = [
    "ImageLoaderService",
    "TransformService",
    "BlurhashService",
    "PayloadService",
    "UploadService",
    "ResourceManager",
    "NotificationService",
    "ImageUploader",
    "EditSession",
]
