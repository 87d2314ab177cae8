"""Application configuration loaded from environment variables."""

import os
from typing import Optional, FrozenSet
from functools import lru_cache

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Core settings
    UPLOADER_DEBUG: bool = os.getenv("UPLOADER_DEBUG", "false").lower() == "true"
    UPLOADER_LOG_LEVEL: str = os.getenv("UPLOADER_LOG_LEVEL", "INFO")
    UPLOADER_LOG_TO_FILE: bool = os.getenv("UPLOADER_LOG_TO_FILE", "false").lower() == "true"
    UPLOADER_LOG_DIR: str = os.getenv("UPLOADER_LOG_DIR", "logs")

    # Upload authorization backend
    UPLOAD_API_ENDPOINT: str = os.getenv("UPLOAD_API_ENDPOINT", "http://localhost:8080/api/image")
    UPLOAD_MAX_BYTES: int = int(os.getenv("UPLOAD_MAX_BYTES", "10485760"))  # 10MB
    UPLOAD_ALLOWED_TYPES: str = os.getenv("UPLOAD_ALLOWED_TYPES", "image/webp")
    UPLOAD_TIMEOUT: float = float(os.getenv("UPLOAD_TIMEOUT", "30"))

    # Image processing
    IMAGE_MAX_DIMENSION: int = int(os.getenv("IMAGE_MAX_DIMENSION", "32767"))  # Canvas API limit
    IMAGE_OUTPUT_QUALITY: int = int(os.getenv("IMAGE_OUTPUT_QUALITY", "100"))
    URL_DOWNLOAD_TIMEOUT: int = int(os.getenv("URL_DOWNLOAD_TIMEOUT", "10"))

    # Blurhash
    BLURHASH_COMPONENTS_X: int = int(os.getenv("BLURHASH_COMPONENTS_X", "4"))
    BLURHASH_COMPONENTS_Y: int = int(os.getenv("BLURHASH_COMPONENTS_Y", "4"))
    BLURHASH_PLACEHOLDER_SIZE: int = int(os.getenv("BLURHASH_PLACEHOLDER_SIZE", "32"))

    # Preview handles
    PREVIEW_TEMP_DIR: Optional[str] = os.getenv("PREVIEW_TEMP_DIR")

    @property
    def allowed_upload_types(self) -> FrozenSet[str]:
        """Get the set of MIME types accepted for upload."""
        return frozenset(
            value.strip().lower()
            for value in self.UPLOAD_ALLOWED_TYPES.split(",")
            if value.strip()
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
