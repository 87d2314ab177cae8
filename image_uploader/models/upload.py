"""Upload protocol models.

UploadDescriptor mirrors the authorization response of the upload backend
(``{"file": {...}}``). Wire names are snake_case; attribute names describe
what each value is used for.
"""

from dataclasses import dataclass
from typing import Dict, Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileUploadRequest(BaseModel):
    """Single file entry of an authorization request."""
    name: str = Field(..., min_length=1, description="Display name of the file")
    size: int = Field(..., gt=0, description="Payload size in bytes")
    type: str = Field(..., min_length=1, description="MIME type of the payload")


class UploadAuthorizationRequest(BaseModel):
    """Body of ``POST {endpoint}/upload``."""
    files: List[FileUploadRequest]


class UploadDescriptor(BaseModel):
    """Signed upload target returned by the authorization backend."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    storage_key: str = Field(..., alias="key")
    file_name: str = Field(..., alias="file_name")
    file_type: str = Field(..., alias="file_type")
    public_file_url: str = Field(..., alias="file_url")
    target_url: str = Field(..., alias="url", description="Signed URL to submit the payload to")
    form_fields: Dict[str, str] = Field(..., alias="fields")
    correlation_id: Optional[str] = Field(None, alias="custom_id")

    # Informational values the storage provider returns alongside the target
    content_disposition: Optional[str] = Field(None, alias="content_disposition")
    polling_jwt: Optional[str] = Field(None, alias="polling_jwt")
    polling_url: Optional[str] = Field(None, alias="polling_url")

    @field_validator(
        "storage_key", "file_name", "file_type", "public_file_url", "target_url",
        "correlation_id", "content_disposition", "polling_jwt", "polling_url",
        mode="before"
    )
    @classmethod
    def stringify_scalar(cls, value):
        """Accept numbers and booleans where strings are expected."""
        return _stringify(value)

    @field_validator("form_fields", mode="before")
    @classmethod
    def validate_form_fields(cls, value):
        """Form fields must be a flat mapping of scalar values."""
        if not isinstance(value, dict):
            raise ValueError("Expected property 'fields' to be an object")
        return {str(k): _stringify(v) for k, v in value.items()}

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, value: str) -> str:
        """The submit target must be an absolute HTTP(S) URL."""
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Invalid upload URL: {value}")
        return value


def _stringify(value):
    # bool is checked before int/float because it is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


@dataclass
class UploadOutcome:
    """Result of confirming one edit session."""
    url: Optional[str] = None
    blurhash: Optional[str] = None
    placeholder: Optional[str] = None  # data URL rendered from blurhash

    @property
    def uploaded(self) -> bool:
        return self.url is not None
