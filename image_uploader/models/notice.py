"""User-facing notice model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class NoticeLevel(str, Enum):
    """Notice severity levels."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    LOADING = "loading"


@dataclass(frozen=True)
class Notice:
    """A human-readable message shown to the user."""
    level: NoticeLevel
    title: str
    description: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
