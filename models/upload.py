from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_TAGS = ["AI Generated", "Gemini", "VEO"]
DEFAULT_CATEGORY_ID = "28"     # Science & Technology


class Visibility(str, Enum):
    PRIVATE = "private"
    UNLISTED = "unlisted"
    PUBLIC = "public"


class UploadMetadata(BaseModel):
    title: str
    description: str = ""
    visibility: Visibility = Visibility.PRIVATE
    publish_at: datetime | None = None
    tags: list[str] = Field(default_factory=lambda: list(DEFAULT_TAGS))
    category_id: str = DEFAULT_CATEGORY_ID

    @field_validator("publish_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def effective_visibility(self) -> Visibility:
        """A scheduled video has to stay private until its publish time."""
        if self.publish_at is not None:
            return Visibility.PRIVATE
        return self.visibility

    def to_resource(self) -> dict[str, Any]:
        status: dict[str, Any] = {"privacyStatus": self.effective_visibility.value}
        if self.publish_at is not None:
            publish_at = self.publish_at.astimezone(timezone.utc)
            status["publishAt"] = publish_at.isoformat(timespec="seconds").replace("+00:00", "Z")
        return {
            "snippet": {
                "title": self.title,
                "description": self.description,
                "tags": list(self.tags),
                "categoryId": self.category_id,
            },
            "status": status,
        }


class UploadStatus(str, Enum):
    UNINITIATED = "uninitiated"
    INITIATED = "initiated"
    TRANSFERRING = "transferring"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class UploadSession:
    total_bytes: int
    location: str | None = None        # session endpoint from the initiate step
    bytes_acknowledged: int = 0        # only ever grows
    status: UploadStatus = UploadStatus.UNINITIATED
    remote_id: str | None = None

    @property
    def percent_complete(self) -> int:
        if self.total_bytes <= 0:
            return 0
        return self.bytes_acknowledged * 100 // self.total_bytes

    def initiated(self, location: str) -> None:
        self.location = location
        self.status = UploadStatus.INITIATED

    def begin_transfer(self) -> None:
        self.status = UploadStatus.TRANSFERRING

    def acknowledge(self, acknowledged: int) -> None:
        if acknowledged < self.bytes_acknowledged:
            raise ValueError(
                f"acknowledged bytes went backwards ({self.bytes_acknowledged} -> {acknowledged})"
            )
        if acknowledged > self.total_bytes:
            raise ValueError(f"acknowledged {acknowledged} of only {self.total_bytes} bytes")
        self.bytes_acknowledged = acknowledged
        self.status = UploadStatus.TRANSFERRING

    def complete(self, remote_id: str) -> None:
        self.bytes_acknowledged = self.total_bytes
        self.remote_id = remote_id
        self.status = UploadStatus.COMPLETE

    def fail(self) -> None:
        self.status = UploadStatus.FAILED
