from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    FAILED = "failed"


class MediaCategory(str, Enum):
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"
    ISSUE = "issue"
    EQUIPMENT = "equipment"
    OTHER = "other"


class ExifData(BaseModel):
    captured_at: str | None = None
    device_make: str | None = None
    device_model: str | None = None
    gps_latitude: float | None = None
    gps_longitude: float | None = None


class GpsPosition(BaseModel):
    latitude: float
    longitude: float


class QueuedUpload(BaseModel):
    """One pending media upload as held by the queue store."""

    id: str
    job_id: str
    customer_id: str | None = None
    category: MediaCategory = MediaCategory.OTHER
    description: str | None = None
    file_blob: bytes = Field(default=b"", repr=False)
    file_name: str
    mime_type: str = "application/octet-stream"
    file_size: int = 0
    exif_data: ExifData | None = None
    gps_position: GpsPosition | None = None
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempt_count: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    status: UploadStatus = UploadStatus.PENDING
    # Process-local; never written to the store.
    local_preview_url: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("queued_at", "last_attempt_at", "next_attempt_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class QueuedUploadRead(BaseModel):
    """Queue item without its payload, for listings."""

    id: str
    job_id: str
    category: MediaCategory
    description: str | None = None
    file_name: str
    mime_type: str
    file_size: int
    queued_at: datetime
    attempt_count: int
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    status: UploadStatus
    local_preview_url: str | None = None

    model_config = {"from_attributes": True}


class AddResult(BaseModel):
    success: bool
    warning: str | None = None
    error: str | None = None


class QueueUploadResult(BaseModel):
    success: bool
    id: str | None = None
    local_preview_url: str | None = None
    warning: str | None = None
    error: str | None = None


class QueueStatus(BaseModel):
    item_count: int = 0
    total_bytes: int = 0
    pending: int = 0
    uploading: int = 0
    failed: int = 0
    is_processing: bool = False

    @property
    def sync_state(self) -> str:
        """synced | syncing | pending | error (offline is decided by the engine)."""
        if self.uploading:
            return "syncing"
        if self.failed:
            return "error"
        if self.pending:
            return "pending"
        return "synced"
