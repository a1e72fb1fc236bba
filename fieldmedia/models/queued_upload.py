"""Local upload queue table.

Lives in its own database (the device-local queue), separate from the
annotation tables, so it has its own declarative base.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Integer, DateTime, JSON, LargeBinary, Boolean, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fieldmedia.models.base import new_id, utcnow


class QueueBase(DeclarativeBase):
    pass


class QueuedUploadRow(QueueBase):
    __tablename__ = "uploads"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(String(64), index=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    category: Mapped[str] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    file_blob: Mapped[bytes] = mapped_column(LargeBinary)
    encrypted: Mapped[bool] = mapped_column(Boolean, default=False)
    file_name: Mapped[str] = mapped_column(String(255))
    mime_type: Mapped[str] = mapped_column(String(100))
    file_size: Mapped[int] = mapped_column(Integer)

    exif_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    gps_position: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    queued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
