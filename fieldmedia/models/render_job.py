from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Integer, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldmedia.models.base import Base, ULIDMixin


class RenderJob(Base, ULIDMixin):
    __tablename__ = "render_jobs"

    annotation_id: Mapped[str] = mapped_column(String(26), ForeignKey("media_annotations.id"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending | processing | completed | failed
    priority: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
