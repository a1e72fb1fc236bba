from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Integer, Boolean, DateTime, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldmedia.models.base import Base, ULIDMixin, utcnow


class MediaAnnotation(Base, ULIDMixin):
    """One saved version of the annotation document over a photo."""

    __tablename__ = "media_annotations"

    job_media_id: Mapped[str] = mapped_column(String(64), index=True)
    business_id: Mapped[str] = mapped_column(String(64), default="")
    version: Mapped[int] = mapped_column(Integer, default=1)
    parent_version_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True)
    annotation_data: Mapped[dict] = mapped_column(JSON)

    rendered_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    rendered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    render_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    object_count: Mapped[int] = mapped_column(Integer, default=0)
    has_text: Mapped[bool] = mapped_column(Boolean, default=False)
    has_arrows: Mapped[bool] = mapped_column(Boolean, default=False)
    has_shapes: Mapped[bool] = mapped_column(Boolean, default=False)
    has_measurements: Mapped[bool] = mapped_column(Boolean, default=False)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
