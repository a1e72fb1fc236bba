"""CRUD operations for annotation versions and render jobs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmedia.models import MediaAnnotation, RenderJob


# ── MediaAnnotation ──────────────────────────────────────

async def get_annotation(db: AsyncSession, annotation_id: str) -> MediaAnnotation | None:
    return await db.get(MediaAnnotation, annotation_id)


async def get_current_annotation(db: AsyncSession, media_id: str) -> MediaAnnotation | None:
    result = await db.execute(
        select(MediaAnnotation).where(
            MediaAnnotation.job_media_id == media_id,
            MediaAnnotation.is_current.is_(True),
            MediaAnnotation.deleted_at.is_(None),
        )
    )
    return result.scalars().first()


async def list_annotation_versions(db: AsyncSession, media_id: str) -> list[MediaAnnotation]:
    """Live versions for a photo, newest first."""
    result = await db.execute(
        select(MediaAnnotation)
        .where(MediaAnnotation.job_media_id == media_id, MediaAnnotation.deleted_at.is_(None))
        .order_by(MediaAnnotation.version.desc())
    )
    return list(result.scalars().all())


async def get_latest_version_number(db: AsyncSession, media_id: str) -> int:
    """Highest version ever written for the photo, deleted rows included."""
    result = await db.execute(
        select(func.max(MediaAnnotation.version)).where(MediaAnnotation.job_media_id == media_id)
    )
    return result.scalar() or 0


async def update_annotation(db: AsyncSession, annotation: MediaAnnotation, **kwargs) -> MediaAnnotation:
    for k, v in kwargs.items():
        setattr(annotation, k, v)
    await db.commit()
    await db.refresh(annotation)
    return annotation


# ── RenderJob ────────────────────────────────────────────

async def list_render_jobs(db: AsyncSession, annotation_id: str) -> list[RenderJob]:
    result = await db.execute(
        select(RenderJob).where(RenderJob.annotation_id == annotation_id).order_by(RenderJob.created_at)
    )
    return list(result.scalars().all())


async def get_due_render_jobs(db: AsyncSession, now: datetime, limit: int) -> list[RenderJob]:
    """Pending jobs whose retry time has passed, highest priority then oldest first."""
    result = await db.execute(
        select(RenderJob)
        .where(
            RenderJob.status == "pending",
            (RenderJob.next_retry_at.is_(None)) | (RenderJob.next_retry_at <= now),
        )
        .order_by(RenderJob.priority.desc(), RenderJob.created_at, RenderJob.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def update_render_job(db: AsyncSession, job: RenderJob, **kwargs) -> RenderJob:
    for k, v in kwargs.items():
        setattr(job, k, v)
    await db.commit()
    await db.refresh(job)
    return job
