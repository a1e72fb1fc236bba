"""Versioned annotation persistence.

Each save writes a new version row and queues a render of it. Reverting
saves an old document again as the newest version. Deletion is soft.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from fieldmedia.config import AnnotationConfig, get_settings
from fieldmedia.db import crud
from fieldmedia.errors import AnnotationValidationError, NotFound
from fieldmedia.models import MediaAnnotation, RenderJob
from fieldmedia.models.base import utcnow
from fieldmedia.schemas.annotation import AnnotationData
from fieldmedia.services.annotation_validation import sanitize_annotation_data, validate_annotation_data
from fieldmedia.services.collaborators import Identity

logger = logging.getLogger(__name__)

SHAPE_TYPES = ("rect", "circle", "ellipse")


def summarize(data: AnnotationData) -> dict[str, Any]:
    types = {obj.type for obj in data.objects}
    return {
        "object_count": len(data.objects),
        "has_text": "text" in types,
        "has_arrows": "arrow" in types,
        "has_shapes": bool(types & set(SHAPE_TYPES)),
        "has_measurements": "measurement" in types,
    }


async def save_annotation(
    db: AsyncSession,
    media_id: str,
    data: Any,
    actor: Identity | None = None,
    priority: int = 0,
    config: AnnotationConfig | None = None,
) -> MediaAnnotation:
    """Validate, sanitize and store `data` as the photo's new current version.

    Raises AnnotationValidationError if validation reports errors. Warnings
    are fixed by the sanitizer and only logged.
    """
    settings = get_settings()
    config = config or settings.annotation
    result = validate_annotation_data(data, config)
    if not result.valid:
        raise AnnotationValidationError(result.errors, result.warnings)
    if result.warnings:
        logger.info("Annotation for %s saved with fixes: %s", media_id, "; ".join(result.warnings))

    clean = sanitize_annotation_data(data, config)
    current = await crud.get_current_annotation(db, media_id)
    if current is not None:
        current.is_current = False

    row = MediaAnnotation(
        job_media_id=media_id,
        business_id=actor.business_id if actor else "",
        version=await crud.get_latest_version_number(db, media_id) + 1,
        parent_version_id=current.id if current else None,
        is_current=True,
        annotation_data=clean.to_wire(),
        created_by=actor.user_id if actor else None,
        created_by_name=actor.display_name if actor else None,
        **summarize(clean),
    )
    db.add(row)
    await db.flush()
    db.add(RenderJob(annotation_id=row.id, priority=priority, max_attempts=settings.render.max_attempts))
    await db.commit()
    await db.refresh(row)
    logger.info("Saved annotation v%d for media %s", row.version, media_id)
    return row


async def get_current_annotation(db: AsyncSession, media_id: str) -> MediaAnnotation | None:
    return await crud.get_current_annotation(db, media_id)


async def list_annotation_history(db: AsyncSession, media_id: str) -> list[MediaAnnotation]:
    return await crud.list_annotation_versions(db, media_id)


async def revert_annotation(
    db: AsyncSession, media_id: str, version_id: str, actor: Identity | None = None,
) -> MediaAnnotation:
    """Save an earlier version's document as a new version."""
    version = await crud.get_annotation(db, version_id)
    if version is None or version.job_media_id != media_id or version.deleted_at is not None:
        raise NotFound(f"Annotation version {version_id} not found")
    return await save_annotation(db, media_id, version.annotation_data, actor)


async def delete_annotation(db: AsyncSession, media_id: str, actor: Identity | None = None) -> MediaAnnotation:
    """Soft-delete the current version. History rows stay readable."""
    current = await crud.get_current_annotation(db, media_id)
    if current is None:
        raise NotFound(f"No annotation for media {media_id}")
    return await crud.update_annotation(
        db, current,
        deleted_at=utcnow(),
        deleted_by=actor.user_id if actor else None,
        is_current=False,
    )


def load_document(row: MediaAnnotation) -> AnnotationData:
    return AnnotationData.model_validate(row.annotation_data)
