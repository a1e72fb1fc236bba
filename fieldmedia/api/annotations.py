from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmedia.canvas import render_svg
from fieldmedia.config import get_settings
from fieldmedia.dependencies import get_db, get_lock_backend, require_actor
from fieldmedia.errors import AnnotationValidationError, NotFound
from fieldmedia.schemas import LockAcquireResult, LockState, MediaAnnotationRead, ValidationResult
from fieldmedia.services import annotation_service
from fieldmedia.services.annotation_lock import LockBackend, lock_state_from
from fieldmedia.services.annotation_validation import sanitize_annotation_data, validate_annotation_data
from fieldmedia.services.collaborators import Identity
from fieldmedia.services.render_queue import process_render_queue

router = APIRouter(tags=["annotations"])


# ── Stateless document tools ─────────────────────────────

@router.post("/api/annotations/validate", response_model=ValidationResult)
async def validate_document(data: Any = Body(...)):
    return validate_annotation_data(data)


@router.post("/api/annotations/sanitize")
async def sanitize_document(data: Any = Body(...)):
    return sanitize_annotation_data(data).to_wire()


@router.post("/api/annotations/render.svg")
async def render_document(data: Any = Body(...)):
    svg = render_svg(sanitize_annotation_data(data))
    return Response(content=svg, media_type="image/svg+xml")


@router.post("/api/annotations/render-queue/process")
async def run_render_queue(db: AsyncSession = Depends(get_db)):
    return {"results": await process_render_queue(db)}


# ── Versioned annotations per photo ──────────────────────

@router.get("/api/media/{media_id}/annotation", response_model=MediaAnnotationRead)
async def get_annotation(media_id: str, db: AsyncSession = Depends(get_db)):
    row = await annotation_service.get_current_annotation(db, media_id)
    if not row:
        raise HTTPException(404, "Annotation not found")
    return row


@router.put("/api/media/{media_id}/annotation", response_model=MediaAnnotationRead)
async def save_annotation(
    media_id: str,
    data: Any = Body(...),
    actor: Identity = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await annotation_service.save_annotation(db, media_id, data, actor)
    except AnnotationValidationError as exc:
        raise HTTPException(422, {"errors": exc.errors, "warnings": exc.warnings}) from exc


@router.delete("/api/media/{media_id}/annotation", response_model=MediaAnnotationRead)
async def delete_annotation(
    media_id: str,
    actor: Identity = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await annotation_service.delete_annotation(db, media_id, actor)
    except NotFound as exc:
        raise HTTPException(404, str(exc)) from exc


@router.get("/api/media/{media_id}/annotation/history", response_model=list[MediaAnnotationRead])
async def annotation_history(media_id: str, db: AsyncSession = Depends(get_db)):
    return await annotation_service.list_annotation_history(db, media_id)


@router.post("/api/media/{media_id}/annotation/revert/{version_id}", response_model=MediaAnnotationRead)
async def revert_annotation(
    media_id: str,
    version_id: str,
    actor: Identity = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await annotation_service.revert_annotation(db, media_id, version_id, actor)
    except NotFound as exc:
        raise HTTPException(404, str(exc)) from exc
    except AnnotationValidationError as exc:
        raise HTTPException(422, {"errors": exc.errors, "warnings": exc.warnings}) from exc


# ── Edit locks ───────────────────────────────────────────

@router.get("/api/media/{media_id}/lock", response_model=LockState)
async def get_lock(
    media_id: str,
    actor: Identity = Depends(require_actor),
    backend: LockBackend = Depends(get_lock_backend),
):
    return lock_state_from(await backend.get(media_id), actor.user_id)


@router.post("/api/media/{media_id}/lock", response_model=LockAcquireResult)
async def acquire_lock(
    media_id: str,
    ttl_seconds: int | None = None,
    actor: Identity = Depends(require_actor),
    backend: LockBackend = Depends(get_lock_backend),
):
    ttl = ttl_seconds or get_settings().lock.ttl_seconds
    result = await backend.acquire(media_id, actor.user_id, ttl)
    if not result.success:
        raise HTTPException(409, result.model_dump(mode="json"))
    return result


@router.delete("/api/media/{media_id}/lock")
async def release_lock(
    media_id: str,
    actor: Identity = Depends(require_actor),
    backend: LockBackend = Depends(get_lock_backend),
):
    return {"released": await backend.release(media_id, actor.user_id)}
