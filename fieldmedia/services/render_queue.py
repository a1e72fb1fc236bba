"""Render queue worker: flattens saved annotation versions to files."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from fieldmedia.canvas import CanvasRenderer, SvgRenderer
from fieldmedia.config import RenderConfig, get_settings
from fieldmedia.db import crud
from fieldmedia.errors import RenderFailure
from fieldmedia.models import MediaAnnotation
from fieldmedia.models.base import utcnow
from fieldmedia.services.annotation_service import load_document

logger = logging.getLogger(__name__)

_EXTENSIONS = {"svg": "svg", "png": "png", "jpeg": "jpg"}


def render_retry_delay(attempts: int, base: float) -> float:
    """2^attempts × base seconds."""
    return (2 ** attempts) * base


class LocalRenderOutput:
    """Writes rendered files under {output_dir}/{business_id}/."""

    def __init__(self, output_dir: str | Path | None = None):
        self.output_dir = Path(output_dir or get_settings().render.output_dir)

    def _write_sync(self, relative: str, content: bytes) -> str:
        target = self.output_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target.resolve().as_uri()

    async def save(self, annotation: MediaAnnotation, content: bytes | str, extension: str) -> str:
        if isinstance(content, str):
            content = content.encode("utf-8")
        stamp = int(utcnow().timestamp() * 1000)
        relative = f"{annotation.business_id or 'shared'}/{annotation.id}_{stamp}.{extension}"
        return await asyncio.to_thread(self._write_sync, relative, content)


def render_annotation(
    annotation: MediaAnnotation,
    renderer_factory: Callable[[], CanvasRenderer] = SvgRenderer,
    format: str = "svg",
) -> bytes | str:
    document = load_document(annotation)
    if not document.canvas.width or not document.canvas.height:
        raise RenderFailure("Invalid canvas dimensions")
    renderer = renderer_factory()
    renderer.mount()
    try:
        renderer.draw(document)
        return renderer.export(format)
    finally:
        renderer.unmount()


async def process_render_queue(
    db: AsyncSession,
    output: LocalRenderOutput | None = None,
    renderer_factory: Callable[[], CanvasRenderer] = SvgRenderer,
    format: str = "svg",
    config: RenderConfig | None = None,
) -> list[dict[str, Any]]:
    """Render up to `batch_size` due jobs. Returns one result dict per job."""
    config = config or get_settings().render
    output = output or LocalRenderOutput(config.output_dir)
    jobs = await crud.get_due_render_jobs(db, utcnow(), config.batch_size)
    if not jobs:
        return []

    results = []
    for job in jobs:
        attempts = job.attempts + 1
        await crud.update_render_job(db, job, status="processing", started_at=utcnow(), attempts=attempts)
        annotation = await crud.get_annotation(db, job.annotation_id)
        try:
            if annotation is None or annotation.deleted_at is not None:
                raise RenderFailure("Annotation not found")
            content = render_annotation(annotation, renderer_factory, format)
            url = await output.save(annotation, content, _EXTENSIONS.get(format, format))
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.warning("Render job %s failed: %s", job.id, message)
            max_attempts = job.max_attempts or config.max_attempts
            will_retry = attempts < max_attempts
            if will_retry:
                delay = render_retry_delay(attempts, config.base_retry_delay)
                await crud.update_render_job(
                    db, job,
                    status="pending",
                    last_error=message,
                    next_retry_at=utcnow() + timedelta(seconds=delay),
                )
            else:
                await crud.update_render_job(
                    db, job, status="failed", last_error=message, completed_at=utcnow(),
                )
                if annotation is not None:
                    await crud.update_annotation(db, annotation, render_error=message)
            results.append({
                "job_id": job.id,
                "annotation_id": job.annotation_id,
                "status": "failed",
                "error": message,
                "will_retry": will_retry,
            })
            continue

        now = utcnow()
        await crud.update_annotation(db, annotation, rendered_url=url, rendered_at=now, render_error=None)
        await crud.update_render_job(db, job, status="completed", completed_at=now, last_error=None)
        logger.info("Rendered annotation %s to %s", annotation.id, url)
        results.append({
            "job_id": job.id,
            "annotation_id": job.annotation_id,
            "status": "completed",
            "rendered_url": url,
        })

    return results
