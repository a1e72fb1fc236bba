"""FastAPI dependency providers for the engine, lock backend and actor."""

from __future__ import annotations

from fastapi import HTTPException, Request

from fieldmedia.db.engine import get_db
from fieldmedia.errors import NotAuthenticated
from fieldmedia.services.annotation_lock import LockBackend
from fieldmedia.services.collaborators import Identity
from fieldmedia.services.upload_queue import UploadQueueEngine

__all__ = ["get_db", "get_upload_engine", "get_lock_backend", "require_actor"]


def get_upload_engine(request: Request) -> UploadQueueEngine:
    engine = getattr(request.app.state, "upload_engine", None)
    if engine is None:
        raise HTTPException(503, "Upload queue not available")
    return engine


def get_lock_backend(request: Request) -> LockBackend:
    return request.app.state.lock_backend


async def require_actor(request: Request) -> Identity:
    """Resolve the acting user through the configured identity resolver."""
    try:
        return await request.app.state.identity.resolve()
    except NotAuthenticated as exc:
        raise HTTPException(401, str(exc)) from exc
