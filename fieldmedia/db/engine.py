"""Async SQLAlchemy engines and session factories."""

from __future__ import annotations

from pathlib import Path

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

_SQLITE_PREFIX = "sqlite+aiosqlite:///"


def sqlite_path(url: str) -> Path | None:
    """Filesystem path of a file-backed SQLite URL, None for memory or other backends."""
    if not url.startswith(_SQLITE_PREFIX):
        return None
    path = url[len(_SQLITE_PREFIX):]
    if not path or path == ":memory:":
        return None
    return Path(path)


def make_engine(url: str) -> AsyncEngine:
    path = sqlite_path(url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=False)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_annotation_tables(engine: AsyncEngine):
    """Create the annotation version and render job tables."""
    from fieldmedia.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request):
    """FastAPI dependency that yields an async session on the annotation DB."""
    factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with factory() as session:
        yield session
