"""Filesystem-backed media storage and thumbnail processing.

Blobs live under {blob_dir}/{bucket}/{job_id}/...; media rows are kept
as one JSON document per media id under {blob_dir}/_media/. Used when
no remote backend is configured, and by the tests.
"""

from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path
from typing import Any

from PIL import Image

from fieldmedia.config import get_settings
from fieldmedia.models.base import new_id, utcnow
from fieldmedia.services.collaborators import BlobStore, MetadataStore, ProcessingTrigger

THUMB_SIZE = (400, 400)


class LocalBlobStore(BlobStore):
    def __init__(self, base_dir: str | Path | None = None, bucket: str | None = None):
        settings = get_settings()
        self.base_dir = Path(base_dir or settings.blob_dir)
        self.bucket = bucket or settings.queue.storage_bucket

    def path_for(self, path: str) -> Path:
        target = (self.base_dir / self.bucket / path).resolve()
        root = (self.base_dir / self.bucket).resolve()
        if root not in target.parents:
            raise ValueError(f"Storage path escapes bucket: {path}")
        return target

    def _write_sync(self, path: str, data: bytes):
        target = self.path_for(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._write_sync, path, data)

    async def read(self, path: str) -> bytes:
        target = self.path_for(path)
        if not target.exists():
            raise FileNotFoundError(f"Blob not found: {path}")
        return await asyncio.to_thread(target.read_bytes)

    async def signed_url(self, path: str, expires_in: int) -> str:
        return f"{self.path_for(path).as_uri()}?expires_in={expires_in}"


class LocalMetadataStore(MetadataStore):
    def __init__(self, base_dir: str | Path | None = None):
        self.base_dir = Path(base_dir or get_settings().blob_dir) / "_media"

    def _write_sync(self, record: dict[str, Any]):
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / f"{record['id']}.json").write_text(json.dumps(record, default=str))

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        row = {"id": new_id(), "created_at": utcnow().isoformat(), **record}
        await asyncio.to_thread(self._write_sync, row)
        return row

    async def get(self, media_id: str) -> dict[str, Any] | None:
        path = self.base_dir / f"{media_id}.json"
        if not path.exists():
            return None
        return json.loads(await asyncio.to_thread(path.read_text))

    async def update(self, media_id: str, **fields) -> dict[str, Any]:
        row = await self.get(media_id)
        if row is None:
            raise KeyError(media_id)
        row.update(fields)
        await asyncio.to_thread(self._write_sync, row)
        return row


def make_thumbnail(data: bytes, size: tuple[int, int] = THUMB_SIZE) -> bytes:
    img = Image.open(io.BytesIO(data))
    img = img.convert("RGB")
    img.thumbnail(size)
    buf = io.BytesIO()
    img.save(buf, "JPEG", quality=85)
    return buf.getvalue()


class ThumbnailProcessor(ProcessingTrigger):
    """Writes a JPEG thumbnail next to the stored original and marks the row ready."""

    def __init__(self, blobs: LocalBlobStore, metadata: LocalMetadataStore | None = None):
        self.blobs = blobs
        self.metadata = metadata

    @staticmethod
    def thumbnail_path(storage_path: str) -> str:
        return f"{storage_path.rsplit('.', 1)[0]}.thumb.jpg"

    async def trigger(self, media_id: str, storage_path: str, bucket: str) -> None:
        data = await self.blobs.read(storage_path)
        thumb = await asyncio.to_thread(make_thumbnail, data)
        thumb_path = self.thumbnail_path(storage_path)
        await self.blobs.put(thumb_path, thumb, "image/jpeg")
        if self.metadata is not None:
            await self.metadata.update(media_id, status="ready", thumbnail_path=thumb_path)
