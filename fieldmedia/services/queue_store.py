"""Persistent upload queue store backed by a device-local SQLite database.

Records are keyed by id and hold the binary payload next to its metadata,
so one committed write stores both. Every mutation commits before it
returns: a crash mid-upload leaves the record `pending` or `uploading`,
never silently lost.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fieldmedia.config import QueueConfig, get_settings
from fieldmedia.db.engine import make_engine, make_session_factory
from fieldmedia.errors import NotFound, QueueFull, StoreUnavailable
from fieldmedia.models.queued_upload import QueueBase, QueuedUploadRow
from fieldmedia.schemas.upload import AddResult, QueuedUpload, QueueStatus, UploadStatus
from fieldmedia.services.encryption import decrypt_bytes, encrypt_bytes

logger = logging.getLogger(__name__)


def _column_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


class UploadQueueStore:
    def __init__(
        self,
        database_url: str | None = None,
        config: QueueConfig | None = None,
        fernet_key: str = "",
    ):
        settings = get_settings()
        self.config = config or settings.queue
        self.database_url = database_url or self.config.database_url
        self._fernet_key = fernet_key or (settings.fernet_key if self.config.encrypt_at_rest else "")
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None
        self._admission = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._sessions is not None

    async def open(self) -> None:
        """Create the queue table if needed. Safe to call repeatedly.

        Rows left `uploading` by an interrupted process go back to `pending`
        with their attempt count untouched.
        """
        if self._sessions is not None:
            return
        engine = None
        try:
            engine = make_engine(self.database_url)
            async with engine.begin() as conn:
                await conn.run_sync(QueueBase.metadata.create_all)
                result = await conn.execute(
                    update(QueuedUploadRow)
                    .where(QueuedUploadRow.status == UploadStatus.UPLOADING.value)
                    .values(status=UploadStatus.PENDING.value)
                )
        except (SQLAlchemyError, OSError) as exc:
            if engine is not None:
                await engine.dispose()
            raise StoreUnavailable(f"Cannot open upload queue at {self.database_url}: {exc}") from exc

        if result.rowcount:
            logger.info("Recovered %d interrupted uploads", result.rowcount)
        self._engine = engine
        self._sessions = make_session_factory(engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None

    async def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            await self.open()
        return self._sessions

    # ── payload sealing ──────────────────────────────────────

    def _seal(self, data: bytes) -> bytes:
        return encrypt_bytes(data, self._fernet_key) if self._fernet_key else data

    def _to_schema(self, row: QueuedUploadRow) -> QueuedUpload:
        item = QueuedUpload.model_validate(row)
        if row.encrypted:
            item = item.model_copy(update={"file_blob": decrypt_bytes(row.file_blob, self._fernet_key)})
        return item

    def _to_row(self, item: QueuedUpload) -> QueuedUploadRow:
        return QueuedUploadRow(
            id=item.id,
            job_id=item.job_id,
            customer_id=item.customer_id,
            category=item.category.value,
            description=item.description,
            file_blob=self._seal(item.file_blob),
            encrypted=bool(self._fernet_key),
            file_name=item.file_name,
            mime_type=item.mime_type,
            file_size=item.file_size,
            exif_data=item.exif_data.model_dump() if item.exif_data else None,
            gps_position=item.gps_position.model_dump() if item.gps_position else None,
            queued_at=item.queued_at,
            attempt_count=item.attempt_count,
            last_attempt_at=item.last_attempt_at,
            last_error=item.last_error,
            next_attempt_at=item.next_attempt_at,
            status=item.status.value,
        )

    # ── admission ────────────────────────────────────────────

    def _check_capacity(self, current: QueueStatus, incoming_bytes: int) -> None:
        if current.item_count >= self.config.max_items:
            raise QueueFull(
                f"Queue is full ({self.config.max_items} items). "
                "Please wait for uploads to complete or clear failed items."
            )
        if current.total_bytes + incoming_bytes > self.config.max_bytes:
            limit_mb = self.config.max_bytes // (1024 * 1024)
            raise QueueFull(f"Queue storage limit reached ({limit_mb}MB). Please wait for uploads to complete.")

    async def add(self, item: QueuedUpload) -> AddResult:
        """Insert a new record, enforcing the item-count and byte caps.

        Admissions are serialized so the capacity check and the insert see
        the same queue.
        """
        async with self._admission:
            try:
                self._check_capacity(await self.status(), item.file_size)
            except QueueFull as exc:
                return AddResult(success=False, error=str(exc))

            factory = await self._factory()
            async with factory() as db:
                db.add(self._to_row(item))
                try:
                    await db.commit()
                except IntegrityError:
                    return AddResult(success=False, error=f"Item {item.id} is already queued")

            after = await self.status()
        ratio = max(after.item_count / self.config.max_items, after.total_bytes / self.config.max_bytes)
        if ratio >= self.config.warning_threshold:
            return AddResult(success=True, warning=f"Queue is {round(ratio * 100)}% full")
        return AddResult(success=True)

    # ── reads ────────────────────────────────────────────────

    async def get(self, item_id: str) -> QueuedUpload | None:
        factory = await self._factory()
        async with factory() as db:
            row = await db.get(QueuedUploadRow, item_id)
            return self._to_schema(row) if row else None

    async def get_all(self) -> list[QueuedUpload]:
        return await self._select()

    async def get_by_status(self, status: UploadStatus) -> list[QueuedUpload]:
        """Records with the given status, oldest queued first."""
        return await self._select(QueuedUploadRow.status == UploadStatus(status).value)

    async def get_by_job(self, job_id: str) -> list[QueuedUpload]:
        return await self._select(QueuedUploadRow.job_id == job_id)

    async def _select(self, *criteria) -> list[QueuedUpload]:
        factory = await self._factory()
        async with factory() as db:
            result = await db.execute(
                select(QueuedUploadRow)
                .where(*criteria)
                .order_by(QueuedUploadRow.queued_at, QueuedUploadRow.id)
            )
            return [self._to_schema(row) for row in result.scalars().all()]

    async def status(self) -> QueueStatus:
        factory = await self._factory()
        async with factory() as db:
            result = await db.execute(
                select(
                    QueuedUploadRow.status,
                    func.count(QueuedUploadRow.id),
                    func.coalesce(func.sum(QueuedUploadRow.file_size), 0),
                ).group_by(QueuedUploadRow.status)
            )
            counts = QueueStatus()
            for status, count, size in result.all():
                counts.item_count += count
                counts.total_bytes += int(size)
                if status == UploadStatus.PENDING.value:
                    counts.pending = count
                elif status == UploadStatus.UPLOADING.value:
                    counts.uploading = count
                elif status == UploadStatus.FAILED.value:
                    counts.failed = count
            return counts

    # ── mutations ────────────────────────────────────────────

    async def update(self, item_id: str, **fields) -> QueuedUpload:
        factory = await self._factory()
        async with factory() as db:
            row = await db.get(QueuedUploadRow, item_id)
            if row is None:
                raise NotFound(f"Queue item {item_id} not found")
            for key, value in fields.items():
                if key == "file_blob":
                    value = self._seal(value)
                setattr(row, key, _column_value(value))
            await db.commit()
            await db.refresh(row)
            return self._to_schema(row)

    async def increment_attempt(
        self,
        item_id: str,
        error_message: str | None = None,
        delay_for: Callable[[int], float] | None = None,
    ) -> QueuedUpload:
        """Count one failed attempt; freeze the item as `failed` at the attempt ceiling.

        When the item goes back to `pending`, `delay_for(attempt_count)` gives
        the seconds until it may be picked again. Status and due time are
        committed together so a concurrent drain never sees one without the
        other.
        """
        factory = await self._factory()
        async with factory() as db:
            row = await db.get(QueuedUploadRow, item_id)
            if row is None:
                raise NotFound(f"Queue item {item_id} not found")
            now = datetime.now(timezone.utc)
            row.attempt_count += 1
            row.last_attempt_at = now
            row.last_error = error_message
            if row.attempt_count >= self.config.max_retry_attempts:
                row.status = UploadStatus.FAILED.value
                row.next_attempt_at = None
            else:
                row.status = UploadStatus.PENDING.value
                row.next_attempt_at = (
                    now + timedelta(seconds=delay_for(row.attempt_count)) if delay_for else None
                )
            await db.commit()
            await db.refresh(row)
            return self._to_schema(row)

    async def remove(self, item_id: str) -> None:
        factory = await self._factory()
        async with factory() as db:
            result = await db.execute(delete(QueuedUploadRow).where(QueuedUploadRow.id == item_id))
            await db.commit()
            if not result.rowcount:
                raise NotFound(f"Queue item {item_id} not found")

    async def clear(self) -> int:
        return await self._delete()

    async def clear_failed(self) -> int:
        return await self._delete(QueuedUploadRow.status == UploadStatus.FAILED.value)

    async def _delete(self, *criteria) -> int:
        factory = await self._factory()
        async with factory() as db:
            result = await db.execute(delete(QueuedUploadRow).where(*criteria))
            await db.commit()
            return result.rowcount

    async def retry_failed(self) -> int:
        """Put every failed item back to pending with the attempt count reset."""
        factory = await self._factory()
        async with factory() as db:
            result = await db.execute(
                update(QueuedUploadRow)
                .where(QueuedUploadRow.status == UploadStatus.FAILED.value)
                .values(
                    status=UploadStatus.PENDING.value,
                    attempt_count=0,
                    last_error=None,
                    next_attempt_at=None,
                )
            )
            await db.commit()
            return result.rowcount
