"""Upload queue engine: drains the persistent queue against remote storage.

Per item: pending -> uploading -> removed (success)
                               -> pending (retry scheduled with backoff)
                               -> failed (attempt ceiling reached)

One engine instance per process owns the drain flag, the active-upload
counter and the listeners. Everything runs on one event loop, so those
counters need no locking; uploads overlap as concurrent tasks up to
`max_concurrent_uploads`.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any

from fieldmedia.config import QueueConfig, get_settings
from fieldmedia.errors import NotFound, PermanentUploadFailure
from fieldmedia.models.base import new_id
from fieldmedia.schemas.upload import (
    ExifData, GpsPosition, MediaCategory, QueuedUpload, QueueStatus,
    QueueUploadResult, UploadStatus,
)
from fieldmedia.schemas.ws_messages import QueueEvent
from fieldmedia.services.background import BackgroundDispatcher
from fieldmedia.services.collaborators import (
    BlobStore, Identity, IdentityResolver, MetadataStore, ProcessingTrigger,
)
from fieldmedia.services.notifier import QueueNotifier
from fieldmedia.services.previews import PreviewRegistry
from fieldmedia.services.queue_store import UploadQueueStore

logger = logging.getLogger(__name__)

UNLOAD_WARNING = "You have photos waiting to upload. Are you sure you want to leave?"


def backoff_delay(attempt_count: int, base: float, cap: float) -> float:
    """min(base * 2^attempt_count, cap)"""
    return min(base * (2 ** attempt_count), cap)


def storage_path(item: QueuedUpload, now_ms: int | None = None) -> str:
    ext = item.file_name.rsplit(".", 1)[1].lower() if "." in item.file_name else "bin"
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{item.job_id}/{now_ms}-{item.id}.{ext}"


def build_media_record(
    item: QueuedUpload, identity: Identity, path: str, url: str, bucket: str,
) -> dict[str, Any]:
    exif = item.exif_data or ExifData()
    gps = item.gps_position
    return {
        "business_id": identity.business_id,
        "job_id": item.job_id,
        "url": url,
        "storage_path": path,
        "storage_bucket": bucket,
        "file_size_bytes": item.file_size,
        "mime_type": item.mime_type,
        "media_type": "video" if item.mime_type.startswith("video/") else "image",
        "category": item.category.value,
        "description": item.description,
        "status": "processing",
        "captured_at": exif.captured_at,
        "camera_make": exif.device_make,
        "camera_model": exif.device_model,
        "latitude": gps.latitude if gps else exif.gps_latitude,
        "longitude": gps.longitude if gps else exif.gps_longitude,
    }


class UploadQueueEngine:
    def __init__(
        self,
        store: UploadQueueStore,
        blob_store: BlobStore,
        metadata_store: MetadataStore,
        identity: IdentityResolver,
        processing: ProcessingTrigger | None = None,
        *,
        config: QueueConfig | None = None,
        notifier: QueueNotifier | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        previews: PreviewRegistry | None = None,
        online: bool = True,
    ):
        self.store = store
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.identity = identity
        self.processing = processing
        self.config = config or store.config or get_settings().queue
        self.notifier = notifier or QueueNotifier()
        self._owns_dispatcher = dispatcher is None
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.previews = previews or PreviewRegistry()

        self.status = QueueStatus()
        self._online = online
        self._processing = False
        self._rerun = False
        self._closed = False
        self._active_uploads = 0
        self._uploads: set[asyncio.Task] = set()
        self._tasks: set[asyncio.Task] = set()

    # ── state ────────────────────────────────────────────────

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def active_uploads(self) -> int:
        return self._active_uploads

    @property
    def sync_state(self) -> str:
        if not self._online:
            return "offline"
        return self.status.sync_state

    def subscribe(self, listener):
        return self.notifier.subscribe(listener)

    def retry_delay(self, attempt_count: int) -> float:
        return backoff_delay(attempt_count, self.config.base_retry_delay, self.config.max_retry_delay)

    def _spawn(self, coro, uploads: bool = False) -> asyncio.Task:
        task = asyncio.create_task(coro)
        bucket = self._uploads if uploads else self._tasks
        bucket.add(task)
        task.add_done_callback(bucket.discard)
        return task

    async def _emit(self, event: str, item_id: str = "", **data):
        await self.notifier.broadcast(QueueEvent(event=event, item_id=item_id, data=data))

    # ── lifecycle ────────────────────────────────────────────

    def trigger(self):
        """Start a drain in the background if online."""
        if self._online and not self._closed:
            self._spawn(self.process_queue())

    async def start(self):
        """Open the store, rebuild preview handles, and drain if online."""
        await self.store.open()
        for item in await self.store.get_all():
            if item.id not in self.previews:
                self.previews.create(item.id, item.file_blob, item.mime_type)
        await self.refresh_status()
        self.trigger()

    async def close(self, abandon: bool = False):
        """Stop accepting drains and cancel pending retries.

        In-flight uploads run to completion unless `abandon` is set; an
        abandoned upload stays `uploading` in the store and is recovered
        as `pending` the next time the store opens.
        """
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if abandon:
            for task in list(self._uploads):
                task.cancel()
        await asyncio.gather(*self._tasks, *self._uploads, return_exceptions=True)
        if self._owns_dispatcher:
            await self.dispatcher.close()

    async def wait_idle(self):
        """Wait for the drain loop, in-flight uploads and scheduled retries."""
        while self._tasks or self._uploads:
            await asyncio.gather(*self._tasks, *self._uploads, return_exceptions=True)

    async def set_online(self, online: bool):
        if online == self._online:
            return
        self._online = online
        logger.info("Upload queue is now %s", "online" if online else "offline")
        await self._emit("online" if online else "offline", pending=self.status.pending)
        if online:
            self.trigger()

    async def refresh_status(self) -> QueueStatus:
        """Re-read the counts and broadcast them. Never raises."""
        try:
            counts = await self.store.status()
        except Exception:
            logger.exception("Could not read upload queue status")
            return self.status
        counts.is_processing = self._processing
        self.status = counts
        try:
            await self._emit(
                "status",
                outstanding=counts.pending + counts.uploading,
                sync_state=self.sync_state,
                **counts.model_dump(),
            )
        except Exception:
            logger.exception("Could not broadcast upload queue status")
        return counts

    async def unload_warning(self) -> str | None:
        """Confirmation text to show before shutdown while work is outstanding."""
        status = await self.refresh_status()
        if status.pending > 0 or status.uploading > 0:
            return UNLOAD_WARNING
        return None

    # ── admission ────────────────────────────────────────────

    async def queue_upload(
        self,
        data: bytes,
        file_name: str,
        job_id: str,
        category: MediaCategory | str = MediaCategory.OTHER,
        mime_type: str | None = None,
        description: str | None = None,
        customer_id: str | None = None,
        exif_data: ExifData | dict | None = None,
        gps_position: GpsPosition | dict | None = None,
    ) -> QueueUploadResult:
        """Persist a file for upload and hand back a local preview handle.

        Raises StoreUnavailable if the queue database cannot be opened; the
        caller then has to upload directly or refuse.
        """
        if self._closed:
            return QueueUploadResult(success=False, error="Upload queue is shut down")

        item = QueuedUpload(
            id=new_id(),
            job_id=job_id,
            customer_id=customer_id,
            category=MediaCategory(category),
            description=description,
            file_blob=data,
            file_name=file_name,
            mime_type=mime_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream",
            file_size=len(data),
            exif_data=exif_data,
            gps_position=gps_position,
        )

        result = await self.store.add(item)
        if not result.success:
            logger.warning("Upload of %s refused: %s", file_name, result.error)
            await self._emit("queue_full", title="Queue Full", description=result.error)
            return QueueUploadResult(success=False, error=result.error)

        if result.warning:
            await self._emit("queue_near_full", title="Queue Almost Full", description=result.warning)

        preview_url = self.previews.create(item.id, data, item.mime_type)
        await self._emit("upload_queued", item.id, file_name=file_name, job_id=job_id)
        await self.refresh_status()

        self.trigger()

        return QueueUploadResult(
            success=True, id=item.id, local_preview_url=preview_url, warning=result.warning,
        )

    # ── drain ────────────────────────────────────────────────

    async def process_queue(self):
        """Drain ready pending items, at most `max_concurrent_uploads` at a time.

        Single-flight: a call made while a drain is running asks that drain
        to look again instead of starting a second loop. Never raises.
        """
        if self._closed or not self._online:
            return
        if self._processing:
            self._rerun = True
            return

        self._processing = True
        self.status.is_processing = True
        try:
            while self._online and not self._closed:
                item = await self._next_ready_item()
                if item is None:
                    if self._rerun:
                        self._rerun = False
                        continue
                    break
                if self._active_uploads >= self.config.max_concurrent_uploads:
                    await asyncio.sleep(self.config.poll_interval)
                    continue
                await self._dispatch(item)
        except Exception:
            logger.exception("Upload queue drain aborted")
        finally:
            self._processing = False
            self._rerun = False

        await self._schedule_deferred()
        await self.refresh_status()

    async def _next_ready_item(self) -> QueuedUpload | None:
        """Oldest pending item whose backoff has elapsed."""
        now = datetime.now(timezone.utc)
        for item in await self.store.get_by_status(UploadStatus.PENDING):
            if item.next_attempt_at is None or item.next_attempt_at <= now:
                return item
        return None

    async def _schedule_deferred(self):
        """If pending items are still backing off, wake up when the first is due."""
        if self._closed:
            return
        try:
            pending = await self.store.get_by_status(UploadStatus.PENDING)
        except Exception:
            logger.exception("Could not inspect deferred uploads")
            return
        due = [item.next_attempt_at for item in pending if item.next_attempt_at is not None]
        if due:
            wait = (min(due) - datetime.now(timezone.utc)).total_seconds()
            self._schedule_redrain(max(0.0, wait))

    async def _dispatch(self, item: QueuedUpload):
        try:
            item = await self.store.update(item.id, status=UploadStatus.UPLOADING)
        except NotFound:
            return
        self._active_uploads += 1
        self._spawn(self._upload_item(item), uploads=True)

    def _schedule_redrain(self, delay: float):
        if not self._closed:
            self._spawn(self._redrain_after(delay))

    async def _redrain_after(self, delay: float):
        await asyncio.sleep(delay)
        await self.process_queue()

    # ── one upload ───────────────────────────────────────────

    async def _upload_item(self, item: QueuedUpload):
        try:
            identity = await self.identity.resolve()

            path = storage_path(item)
            bucket = self.blob_store.bucket
            await self.blob_store.put(path, item.file_blob, item.mime_type)
            url = await self.blob_store.signed_url(path, self.config.signed_url_ttl)

            record = await self.metadata_store.insert(
                build_media_record(item, identity, path, url, bucket)
            )
            media_id = str(record["id"])

            if self.processing is not None:
                self.dispatcher.submit(
                    f"process-photo-upload:{media_id}",
                    partial(self.processing.trigger, media_id, path, bucket),
                )

            await self.store.remove(item.id)
            self.previews.revoke(item.id)
            logger.info("Uploaded %s as media %s", item.file_name, media_id)
            await self._emit(
                "upload_succeeded", item.id,
                title="Photo uploaded",
                description=f"{item.file_name} uploaded successfully",
                job_id=item.job_id,
                media_id=media_id,
            )
        except Exception as exc:
            await self._handle_failure(item, exc)
        finally:
            self._active_uploads -= 1
            await self.refresh_status()

    async def _handle_failure(self, item: QueuedUpload, exc: Exception):
        message = str(exc) or exc.__class__.__name__
        logger.warning("Upload of %s failed: %s", item.file_name, message)
        try:
            updated = await self.store.increment_attempt(item.id, message, delay_for=self.retry_delay)
        except Exception:
            logger.exception("Could not record failed attempt for %s", item.id)
            return

        if updated.status == UploadStatus.FAILED:
            failure = PermanentUploadFailure(item.id, item.file_name, updated.attempt_count)
            logger.error("%s", failure)
            await self._emit(
                "upload_failed", item.id,
                title="Upload failed permanently",
                description=str(failure),
                attempts=updated.attempt_count,
                error=message,
            )
            return

        delay = self.retry_delay(updated.attempt_count)
        await self._emit(
            "upload_retry_scheduled", item.id,
            attempt=updated.attempt_count,
            delay=delay,
            error=message,
        )
        self._schedule_redrain(delay)

    # ── user actions ─────────────────────────────────────────

    async def clear_failed(self) -> int:
        failed = await self.store.get_by_status(UploadStatus.FAILED)
        count = await self.store.clear_failed()
        for item in failed:
            self.previews.revoke(item.id)
        await self.refresh_status()
        await self._emit(
            "failed_cleared",
            title="Failed items cleared",
            description=f"Removed {count} failed upload{'s' if count != 1 else ''}",
            count=count,
        )
        return count

    async def retry_failed(self) -> int:
        count = await self.store.retry_failed()
        await self.refresh_status()
        await self._emit(
            "failed_retried",
            title="Retrying failed uploads",
            description="Failed uploads have been queued for retry",
            count=count,
        )
        self.trigger()
        return count
