import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fieldmedia.config import QueueConfig
from fieldmedia.errors import NotFound, StoreUnavailable
from fieldmedia.models import QueuedUploadRow
from fieldmedia.models.base import new_id
from fieldmedia.schemas import GpsPosition, MediaCategory, QueuedUpload, UploadStatus
from fieldmedia.services.encryption import generate_key
from fieldmedia.services.queue_store import UploadQueueStore


def make_item(size: int = 10, **overrides) -> QueuedUpload:
    fields = dict(
        id=new_id(),
        job_id="job-1",
        file_name="photo.jpg",
        mime_type="image/jpeg",
        file_blob=b"x" * size,
        file_size=size,
    )
    fields.update(overrides)
    return QueuedUpload(**fields)


async def test_add_and_get_roundtrips_metadata(store):
    item = make_item(
        category=MediaCategory.BEFORE,
        description="Kitchen wall",
        gps_position=GpsPosition(latitude=47.6, longitude=-122.3),
    )
    result = await store.add(item)
    assert result.success
    assert result.warning is None

    fetched = await store.get(item.id)
    assert fetched.file_blob == item.file_blob
    assert fetched.category == MediaCategory.BEFORE
    assert fetched.gps_position.latitude == 47.6
    assert fetched.status == UploadStatus.PENDING
    assert fetched.queued_at.tzinfo is not None


async def test_get_missing_returns_none(store):
    assert await store.get("nope") is None


async def test_item_cap_refuses_admission(tmp_path):
    config = QueueConfig(database_url=f"sqlite+aiosqlite:///{tmp_path}/q.db", max_items=2)
    store = UploadQueueStore(config=config)
    assert (await store.add(make_item())).success
    assert (await store.add(make_item())).success

    refused = await store.add(make_item())
    assert not refused.success
    assert "Queue is full (2 items)" in refused.error
    assert (await store.status()).item_count == 2
    await store.close()


async def test_byte_cap_refuses_admission(tmp_path):
    config = QueueConfig(database_url=f"sqlite+aiosqlite:///{tmp_path}/q.db", max_bytes=1000)
    store = UploadQueueStore(config=config)
    assert (await store.add(make_item(size=600))).success

    refused = await store.add(make_item(size=500))
    assert not refused.success
    assert "storage limit" in refused.error
    await store.close()


async def test_concurrent_adds_at_the_cap_admit_one(tmp_path):
    config = QueueConfig(database_url=f"sqlite+aiosqlite:///{tmp_path}/q.db", max_items=2)
    store = UploadQueueStore(config=config)
    assert (await store.add(make_item())).success

    results = await asyncio.gather(*(store.add(make_item()) for _ in range(5)))

    assert sum(r.success for r in results) == 1
    assert all("Queue is full" in r.error for r in results if not r.success)
    assert (await store.status()).item_count == 2
    await store.close()


async def test_concurrent_adds_respect_byte_cap(tmp_path):
    config = QueueConfig(database_url=f"sqlite+aiosqlite:///{tmp_path}/q.db", max_bytes=1000)
    store = UploadQueueStore(config=config)

    results = await asyncio.gather(*(store.add(make_item(size=400)) for _ in range(4)))

    assert sum(r.success for r in results) == 2
    assert (await store.status()).total_bytes == 800
    await store.close()


async def test_near_full_warning_once_threshold_reached(tmp_path):
    config = QueueConfig(database_url=f"sqlite+aiosqlite:///{tmp_path}/q.db", max_items=5)
    store = UploadQueueStore(config=config)
    for _ in range(3):
        assert (await store.add(make_item())).warning is None

    result = await store.add(make_item())
    assert result.success
    assert result.warning == "Queue is 80% full"
    await store.close()


async def test_get_by_status_oldest_first(store):
    now = datetime.now(timezone.utc)
    newest = make_item(queued_at=now)
    oldest = make_item(queued_at=now - timedelta(minutes=5))
    middle = make_item(queued_at=now - timedelta(minutes=1))
    for item in (newest, oldest, middle):
        await store.add(item)

    pending = await store.get_by_status(UploadStatus.PENDING)
    assert [i.id for i in pending] == [oldest.id, middle.id, newest.id]


async def test_get_by_job(store):
    await store.add(make_item(job_id="job-a"))
    await store.add(make_item(job_id="job-b"))
    await store.add(make_item(job_id="job-a"))

    assert len(await store.get_by_job("job-a")) == 2
    assert len(await store.get_by_job("job-c")) == 0


async def test_status_counts(store):
    a, b, c = make_item(size=5), make_item(size=7), make_item(size=9)
    for item in (a, b, c):
        await store.add(item)
    await store.update(b.id, status=UploadStatus.UPLOADING)
    await store.update(c.id, status=UploadStatus.FAILED)

    status = await store.status()
    assert (status.pending, status.uploading, status.failed) == (1, 1, 1)
    assert status.item_count == 3
    assert status.total_bytes == 21
    assert status.sync_state == "syncing"


async def test_update_missing_raises_not_found(store):
    with pytest.raises(NotFound):
        await store.update("missing", status=UploadStatus.UPLOADING)


async def test_remove_missing_raises_not_found(store):
    with pytest.raises(NotFound):
        await store.remove("missing")


async def test_increment_attempt_schedules_backoff(store):
    item = make_item()
    await store.add(item)

    before = datetime.now(timezone.utc)
    updated = await store.increment_attempt(item.id, "timeout", delay_for=lambda n: 30 * n)
    assert updated.attempt_count == 1
    assert updated.status == UploadStatus.PENDING
    assert updated.last_error == "timeout"
    assert updated.next_attempt_at >= before + timedelta(seconds=29)


async def test_increment_attempt_freezes_at_ceiling(store):
    item = make_item()
    await store.add(item)

    for _ in range(store.config.max_retry_attempts - 1):
        assert (await store.increment_attempt(item.id, "boom")).status == UploadStatus.PENDING
    final = await store.increment_attempt(item.id, "boom")

    assert final.status == UploadStatus.FAILED
    assert final.attempt_count == 10
    assert final.next_attempt_at is None


async def test_retry_failed_resets_attempts(store):
    item = make_item()
    await store.add(item)
    await store.update(item.id, status=UploadStatus.FAILED, attempt_count=10, last_error="boom")

    assert await store.retry_failed() == 1
    fetched = await store.get(item.id)
    assert fetched.status == UploadStatus.PENDING
    assert fetched.attempt_count == 0
    assert fetched.last_error is None


async def test_clear_failed_only_removes_failed(store):
    keep, drop = make_item(), make_item()
    await store.add(keep)
    await store.add(drop)
    await store.update(drop.id, status=UploadStatus.FAILED)

    assert await store.clear_failed() == 1
    assert [i.id for i in await store.get_all()] == [keep.id]


async def test_clear_removes_everything(store):
    await store.add(make_item())
    await store.add(make_item())
    assert await store.clear() == 2
    assert await store.get_all() == []


async def test_reopen_recovers_interrupted_uploads(queue_config):
    store = UploadQueueStore(config=queue_config)
    item = make_item()
    await store.add(item)
    await store.update(item.id, status=UploadStatus.UPLOADING, attempt_count=3)
    await store.close()
    assert not store.is_open

    reopened = UploadQueueStore(config=queue_config)
    await reopened.open()
    assert reopened.is_open
    fetched = await reopened.get(item.id)
    assert fetched.status == UploadStatus.PENDING
    assert fetched.attempt_count == 3
    assert fetched.file_blob == item.file_blob
    await reopened.close()


async def test_encrypted_payload_at_rest(queue_config):
    store = UploadQueueStore(config=queue_config, fernet_key=generate_key())
    item = make_item(file_blob=b"private photo bytes", file_size=19)
    await store.add(item)

    factory = await store._factory()
    async with factory() as db:
        row = await db.get(QueuedUploadRow, item.id)
        assert row.encrypted
        assert row.file_blob != b"private photo bytes"

    assert (await store.get(item.id)).file_blob == b"private photo bytes"
    await store.close()


async def test_unopenable_store_raises_store_unavailable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    store = UploadQueueStore(database_url=f"sqlite+aiosqlite:///{blocker}/queue.db")
    with pytest.raises(StoreUnavailable):
        await store.open()
