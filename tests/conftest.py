"""Shared fixtures: temp queue databases and stub remote collaborators."""

from __future__ import annotations

import asyncio
import io

import pytest
import pytest_asyncio
from PIL import Image

from fieldmedia.config import QueueConfig
from fieldmedia.errors import TransientUploadFailure
from fieldmedia.services.collaborators import (
    BlobStore, Identity, MetadataStore, ProcessingTrigger, StaticIdentityResolver,
)
from fieldmedia.services.queue_store import UploadQueueStore


class StubBlobStore(BlobStore):
    """Records puts and tracks how many overlap. `fail_times` maps item id to failures left."""

    def __init__(self, delay: float = 0.0, always_fail: bool = False):
        self.delay = delay
        self.always_fail = always_fail
        self.fail_times: dict[str, int] = {}
        self.puts: list[str] = []
        self.attempts = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        self.attempts += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.always_fail:
                raise TransientUploadFailure("storage rejected the upload")
            key = self._key(path)
            if self.fail_times.get(key, 0) > 0:
                self.fail_times[key] -= 1
                raise TransientUploadFailure(f"network dropped while uploading {key}")
            self.puts.append(path)
        finally:
            self.in_flight -= 1

    @staticmethod
    def _key(path: str) -> str:
        # {job_id}/{ms}-{item_id}.{ext}
        return path.rsplit("-", 1)[-1].rsplit(".", 1)[0]

    async def signed_url(self, path: str, expires_in: int) -> str:
        return f"https://storage.test/{self.bucket}/{path}?expires={expires_in}"


class StubMetadataStore(MetadataStore):
    def __init__(self):
        self.records: list[dict] = []

    async def insert(self, record: dict) -> dict:
        row = {"id": f"media-{len(self.records) + 1}", **record}
        self.records.append(row)
        return row


class StubProcessingTrigger(ProcessingTrigger):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[str, str, str]] = []

    async def trigger(self, media_id: str, storage_path: str, bucket: str) -> None:
        self.calls.append((media_id, storage_path, bucket))
        if self.fail:
            raise RuntimeError("thumbnail service unavailable")


@pytest.fixture
def queue_config(tmp_path):
    return QueueConfig(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/queue.db",
        base_retry_delay=0.01,
        max_retry_delay=0.05,
        poll_interval=0.005,
    )


@pytest_asyncio.fixture
async def store(queue_config):
    s = UploadQueueStore(config=queue_config)
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def identity():
    return StaticIdentityResolver(Identity(user_id="user-1", business_id="biz-1", display_name="Dana Field"))


@pytest.fixture
def jpeg_bytes():
    img = Image.new("RGB", (640, 480), color=(70, 130, 180))
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def blob_store():
    return StubBlobStore()


@pytest.fixture
def metadata_store():
    return StubMetadataStore()


@pytest.fixture
def processing():
    return StubProcessingTrigger()
