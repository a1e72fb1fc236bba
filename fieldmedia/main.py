"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fieldmedia.api.router import api_router
from fieldmedia.config import Settings, get_settings
from fieldmedia.db.engine import create_annotation_tables, make_engine, make_session_factory
from fieldmedia.errors import StoreUnavailable
from fieldmedia.services.annotation_lock import InMemoryLockBackend
from fieldmedia.services.collaborators import Identity, StaticIdentityResolver
from fieldmedia.services.connectivity import ConnectivityMonitor
from fieldmedia.services.local_media import LocalBlobStore, LocalMetadataStore, ThumbnailProcessor
from fieldmedia.services.queue_store import UploadQueueStore
from fieldmedia.services.remote import (
    RemoteBlobStore, RemoteClient, RemoteIdentityResolver, RemoteMetadataStore, RemoteProcessingTrigger,
)
from fieldmedia.services.upload_queue import UploadQueueEngine

logger = logging.getLogger(__name__)


def build_upload_engine(settings: Settings) -> tuple[UploadQueueEngine, RemoteClient | None]:
    """Wire the engine to the remote backend if one is configured, else to local storage."""
    store = UploadQueueStore(config=settings.queue)
    if settings.remote.base_url:
        client = RemoteClient(settings.remote)
        blobs = RemoteBlobStore(client, settings.queue.storage_bucket)
        engine = UploadQueueEngine(
            store,
            blobs,
            RemoteMetadataStore(client),
            RemoteIdentityResolver(client, settings.business_id),
            RemoteProcessingTrigger(client),
            config=settings.queue,
        )
        return engine, client

    blobs = LocalBlobStore(settings.blob_dir, settings.queue.storage_bucket)
    metadata = LocalMetadataStore(settings.blob_dir)
    identity = StaticIdentityResolver(
        Identity(user_id=settings.user_id, business_id=settings.business_id, display_name=settings.user_name)
    )
    engine = UploadQueueEngine(
        store, blobs, metadata, identity, ThumbnailProcessor(blobs, metadata), config=settings.queue,
    )
    return engine, None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # Annotation version DB
    db_engine = make_engine(settings.annotation.database_url)
    await create_annotation_tables(db_engine)
    app.state.session_factory = make_session_factory(db_engine)
    app.state.lock_backend = InMemoryLockBackend({settings.user_id: settings.user_name})

    # Upload queue
    engine, client = build_upload_engine(settings)
    app.state.upload_engine = engine
    app.state.identity = engine.identity
    try:
        await engine.start()
    except StoreUnavailable:
        # Offline queueing stays off; admissions answer 503 until the store opens
        logger.exception("Upload queue unavailable; serving without offline queueing")

    monitor = None
    if settings.remote.connectivity_url or settings.remote.base_url:
        monitor = ConnectivityMonitor(engine, settings.remote)
        monitor.start()

    logger.info("fieldmedia started (queue at %s)", settings.queue.database_url)
    yield

    if monitor is not None:
        await monitor.stop()
    await engine.close()
    await engine.store.close()
    if client is not None:
        await client.aclose()
    await db_engine.dispose()


app = FastAPI(
    title="fieldmedia",
    description="Offline-resilient photo upload queue with versioned photo annotations.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(api_router)
