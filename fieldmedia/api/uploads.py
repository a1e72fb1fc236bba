from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fieldmedia.dependencies import get_upload_engine
from fieldmedia.errors import StoreUnavailable
from fieldmedia.schemas import GpsPosition, MediaCategory, QueuedUploadRead, QueueUploadResult, UploadStatus
from fieldmedia.services.upload_queue import UploadQueueEngine

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


class OnlineUpdate(BaseModel):
    online: bool


def _status_body(engine: UploadQueueEngine) -> dict:
    return {
        **engine.status.model_dump(),
        "is_online": engine.is_online,
        "sync_state": engine.sync_state,
        "active_uploads": engine.active_uploads,
    }


@router.post("", response_model=QueueUploadResult, status_code=201)
async def queue_upload(
    file: UploadFile = File(...),
    job_id: str = Form(...),
    category: MediaCategory = Form(MediaCategory.OTHER),
    description: str | None = Form(None),
    customer_id: str | None = Form(None),
    latitude: float | None = Form(None),
    longitude: float | None = Form(None),
    engine: UploadQueueEngine = Depends(get_upload_engine),
):
    data = await file.read()
    gps = GpsPosition(latitude=latitude, longitude=longitude) if latitude is not None and longitude is not None else None
    try:
        result = await engine.queue_upload(
            data,
            file.filename or "upload.bin",
            job_id,
            category=category,
            mime_type=file.content_type,
            description=description,
            customer_id=customer_id,
            gps_position=gps,
        )
    except StoreUnavailable as exc:
        raise HTTPException(503, str(exc)) from exc
    if not result.success:
        return JSONResponse(status_code=507, content=result.model_dump())
    return result


@router.get("/status")
async def queue_status(engine: UploadQueueEngine = Depends(get_upload_engine)):
    await engine.refresh_status()
    return _status_body(engine)


@router.get("", response_model=list[QueuedUploadRead])
async def list_uploads(
    status: UploadStatus | None = Query(default=None),
    job_id: str = Query(default=""),
    engine: UploadQueueEngine = Depends(get_upload_engine),
):
    try:
        if job_id:
            items = await engine.store.get_by_job(job_id)
        elif status is not None:
            items = await engine.store.get_by_status(status)
        else:
            items = await engine.store.get_all()
    except StoreUnavailable as exc:
        raise HTTPException(503, str(exc)) from exc
    if status is not None:
        items = [i for i in items if i.status == status]
    return [
        QueuedUploadRead.model_validate(
            i.model_copy(update={"local_preview_url": engine.previews.url_for(i.id) if i.id in engine.previews else None})
        )
        for i in items
    ]


@router.get("/unload-warning")
async def unload_warning(engine: UploadQueueEngine = Depends(get_upload_engine)):
    return {"warning": await engine.unload_warning()}


@router.post("/process", status_code=202)
async def process_queue(engine: UploadQueueEngine = Depends(get_upload_engine)):
    if not engine.is_online:
        raise HTTPException(409, "Upload queue is offline")
    engine.trigger()
    return {"started": True}


@router.post("/retry-failed")
async def retry_failed(engine: UploadQueueEngine = Depends(get_upload_engine)):
    try:
        return {"count": await engine.retry_failed()}
    except StoreUnavailable as exc:
        raise HTTPException(503, str(exc)) from exc


@router.delete("/failed")
async def clear_failed(engine: UploadQueueEngine = Depends(get_upload_engine)):
    try:
        return {"count": await engine.clear_failed()}
    except StoreUnavailable as exc:
        raise HTTPException(503, str(exc)) from exc


@router.post("/online")
async def set_online(body: OnlineUpdate, engine: UploadQueueEngine = Depends(get_upload_engine)):
    await engine.set_online(body.online)
    return _status_body(engine)


@router.get("/{item_id}/preview")
async def get_preview(item_id: str, engine: UploadQueueEngine = Depends(get_upload_engine)):
    preview = engine.previews.get(item_id)
    if preview is None:
        raise HTTPException(404, "Preview not found")
    data, mime_type = preview
    return Response(content=data, media_type=mime_type)
