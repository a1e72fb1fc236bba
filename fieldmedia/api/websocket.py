from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from fieldmedia.schemas.ws_messages import QueueEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/api/ws/uploads")
async def uploads_websocket(websocket: WebSocket):
    """Stream upload queue events. The first message is the current status."""
    engine = websocket.app.state.upload_engine
    await websocket.accept()

    async def send(event: QueueEvent):
        await websocket.send_text(event.model_dump_json())

    unsubscribe = engine.subscribe(send)
    try:
        await send(QueueEvent(
            event="status",
            data={**engine.status.model_dump(), "sync_state": engine.sync_state},
        ))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Upload status socket closed")
    finally:
        unsubscribe()
