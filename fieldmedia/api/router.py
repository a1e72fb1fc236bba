"""Central router that includes all sub-routers."""

from fastapi import APIRouter

from fieldmedia.api.uploads import router as uploads_router
from fieldmedia.api.annotations import router as annotations_router
from fieldmedia.api.websocket import router as websocket_router

api_router = APIRouter()
api_router.include_router(uploads_router)
api_router.include_router(annotations_router)
api_router.include_router(websocket_router)
