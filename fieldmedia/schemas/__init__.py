"""Pydantic schemas for queue items, annotation documents and locks."""

from fieldmedia.schemas.upload import (
    UploadStatus, MediaCategory, ExifData, GpsPosition,
    QueuedUpload, QueuedUploadRead, AddResult, QueueUploadResult, QueueStatus,
)
from fieldmedia.schemas.annotation import (
    AnnotationCanvas, AnnotationData, AnnotationObject, ANNOTATION_TYPES,
    ArrowAnnotation, LineAnnotation, RectAnnotation, CircleAnnotation,
    EllipseAnnotation, TextAnnotation, FreehandAnnotation, MeasurementAnnotation,
    ValidationResult, MediaAnnotationRead,
)
from fieldmedia.schemas.lock import Lock, LockState, LockAcquireResult
from fieldmedia.schemas.ws_messages import QueueEvent

__all__ = [
    "UploadStatus", "MediaCategory", "ExifData", "GpsPosition",
    "QueuedUpload", "QueuedUploadRead", "AddResult", "QueueUploadResult", "QueueStatus",
    "AnnotationCanvas", "AnnotationData", "AnnotationObject", "ANNOTATION_TYPES",
    "ArrowAnnotation", "LineAnnotation", "RectAnnotation", "CircleAnnotation",
    "EllipseAnnotation", "TextAnnotation", "FreehandAnnotation", "MeasurementAnnotation",
    "ValidationResult", "MediaAnnotationRead",
    "Lock", "LockState", "LockAcquireResult",
    "QueueEvent",
]
