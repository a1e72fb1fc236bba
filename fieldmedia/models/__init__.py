"""SQLAlchemy ORM models.

Annotation models (Base) live in the server-side annotation DB.
The upload queue (QueueBase) lives in the device-local queue DB.
"""

# Annotation models
from fieldmedia.models.base import Base
from fieldmedia.models.media_annotation import MediaAnnotation
from fieldmedia.models.render_job import RenderJob

# Local queue models
from fieldmedia.models.queued_upload import QueueBase, QueuedUploadRow

__all__ = [
    "Base", "MediaAnnotation", "RenderJob",
    "QueueBase", "QueuedUploadRow",
]
