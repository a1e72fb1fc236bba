"""Error taxonomy for the upload queue and annotation engine."""

from __future__ import annotations


class FieldMediaError(Exception):
    """Base class for all fieldmedia errors."""


class StoreUnavailable(FieldMediaError):
    """The local queue database could not be opened."""


class NotFound(FieldMediaError):
    """A queue item or annotation version does not exist."""


class QueueFull(FieldMediaError):
    """Admission refused: item count or byte cap reached."""


class NotAuthenticated(FieldMediaError):
    """No actor or active business could be resolved for an upload."""


class TransientUploadFailure(FieldMediaError):
    """A network or storage error during one upload attempt."""


class PermanentUploadFailure(FieldMediaError):
    """An item exhausted its retry attempts and is frozen in `failed`."""

    def __init__(self, item_id: str, file_name: str, attempts: int):
        super().__init__(f"{file_name} failed after {attempts} attempts")
        self.item_id = item_id
        self.file_name = file_name
        self.attempts = attempts


class AnnotationValidationError(FieldMediaError):
    """An annotation document has structural errors."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        super().__init__("Invalid annotation data: " + ", ".join(errors))
        self.errors = errors
        self.warnings = warnings or []


class LockUnavailable(FieldMediaError):
    """The annotation is locked by another editor."""


class RenderFailure(FieldMediaError):
    """Flattening an annotation to an image failed."""
