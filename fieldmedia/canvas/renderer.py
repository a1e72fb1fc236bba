"""Renderer contract for annotation canvases.

An adapter wraps one drawing backend. The document model, validation and
persistence never depend on which adapter is in use.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable

from fieldmedia.canvas.events import CanvasPointerEvent
from fieldmedia.canvas.geometry import hit_test
from fieldmedia.schemas.annotation import AnnotationData

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class CanvasRenderer(ABC):
    def __init__(self, width: float = 1, height: float = 1, scale: float = 1.0):
        self.width = width
        self.height = height
        self.scale = scale
        self.background: bytes | str | None = None
        self.objects: list = []
        self._selection: list[str] = []
        self._handlers: dict[str, list[Handler]] = {}
        self._mounted = False
        self._batch_depth = 0
        self._dirty = False

    # ── lifecycle ────────────────────────────────────────────

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    def mount(self, target: Any = None):
        self._mounted = True
        self._on_mount(target)
        self._request_render()

    def unmount(self):
        self._on_unmount()
        self._mounted = False
        self._handlers.clear()

    def _on_mount(self, target: Any):
        pass

    def _on_unmount(self):
        pass

    # ── configuration ────────────────────────────────────────

    def set_size(self, width: float, height: float):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self._request_render()

    def set_scale(self, scale: float):
        if scale <= 0:
            raise ValueError(f"Scale must be positive, got {scale}")
        self.scale = scale
        self._request_render()

    def set_background_image(self, image: bytes | str | None):
        """Raw image bytes (raster backends) or a URL (vector backends)."""
        self.background = image
        self._request_render()

    # ── drawing ──────────────────────────────────────────────

    def draw(self, data: AnnotationData):
        """Replace the scene with a document's objects and size."""
        self.width = data.canvas.width
        self.height = data.canvas.height
        self.objects = list(data.objects)
        known = {obj.id for obj in self.objects}
        self._selection = [i for i in self._selection if i in known]
        self._request_render()

    def clear(self):
        self.objects = []
        self._selection = []
        self._request_render()

    @contextmanager
    def batch_draw(self):
        """Defer redraws until the outermost batch exits, then redraw once."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._request_render()

    def _request_render(self):
        if self._batch_depth or not self._mounted:
            self._dirty = True
            return
        self._dirty = False
        self.render()

    @abstractmethod
    def render(self):
        """Redraw the native scene from `objects`."""
        ...

    # ── selection ────────────────────────────────────────────

    def get_selection(self) -> list[str]:
        return list(self._selection)

    def set_selection(self, ids: list[str]):
        known = {obj.id for obj in self.objects}
        selection = [i for i in dict.fromkeys(ids) if i in known]
        if selection != self._selection:
            self._selection = selection
            self.emit("selectionchange", list(selection))

    # ── export ───────────────────────────────────────────────

    @abstractmethod
    def export(self, format: str = "png", **options) -> bytes | str:
        ...

    # ── events ───────────────────────────────────────────────

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        handlers = self._handlers.setdefault(event, [])
        handlers.append(handler)

        def unsubscribe():
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, payload: Any = None):
        for handler in list(self._handlers.get(event, [])):
            handler(payload)

    def hit_test(self, x: float, y: float) -> str | None:
        obj = hit_test(self.objects, x, y)
        return obj.id if obj is not None else None

    def dispatch_pointer(self, event: CanvasPointerEvent) -> CanvasPointerEvent:
        """Resolve the hit target, then deliver to `event.type` handlers until one prevents default."""
        if event.target_id is None:
            event.target_id = self.hit_test(event.x, event.y)
        event.is_background = event.target_id is None
        for handler in list(self._handlers.get(event.type, [])):
            handler(event)
            if event.default_prevented:
                break
        return event

    @property
    @abstractmethod
    def native(self) -> Any:
        """The backend's own scene object, for operations this contract lacks."""
        ...
