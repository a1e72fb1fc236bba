"""Pointer events in document coordinates.

Adapters translate device pixels once, at the boundary; everything past
that point works in unscaled document units.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class CanvasPointerEvent:
    x: float
    y: float
    type: str = "pointerdown"
    shift_key: bool = False
    ctrl_key: bool = False
    alt_key: bool = False
    meta_key: bool = False
    button: int = 0
    target_id: str | None = None
    is_background: bool = True
    default_prevented: bool = field(default=False, init=False)

    def prevent_default(self):
        self.default_prevented = True


@dataclass
class DevicePointer:
    """A raw pointer sample as the input device reports it (device pixels)."""

    client_x: float
    client_y: float
    type: str = "pointerdown"
    shift_key: bool = False
    ctrl_key: bool = False
    alt_key: bool = False
    meta_key: bool = False
    button: int = 0


class PointerEventAdapter(ABC):
    @abstractmethod
    def to_canvas_event(self, raw: DevicePointer) -> CanvasPointerEvent:
        ...


class ScaledPointerAdapter(PointerEventAdapter):
    """Divides device pixels by the zoom scale after removing the canvas offset."""

    def __init__(self, scale: float = 1.0, offset_x: float = 0.0, offset_y: float = 0.0):
        self.offset_x = offset_x
        self.offset_y = offset_y
        self.scale = 1.0
        self.set_scale(scale)

    def set_scale(self, scale: float):
        if scale <= 0:
            raise ValueError(f"Scale must be positive, got {scale}")
        self.scale = scale

    def to_document(self, px: float, py: float) -> tuple[float, float]:
        return (px - self.offset_x) / self.scale, (py - self.offset_y) / self.scale

    def to_device(self, x: float, y: float) -> tuple[float, float]:
        return x * self.scale + self.offset_x, y * self.scale + self.offset_y

    def to_canvas_event(self, raw: DevicePointer) -> CanvasPointerEvent:
        x, y = self.to_document(raw.client_x, raw.client_y)
        return CanvasPointerEvent(
            x=x,
            y=y,
            type=raw.type,
            shift_key=raw.shift_key,
            ctrl_key=raw.ctrl_key,
            alt_key=raw.alt_key,
            meta_key=raw.meta_key,
            button=raw.button,
        )
