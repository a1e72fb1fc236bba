"""Renderer-agnostic annotation canvas: pointer events, hit testing, adapters."""

from fieldmedia.canvas.events import CanvasPointerEvent, DevicePointer, PointerEventAdapter, ScaledPointerAdapter
from fieldmedia.canvas.geometry import HIT_PADDING, bounding_box, hit_test, is_point_in_object
from fieldmedia.canvas.raster import RasterRenderer
from fieldmedia.canvas.renderer import CanvasRenderer
from fieldmedia.canvas.svg import SvgRenderer, annotation_to_svg, build_annotation_svg, render_svg

__all__ = [
    "CanvasPointerEvent",
    "CanvasRenderer",
    "DevicePointer",
    "HIT_PADDING",
    "PointerEventAdapter",
    "RasterRenderer",
    "ScaledPointerAdapter",
    "SvgRenderer",
    "annotation_to_svg",
    "bounding_box",
    "build_annotation_svg",
    "hit_test",
    "is_point_in_object",
    "render_svg",
]
