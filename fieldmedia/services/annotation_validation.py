"""Annotation document validation and sanitization.

`validate_annotation_data` reports problems without touching the input;
`sanitize_annotation_data` repairs whatever it can and never fails.
Both accept the raw wire form (camelCase dict, possibly corrupted) or an
`AnnotationData` model.

Errors make a document unusable. Warnings flag things the sanitizer
fixes silently (stroke width or font size out of range, coordinates past
the overflow margin).
"""

from __future__ import annotations

import json
import math
import re
import uuid
from typing import Any

from fieldmedia.config import AnnotationConfig
from fieldmedia.schemas.annotation import (
    ANNOTATION_TYPES, AnnotationCanvas, AnnotationData, ArrowAnnotation, CircleAnnotation,
    EllipseAnnotation, FreehandAnnotation, LineAnnotation, MeasurementAnnotation,
    RectAnnotation, TextAnnotation, ValidationResult,
)

DEFAULT_COLOR = "#FF0000"
DEFAULT_POINTS = [0.0, 0.0, 100.0, 100.0]
LINE_TYPES = ("arrow", "line", "measurement")

_DEFAULTS = AnnotationConfig()
MAX_OBJECTS = _DEFAULTS.max_objects
MAX_TEXT_LENGTH = _DEFAULTS.max_text_length
MAX_FREEHAND_POINTS = _DEFAULTS.max_freehand_points
MAX_DATA_SIZE_BYTES = _DEFAULTS.max_data_size_bytes
MAX_CANVAS_DIMENSION = _DEFAULTS.max_canvas_dimension

_HEX_COLOR = re.compile(r"#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{4}|[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})")
_TAGS = re.compile(r"<[^>]*>")
_SCRIPTY = re.compile(r"javascript:|data:|vbscript:|on\w+\s*=", re.IGNORECASE)
_CONTROL = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

_FONT_STYLES = ("normal", "bold", "italic", "bold italic")
_ALIGNS = ("left", "center", "right")
_WRAPS = ("word", "char", "none")
_LINE_CAPS = ("butt", "round", "square")
_LINE_JOINS = ("miter", "round", "bevel")
_UNITS = ("px", "in", "cm", "ft", "m")
_LABEL_POSITIONS = ("above", "below", "center")


# ── helpers ──────────────────────────────────────────────

def _num(value: Any) -> float | None:
    """A finite real number, or None. Booleans are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _or(value: Any, default: float) -> float:
    """Falsy-or-invalid falls back to default (0 included)."""
    n = _num(value)
    return n if n else default


def _coalesce(value: Any, default: float) -> float:
    """Only missing-or-invalid falls back to default (0 is kept)."""
    n = _num(value)
    return default if n is None else n


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _choice(value: Any, allowed: tuple[str, ...], default):
    return value if value in allowed else default


def _as_wire(data: Any) -> Any:
    if isinstance(data, AnnotationData):
        return data.to_wire()
    return data


def sanitize_text_content(text: Any, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Strip markup, script-like fragments and control characters, then truncate.

    Stripping repeats until nothing changes, so fragments that only appear
    once another fragment is removed are caught too.
    """
    if not text or not isinstance(text, str):
        return ""
    previous = None
    while previous != text:
        previous = text
        text = _TAGS.sub("", text)
        text = _SCRIPTY.sub("", text)
        text = _CONTROL.sub("", text)
    return text[:max_length].strip()


def validate_color(color: Any) -> bool:
    """#RGB, #RGBA, #RRGGBB or #RRGGBBAA."""
    return isinstance(color, str) and _HEX_COLOR.fullmatch(color) is not None


def normalize_color(color: Any) -> str:
    """6-digit uppercase hex. Short forms expand, alpha is dropped, invalid input is red."""
    if not validate_color(color):
        return DEFAULT_COLOR
    digits = color[1:]
    if len(digits) in (3, 4):
        digits = "".join(c * 2 for c in digits[:3])
    return f"#{digits[:6]}".upper()


def _margin(canvas_width: float, canvas_height: float) -> float:
    return max(canvas_width, canvas_height) * 0.5


def validate_coordinates(x: Any, y: Any, canvas_width: float, canvas_height: float) -> bool:
    """True if (x, y) lies on the canvas or within the overflow margin around it."""
    if _num(x) is None or _num(y) is None:
        return False
    margin = _margin(canvas_width, canvas_height)
    return -margin <= x <= canvas_width + margin and -margin <= y <= canvas_height + margin


def clamp_coordinates(x: float, y: float, canvas_width: float, canvas_height: float) -> tuple[float, float]:
    margin = _margin(canvas_width, canvas_height)
    return (
        _clamp(x, -margin, canvas_width + margin),
        _clamp(y, -margin, canvas_height + margin),
    )


def serialized_size(data: Any) -> int:
    """Size in bytes of the compact JSON encoding."""
    encoded = json.dumps(_as_wire(data), separators=(",", ":"), ensure_ascii=False, default=str)
    return len(encoded.encode("utf-8"))


def generate_annotation_id() -> str:
    return f"ann_{uuid.uuid4().hex[:16]}"


def calculate_distance(x1: float, y1: float, x2: float, y2: float) -> float:
    return math.hypot(x2 - x1, y2 - y1)


def pixels_to_unit(pixels: float, unit: str, pixels_per_unit: float) -> float:
    if unit == "px":
        return pixels
    return pixels / pixels_per_unit


def format_measurement(value: float, unit: str) -> str:
    precision = 0 if unit == "px" else 2
    return f"{value:.{precision}f} {unit}"


def create_empty_annotation(width: float, height: float) -> AnnotationData:
    return AnnotationData(version=1, canvas=AnnotationCanvas(width=width, height=height), objects=[])


# ── validation ───────────────────────────────────────────

def _points_ok(points: Any) -> bool:
    return isinstance(points, list) and all(_num(p) is not None for p in points)


def _positive(value: Any) -> bool:
    """Missing is allowed (the sanitizer supplies a default); present must be > 0."""
    if value is None:
        return True
    n = _num(value)
    return n is not None and n > 0


def _in_range(value: Any, low: float, high: float) -> bool:
    if value is None:
        return True
    n = _num(value)
    return n is not None and low <= n <= high


def validate_annotation_object(
    obj: Any,
    canvas_width: float,
    canvas_height: float,
    config: AnnotationConfig | None = None,
) -> ValidationResult:
    limits = config or _DEFAULTS
    obj = obj.model_dump(mode="json", by_alias=True, exclude_none=True) if hasattr(obj, "model_dump") else obj
    if not isinstance(obj, dict):
        return ValidationResult(valid=False, errors=["Annotation object must be an object"])

    errors: list[str] = []
    warnings: list[str] = []
    obj_id = obj.get("id")
    obj_type = obj.get("type")

    if not obj_id or not isinstance(obj_id, str):
        errors.append("Object missing valid ID")
    if obj_type not in ANNOTATION_TYPES:
        errors.append(f"Invalid object type: {obj_type}")

    if not validate_coordinates(obj.get("x"), obj.get("y"), canvas_width, canvas_height):
        warnings.append(f"Object {obj_id} has coordinates outside canvas bounds")
    if not validate_color(obj.get("color")):
        errors.append(f"Object {obj_id} has invalid color: {obj.get('color')}")
    if not _in_range(obj.get("strokeWidth"), limits.min_stroke_width, limits.max_stroke_width):
        warnings.append(f"Object {obj_id} stroke width clamped to valid range")

    if obj_type == "text":
        text = obj.get("text")
        if isinstance(text, str) and len(text) > limits.max_text_length:
            errors.append(f"Text object {obj_id} exceeds max length of {limits.max_text_length}")
        if not _in_range(obj.get("fontSize"), limits.min_font_size, limits.max_font_size):
            warnings.append(f"Text object {obj_id} font size clamped to valid range")
    elif obj_type == "freehand":
        points = obj.get("points")
        if isinstance(points, list) and len(points) > limits.max_freehand_points * 2:
            errors.append(f"Freehand object {obj_id} exceeds max points of {limits.max_freehand_points}")
    elif obj_type in LINE_TYPES:
        points = obj.get("points")
        if not _points_ok(points) or len(points) < 4:
            errors.append(f"Line-based object {obj_id} missing valid points array")
    elif obj_type == "rect":
        if not (_positive(obj.get("width")) and _positive(obj.get("height"))):
            errors.append(f"Rectangle {obj_id} has invalid dimensions")
    elif obj_type == "circle":
        if not _positive(obj.get("radius")):
            errors.append(f"Circle {obj_id} has invalid radius")
    elif obj_type == "ellipse":
        if not (_positive(obj.get("radiusX")) and _positive(obj.get("radiusY"))):
            errors.append(f"Ellipse {obj_id} has invalid radii")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_annotation_data(data: Any, config: AnnotationConfig | None = None) -> ValidationResult:
    """Check a whole document. Never mutates `data`."""
    limits = config or _DEFAULTS
    data = _as_wire(data)
    if not isinstance(data, dict):
        return ValidationResult(valid=False, errors=["Annotation data must be an object"])

    errors: list[str] = []
    warnings: list[str] = []

    version = _num(data.get("version"))
    if version is None or version < 1:
        errors.append("Invalid annotation version")

    canvas = data.get("canvas")
    canvas_width = canvas_height = 0
    if not isinstance(canvas, dict):
        errors.append("Missing canvas configuration")
    else:
        canvas_width = _num(canvas.get("width")) or 0
        canvas_height = _num(canvas.get("height")) or 0
        if not 0 < canvas_width <= limits.max_canvas_dimension:
            errors.append(f"Canvas width must be between 1 and {limits.max_canvas_dimension}")
        if not 0 < canvas_height <= limits.max_canvas_dimension:
            errors.append(f"Canvas height must be between 1 and {limits.max_canvas_dimension}")

    objects = data.get("objects")
    if not isinstance(objects, list):
        errors.append("Annotation objects must be an array")
    else:
        if len(objects) > limits.max_objects:
            errors.append(f"Too many objects: {len(objects)} (max: {limits.max_objects})")

        seen: set[str] = set()
        duplicates: list[str] = []
        for obj in objects:
            result = validate_annotation_object(obj, canvas_width, canvas_height, limits)
            errors.extend(result.errors)
            warnings.extend(result.warnings)
            obj_id = obj.get("id") if isinstance(obj, dict) else None
            if isinstance(obj_id, str) and obj_id:
                if obj_id in seen and obj_id not in duplicates:
                    duplicates.append(obj_id)
                seen.add(obj_id)
        if duplicates:
            errors.append(f"Duplicate object IDs found: {', '.join(duplicates)}")

    size = serialized_size(data)
    if size > limits.max_data_size_bytes:
        errors.append(f"Annotation data too large: {size} bytes (max: {limits.max_data_size_bytes})")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


# ── sanitization ─────────────────────────────────────────

def _clean_points(points: Any) -> list[float]:
    if not isinstance(points, list):
        return []
    return [_coalesce(p, 0.0) for p in points]


def _downsample(points: list[float], max_points: int) -> list[float]:
    """Keep every step-th vertex so at most `max_points` vertices remain."""
    if len(points) <= max_points * 2:
        return points
    step = math.ceil(len(points) / (max_points * 2))
    sampled: list[float] = []
    for i in range(0, len(points), step * 2):
        sampled.append(points[i])
        sampled.append(points[i + 1] if i + 1 < len(points) else 0.0)
    return sampled


def _fill(value: Any) -> str | None:
    return normalize_color(value) if value else None


def sanitize_annotation_object(
    obj: Any,
    canvas_width: float,
    canvas_height: float,
    config: AnnotationConfig | None = None,
):
    """Repair one object. Returns None for non-objects and unknown types."""
    limits = config or _DEFAULTS
    if not isinstance(obj, dict):
        return None
    obj_type = obj.get("type")
    if obj_type not in ANNOTATION_TYPES:
        return None

    x, y = clamp_coordinates(
        _coalesce(obj.get("x"), 0.0), _coalesce(obj.get("y"), 0.0), canvas_width, canvas_height,
    )
    metadata = obj.get("metadata")
    base = {
        "id": obj.get("id") if isinstance(obj.get("id"), str) and obj.get("id") else generate_annotation_id(),
        "x": x,
        "y": y,
        "rotation": _or(obj.get("rotation"), 0.0),
        "scale_x": _or(obj.get("scaleX"), 1.0),
        "scale_y": _or(obj.get("scaleY"), 1.0),
        "color": normalize_color(obj.get("color") or DEFAULT_COLOR),
        "stroke_width": _clamp(_or(obj.get("strokeWidth"), 3.0), limits.min_stroke_width, limits.max_stroke_width),
        "opacity": _clamp(_coalesce(obj.get("opacity"), 1.0), 0.0, 1.0),
        "locked": obj.get("locked") is True,
        "metadata": metadata if isinstance(metadata, dict) else None,
        "created_at": obj.get("createdAt") if isinstance(obj.get("createdAt"), str) else None,
        "created_by": obj.get("createdBy") if isinstance(obj.get("createdBy"), str) else None,
    }

    if obj_type == "text":
        width = _num(obj.get("width"))
        return TextAnnotation(
            **base,
            text=sanitize_text_content(obj.get("text"), limits.max_text_length),
            font_size=_clamp(_or(obj.get("fontSize"), 16.0), limits.min_font_size, limits.max_font_size),
            font_family=obj.get("fontFamily") if isinstance(obj.get("fontFamily"), str) and obj.get("fontFamily") else "Inter",
            font_style=_choice(obj.get("fontStyle"), _FONT_STYLES, "normal"),
            align=_choice(obj.get("align"), _ALIGNS, "left"),
            fill=_fill(obj.get("fill")),
            width=width if width and width > 0 else None,
            wrap=_choice(obj.get("wrap"), _WRAPS, "word"),
            padding=_or(obj.get("padding"), 0.0),
        )

    if obj_type == "freehand":
        return FreehandAnnotation(
            **base,
            points=_downsample(_clean_points(obj.get("points")), limits.max_freehand_points),
            tension=_coalesce(obj.get("tension"), 0.5),
            line_cap=_choice(obj.get("lineCap"), _LINE_CAPS, "round"),
            line_join=_choice(obj.get("lineJoin"), _LINE_JOINS, "round"),
        )

    if obj_type in LINE_TYPES:
        points = _clean_points(obj.get("points"))
        if len(points) < 4:
            points = list(DEFAULT_POINTS)
        if obj_type == "arrow":
            return ArrowAnnotation(
                **base,
                points=points,
                pointer_length=_or(obj.get("pointerLength"), 10.0),
                pointer_width=_or(obj.get("pointerWidth"), 10.0),
                fill=_fill(obj.get("fill")),
            )
        if obj_type == "line":
            dash = obj.get("dash")
            return LineAnnotation(
                **base,
                points=points,
                line_cap=_choice(obj.get("lineCap"), _LINE_CAPS, None),
                line_join=_choice(obj.get("lineJoin"), _LINE_JOINS, None),
                dash=_clean_points(dash) if isinstance(dash, list) else None,
            )
        return MeasurementAnnotation(
            **base,
            points=points,
            length=_or(obj.get("length"), 0.0),
            unit=_choice(obj.get("unit"), _UNITS, "px"),
            pixels_per_unit=_or(obj.get("pixelsPerUnit"), 1.0),
            show_label=obj.get("showLabel") if isinstance(obj.get("showLabel"), bool) else True,
            label_position=_choice(obj.get("labelPosition"), _LABEL_POSITIONS, "above"),
            font_size=_or(obj.get("fontSize"), 14.0),
        )

    if obj_type == "rect":
        return RectAnnotation(
            **base,
            width=max(1.0, _or(obj.get("width"), 100.0)),
            height=max(1.0, _or(obj.get("height"), 100.0)),
            fill=_fill(obj.get("fill")),
            corner_radius=_or(obj.get("cornerRadius"), 0.0),
        )
    if obj_type == "circle":
        return CircleAnnotation(
            **base,
            radius=max(1.0, _or(obj.get("radius"), 50.0)),
            fill=_fill(obj.get("fill")),
        )
    return EllipseAnnotation(
        **base,
        radius_x=max(1.0, _or(obj.get("radiusX"), 50.0)),
        radius_y=max(1.0, _or(obj.get("radiusY"), 30.0)),
        fill=_fill(obj.get("fill")),
    )


def sanitize_annotation_data(data: Any, config: AnnotationConfig | None = None) -> AnnotationData:
    """Best-effort repair into a document that passes validation.

    Objects past `max_objects` are cut (oldest kept), ids that are missing
    or repeated are replaced, unknown object types are dropped, and trailing
    objects are dropped while the document is over the size limit.
    """
    limits = config or _DEFAULTS
    data = _as_wire(data)
    if not isinstance(data, dict):
        data = {}

    version = _num(data.get("version"))
    canvas = data.get("canvas") if isinstance(data.get("canvas"), dict) else {}
    scale = _num(canvas.get("scale"))
    sanitized = AnnotationData(
        version=max(1, math.floor(version)) if version is not None else 1,
        canvas=AnnotationCanvas(
            width=_clamp(_num(canvas.get("width")) or 0, 1, limits.max_canvas_dimension),
            height=_clamp(_num(canvas.get("height")) or 0, 1, limits.max_canvas_dimension),
            scale=scale if scale and scale > 0 else None,
        ),
        objects=[],
    )

    objects = data.get("objects")
    if not isinstance(objects, list):
        return sanitized

    seen: set[str] = set()
    for obj in objects[:limits.max_objects]:
        clean = sanitize_annotation_object(obj, sanitized.canvas.width, sanitized.canvas.height, limits)
        if clean is None:
            continue
        if clean.id in seen:
            clean.id = generate_annotation_id()
        seen.add(clean.id)
        sanitized.objects.append(clean)

    size = serialized_size(sanitized)
    while sanitized.objects and size > limits.max_data_size_bytes:
        dropped = sanitized.objects.pop()
        # one object plus its separating comma
        size -= serialized_size(dropped.model_dump(mode="json", by_alias=True, exclude_none=True))
        size -= 1 if sanitized.objects else 0

    return sanitized
