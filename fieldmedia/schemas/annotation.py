"""Annotation document schemas.

The wire format is camelCase (what editors and stored documents use);
attributes are snake_case. Objects form a tagged union on `type`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

MeasurementUnit = Literal["px", "in", "cm", "ft", "m"]
LineCap = Literal["butt", "round", "square"]
LineJoin = Literal["miter", "round", "bevel"]


class _WireModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class AnnotationCanvas(_WireModel):
    width: float
    height: float
    scale: float | None = None


class BaseAnnotation(_WireModel):
    id: str
    x: float = 0
    y: float = 0
    rotation: float = 0
    scale_x: float = 1
    scale_y: float = 1
    color: str = "#FF0000"
    stroke_width: float = 3
    opacity: float = 1
    locked: bool = False
    metadata: dict[str, Any] | None = None
    created_at: str | None = None
    created_by: str | None = None


class ArrowAnnotation(BaseAnnotation):
    type: Literal["arrow"] = "arrow"
    points: list[float]  # [x1, y1, x2, y2], relative to (x, y)
    pointer_length: float = 10
    pointer_width: float = 10
    fill: str | None = None


class LineAnnotation(BaseAnnotation):
    type: Literal["line"] = "line"
    points: list[float]
    line_cap: LineCap | None = None
    line_join: LineJoin | None = None
    dash: list[float] | None = None


class RectAnnotation(BaseAnnotation):
    type: Literal["rect"] = "rect"
    width: float = 100
    height: float = 100
    fill: str | None = None
    corner_radius: float = 0


class CircleAnnotation(BaseAnnotation):
    type: Literal["circle"] = "circle"
    radius: float = 50
    fill: str | None = None


class EllipseAnnotation(BaseAnnotation):
    type: Literal["ellipse"] = "ellipse"
    radius_x: float = 50
    radius_y: float = 30
    fill: str | None = None


class TextAnnotation(BaseAnnotation):
    type: Literal["text"] = "text"
    text: str = ""
    font_size: float = 16
    font_family: str = "Inter"
    font_style: Literal["normal", "bold", "italic", "bold italic"] = "normal"
    align: Literal["left", "center", "right"] = "left"
    fill: str | None = None
    width: float | None = None
    wrap: Literal["word", "char", "none"] = "word"
    padding: float = 0


class FreehandAnnotation(BaseAnnotation):
    type: Literal["freehand"] = "freehand"
    points: list[float] = []  # [x1, y1, x2, y2, ...]
    tension: float = 0.5
    line_cap: LineCap = "round"
    line_join: LineJoin = "round"


class MeasurementAnnotation(BaseAnnotation):
    type: Literal["measurement"] = "measurement"
    points: list[float]
    length: float = 0
    unit: MeasurementUnit = "px"
    pixels_per_unit: float = 1
    show_label: bool = True
    label_position: Literal["above", "below", "center"] = "above"
    font_size: float = 14


AnnotationObject = Annotated[
    Union[
        ArrowAnnotation,
        LineAnnotation,
        RectAnnotation,
        CircleAnnotation,
        EllipseAnnotation,
        TextAnnotation,
        FreehandAnnotation,
        MeasurementAnnotation,
    ],
    Field(discriminator="type"),
]

ANNOTATION_TYPES = ("arrow", "line", "rect", "circle", "ellipse", "text", "freehand", "measurement")


class AnnotationData(_WireModel):
    version: int = 1
    canvas: AnnotationCanvas
    objects: list[AnnotationObject] = []

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = []
    warnings: list[str] = []


class MediaAnnotationRead(BaseModel):
    id: str
    job_media_id: str
    version: int
    parent_version_id: str | None = None
    is_current: bool
    annotation_data: dict[str, Any]
    rendered_url: str | None = None
    rendered_at: datetime | None = None
    render_error: str | None = None
    created_by: str | None = None
    created_by_name: str | None = None
    object_count: int
    has_text: bool
    has_arrows: bool
    has_shapes: bool
    has_measurements: bool
    created_at: datetime

    model_config = {"from_attributes": True}
