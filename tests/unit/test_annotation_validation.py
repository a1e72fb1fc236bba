import copy
import json
import math

import pytest

from fieldmedia.config import AnnotationConfig
from fieldmedia.schemas import AnnotationData
from fieldmedia.services.annotation_validation import (
    MAX_CANVAS_DIMENSION, MAX_DATA_SIZE_BYTES, MAX_FREEHAND_POINTS, MAX_OBJECTS,
    calculate_distance, clamp_coordinates, create_empty_annotation, format_measurement,
    generate_annotation_id, normalize_color, pixels_to_unit, sanitize_annotation_data,
    sanitize_text_content, serialized_size, validate_annotation_data, validate_color,
    validate_coordinates,
)


def doc(*objects, width=800, height=600):
    return {"version": 1, "canvas": {"width": width, "height": height}, "objects": list(objects)}


def rect(obj_id="r1", **extra):
    return {"id": obj_id, "type": "rect", "x": 10, "y": 10, "width": 50, "height": 40, "color": "#00FF00", **extra}


MESSY_INPUTS = [
    None,
    "not a document",
    {},
    {"version": -3, "canvas": {"width": -1, "height": 1e9}, "objects": "nope"},
    doc(rect(strokeWidth=999, color="notacolor")),
    doc(rect("dup"), rect("dup"), {"type": "circle", "radius": -5}, {"type": "blob"}, 42),
    doc(
        {"id": "t", "type": "text", "text": "<b>hi</b> <script>x</script>onclick=go javascript:1" * 20,
         "fontSize": 2, "color": "#abc"},
        {"id": "a", "type": "arrow", "points": [0, "x", None]},
        {"id": "m", "type": "measurement", "points": [0, 0, 30, 40], "unit": "furlong", "x": float("nan")},
        {"id": "e", "type": "ellipse", "radiusX": 0, "radiusY": float("inf"), "fill": "#12345678"},
        {"id": "f", "type": "freehand", "points": list(range(30001)), "opacity": 7},
        {"id": "l", "type": "line", "points": [1, 2, 3, 4], "dash": [4, "x"], "lineCap": "pointy"},
    ),
    doc(*[rect(f"r{i}", x=1e7, y=-1e7) for i in range(3)]),
]


# ── primitives ───────────────────────────────────────────

def test_sanitize_text_strips_markup_and_scripts():
    assert sanitize_text_content("<b>Crack</b> here") == "Crack here"
    assert sanitize_text_content("javascript:alert(1)") == "alert(1)"
    assert sanitize_text_content("a onclick=boom b") == "a boom b"
    assert sanitize_text_content("bell\x07 tab\tok") == "bell tab\tok"


def test_sanitize_text_catches_nested_fragments():
    assert sanitize_text_content("on<b></b>click=x") == "x"
    assert sanitize_text_content("javajavascript:script:x") == "x"


def test_sanitize_text_truncates_and_rejects_non_strings():
    assert sanitize_text_content("x" * 600) == "x" * 500
    assert sanitize_text_content(None) == ""
    assert sanitize_text_content(12) == ""


@pytest.mark.parametrize("color", ["#fff", "#FFFA", "#a1b2c3", "#A1B2C3FF"])
def test_valid_colors(color):
    assert validate_color(color)


@pytest.mark.parametrize("color", ["red", "#ff", "#GGGGGG", "a1b2c3", "#a1b2c3 ", None, 0xFFFFFF])
def test_invalid_colors(color):
    assert not validate_color(color)


def test_normalize_color():
    assert normalize_color("#abc") == "#AABBCC"
    assert normalize_color("#abcd") == "#AABBCC"
    assert normalize_color("#a1b2c380") == "#A1B2C3"
    assert normalize_color("notacolor") == "#FF0000"


def test_coordinates_allow_half_canvas_overflow():
    assert validate_coordinates(-400, 0, 800, 600)
    assert validate_coordinates(1200, 900, 800, 600)
    assert not validate_coordinates(1201, 0, 800, 600)
    assert not validate_coordinates(float("nan"), 0, 800, 600)
    assert clamp_coordinates(5000, -5000, 800, 600) == (1200, -400)


def test_measurement_helpers():
    assert calculate_distance(0, 0, 3, 4) == 5
    assert pixels_to_unit(100, "px", 50) == 100
    assert pixels_to_unit(100, "in", 50) == 2
    assert format_measurement(123.456, "px") == "123 px"
    assert format_measurement(2.5, "ft") == "2.50 ft"


def test_generated_ids_are_unique_and_prefixed():
    ids = {generate_annotation_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("ann_") and len(i) == 20 for i in ids)


def test_empty_annotation_validates():
    empty = create_empty_annotation(1024, 768)
    assert empty.objects == []
    assert validate_annotation_data(empty).valid


def test_serialized_size_is_compact_utf8():
    data = {"a": "é"}
    assert serialized_size(data) == len(json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode())


# ── validate ─────────────────────────────────────────────

def test_stroke_warning_and_color_error():
    original = doc(rect(strokeWidth=999, color="notacolor"))
    result = validate_annotation_data(original)

    assert not result.valid
    assert result.errors == ["Object r1 has invalid color: notacolor"]
    assert result.warnings == ["Object r1 stroke width clamped to valid range"]


def test_validate_does_not_mutate_input():
    original = doc(rect(strokeWidth=999, color="notacolor"), rect("r1"))
    snapshot = copy.deepcopy(original)
    validate_annotation_data(original)
    assert original == snapshot


def test_validate_structural_errors():
    result = validate_annotation_data({"version": 0, "objects": {}})
    assert "Invalid annotation version" in result.errors
    assert "Missing canvas configuration" in result.errors
    assert "Annotation objects must be an array" in result.errors


def test_validate_reports_duplicates_once():
    result = validate_annotation_data(doc(rect("a"), rect("a"), rect("a")))
    assert result.errors == ["Duplicate object IDs found: a"]


def test_validate_type_specific_rules():
    result = validate_annotation_data(doc(
        {"id": "c", "type": "circle", "radius": 0, "color": "#000"},
        {"id": "l", "type": "line", "points": [1, 2], "color": "#000"},
        {"id": "t", "type": "text", "text": "x" * 501, "fontSize": 200, "color": "#000"},
        {"id": "z", "type": "hexagon", "color": "#000"},
    ))
    assert "Circle c has invalid radius" in result.errors
    assert "Line-based object l missing valid points array" in result.errors
    assert "Text object t exceeds max length of 500" in result.errors
    assert "Invalid object type: hexagon" in result.errors
    assert "Text object t font size clamped to valid range" in result.warnings


def test_validate_limits_come_from_config():
    config = AnnotationConfig(max_objects=1)
    result = validate_annotation_data(doc(rect("a"), rect("b")), config)
    assert "Too many objects: 2 (max: 1)" in result.errors


def test_validate_oversize_document():
    big = doc(*[
        {"id": f"t{i}", "type": "text", "text": "x" * 400, "color": "#000"} for i in range(400)
    ])
    result = validate_annotation_data(big, AnnotationConfig(max_data_size_bytes=100_000))
    assert any(e.startswith("Annotation data too large") for e in result.errors)


def test_validate_accepts_model():
    data = AnnotationData.model_validate(doc(rect()))
    assert validate_annotation_data(data).valid


# ── sanitize ─────────────────────────────────────────────

def test_sanitize_clamps_stroke_and_replaces_color():
    clean = sanitize_annotation_data(doc(rect(strokeWidth=999, color="notacolor"))).to_wire()
    obj = clean["objects"][0]
    assert obj["strokeWidth"] == 50
    assert obj["color"] == "#FF0000"


@pytest.mark.parametrize("raw", MESSY_INPUTS)
def test_sanitize_output_always_validates(raw):
    clean = sanitize_annotation_data(raw)
    assert validate_annotation_data(clean).errors == []


@pytest.mark.parametrize("raw", MESSY_INPUTS)
def test_sanitize_is_idempotent(raw):
    once = sanitize_annotation_data(raw).to_wire()
    twice = sanitize_annotation_data(once).to_wire()
    assert twice == once


def test_sanitize_truncates_to_oldest_objects():
    raw = doc(*[rect(f"r{i}") for i in range(10_000)])
    clean = sanitize_annotation_data(raw)
    assert len(clean.objects) == MAX_OBJECTS
    assert clean.objects[0].id == "r0"
    assert clean.objects[-1].id == f"r{MAX_OBJECTS - 1}"


def test_sanitize_downsamples_freehand():
    raw = doc({"id": "f", "type": "freehand", "points": [float(i % 800) for i in range(50_000)]})
    points = sanitize_annotation_data(raw).objects[0].points
    assert len(points) <= 2 * MAX_FREEHAND_POINTS
    assert len(points) % 2 == 0


def test_sanitize_reassigns_duplicate_and_missing_ids():
    clean = sanitize_annotation_data(doc(rect("same"), rect("same"), {"type": "circle"}))
    ids = [o.id for o in clean.objects]
    assert ids[0] == "same"
    assert len(set(ids)) == 3
    assert ids[2].startswith("ann_")


def test_sanitize_drops_unknown_types_and_fixes_points():
    clean = sanitize_annotation_data(doc(
        {"id": "x", "type": "star"},
        {"id": "a", "type": "arrow", "points": [1, 2]},
    ))
    assert [o.type for o in clean.objects] == ["arrow"]
    assert clean.objects[0].points == [0, 0, 100, 100]


def test_sanitize_non_finite_numbers_fall_back():
    clean = sanitize_annotation_data(doc(
        {"id": "c", "type": "circle", "x": float("nan"), "radius": float("inf"), "opacity": float("-inf")},
    ))
    circle = clean.objects[0]
    assert (circle.x, circle.radius, circle.opacity) == (0, 50, 1)
    assert all(math.isfinite(v) for v in (circle.x, circle.y, circle.radius))


def test_sanitize_canvas_bounds():
    clean = sanitize_annotation_data({"version": 2.7, "canvas": {"width": 0, "height": 99999, "scale": -1}})
    assert clean.version == 2
    assert clean.canvas.width == 1
    assert clean.canvas.height == MAX_CANVAS_DIMENSION
    assert clean.canvas.scale is None
    assert clean.objects == []


def test_sanitize_drops_trailing_objects_when_oversize():
    config = AnnotationConfig(max_data_size_bytes=20_000)
    raw = doc(*[{"id": f"t{i}", "type": "text", "text": "x" * 400, "color": "#000"} for i in range(100)])
    clean = sanitize_annotation_data(raw, config)
    assert 0 < len(clean.objects) < 100
    assert clean.objects[0].id == "t0"
    assert serialized_size(clean) <= 20_000
    assert validate_annotation_data(clean, config).errors == []


def test_default_size_limit():
    raw = doc({"id": "t", "type": "text", "text": "x" * (MAX_DATA_SIZE_BYTES + 1)})
    result = validate_annotation_data(raw)
    assert any(e.startswith("Annotation data too large") for e in result.errors)

    clean = sanitize_annotation_data(raw)
    assert serialized_size(clean) <= MAX_DATA_SIZE_BYTES


def test_validate_single_object():
    from fieldmedia.services.annotation_validation import validate_annotation_object

    ok = validate_annotation_object(rect("r"), 800, 600)
    assert ok.valid and ok.errors == []

    bad = validate_annotation_object({"type": "star", "color": "blue"}, 800, 600)
    assert not bad.valid
    assert "Object missing valid ID" in bad.errors
    assert "Invalid object type: star" in bad.errors
