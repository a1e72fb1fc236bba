import io

import pytest
from PIL import Image

from fieldmedia.canvas import (
    CanvasPointerEvent, DevicePointer, RasterRenderer, ScaledPointerAdapter, SvgRenderer,
    annotation_to_svg, bounding_box, hit_test, is_point_in_object, render_svg,
)
from fieldmedia.schemas import AnnotationData, ArrowAnnotation, CircleAnnotation, RectAnnotation, TextAnnotation


@pytest.fixture
def document():
    return AnnotationData.model_validate({
        "version": 1,
        "canvas": {"width": 200, "height": 100},
        "objects": [
            {"id": "box", "type": "rect", "x": 10, "y": 10, "width": 80, "height": 60, "color": "#00FF00"},
            {"id": "dot", "type": "circle", "x": 50, "y": 40, "radius": 10, "color": "#0000FF", "fill": "#0000FF"},
            {"id": "arrow", "type": "arrow", "x": 100, "y": 50, "points": [0, 0, 80, 0], "color": "#FF0000"},
            {"id": "label", "type": "text", "x": 120, "y": 70, "text": "Crack <here>", "fontSize": 12},
            {"id": "ruler", "type": "measurement", "x": 0, "y": 90, "points": [0, 0, 100, 0],
             "length": 2.5, "unit": "ft", "pixelsPerUnit": 40},
        ],
    })


# ── pointer adapter ──────────────────────────────────────

def test_adapter_converts_device_pixels_to_document_units():
    adapter = ScaledPointerAdapter(scale=2.0, offset_x=10, offset_y=20)
    event = adapter.to_canvas_event(DevicePointer(client_x=110, client_y=220, shift_key=True))
    assert (event.x, event.y) == (50, 100)
    assert event.shift_key
    assert adapter.to_device(50, 100) == (110, 220)


def test_adapter_rejects_non_positive_scale():
    with pytest.raises(ValueError):
        ScaledPointerAdapter(scale=0)


# ── geometry ─────────────────────────────────────────────

def test_hit_test_returns_topmost(document):
    # dot is drawn after box and sits inside it
    assert hit_test(document.objects, 50, 40).id == "dot"
    assert hit_test(document.objects, 15, 65).id == "box"
    assert hit_test(document.objects, 199, 5) is None


def test_line_hit_uses_relative_points():
    arrow = ArrowAnnotation(id="a", x=100, y=50, points=[0, 0, 80, 0])
    assert is_point_in_object(140, 52, arrow)
    assert not is_point_in_object(40, 50, arrow)


def test_text_hit_without_width_estimates_extent():
    text = TextAnnotation(id="t", x=0, y=0, text="", font_size=10)
    assert is_point_in_object(25, 5, text, padding=0)
    assert not is_point_in_object(40, 5, text, padding=0)


def test_bounding_boxes():
    assert bounding_box(RectAnnotation(id="r", x=1, y=2, width=3, height=4)) == (1, 2, 4, 6)
    assert bounding_box(CircleAnnotation(id="c", x=10, y=10, radius=5)) == (5, 5, 15, 15)
    assert bounding_box(ArrowAnnotation(id="a", x=10, y=10, points=[0, 0, -5, 20])) == (5, 10, 10, 30)


# ── renderer contract ────────────────────────────────────

def test_batch_draw_renders_once(document):
    renderer = SvgRenderer()
    renderer.mount()
    baseline = renderer.render_count
    with renderer.batch_draw():
        renderer.draw(document)
        renderer.set_scale(2)
        renderer.set_size(400, 200)
        assert renderer.render_count == baseline
    assert renderer.render_count == baseline + 1


def test_set_size_rejects_non_positive():
    renderer = SvgRenderer()
    with pytest.raises(ValueError):
        renderer.set_size(0, 10)
    with pytest.raises(ValueError):
        renderer.set_scale(-1)


def test_selection_filters_unknown_ids_and_emits(document):
    renderer = SvgRenderer()
    renderer.draw(document)
    seen = []
    unsubscribe = renderer.on("selectionchange", seen.append)

    renderer.set_selection(["box", "ghost", "box"])
    renderer.set_selection(["box"])
    assert renderer.get_selection() == ["box"]
    assert seen == [["box"]]

    unsubscribe()
    renderer.set_selection([])
    assert seen == [["box"]]


def test_redraw_drops_selection_of_removed_objects(document):
    renderer = SvgRenderer()
    renderer.draw(document)
    renderer.set_selection(["box", "dot"])
    renderer.draw(document.model_copy(update={"objects": document.objects[1:]}))
    assert renderer.get_selection() == ["dot"]


def test_dispatch_pointer_sets_target_and_honours_prevent_default(document):
    renderer = SvgRenderer()
    renderer.draw(document)
    calls = []

    def first(event):
        calls.append(("first", event.target_id))
        event.prevent_default()

    renderer.on("pointerdown", first)
    renderer.on("pointerdown", lambda event: calls.append(("second", event.target_id)))

    event = renderer.dispatch_pointer(CanvasPointerEvent(x=50, y=40))
    assert calls == [("first", "dot")]
    assert not event.is_background

    background = renderer.dispatch_pointer(CanvasPointerEvent(x=199, y=5, type="pointermove"))
    assert background.is_background
    assert background.target_id is None


def test_unmount_clears_handlers(document):
    renderer = SvgRenderer()
    renderer.mount()
    calls = []
    renderer.on("pointerdown", calls.append)
    renderer.unmount()
    renderer.dispatch_pointer(CanvasPointerEvent(x=0, y=0))
    assert calls == []
    assert not renderer.is_mounted


# ── SVG ──────────────────────────────────────────────────

def test_svg_document(document):
    svg = render_svg(document, background_url="https://cdn.test/p.jpg?a=1&b=2")
    assert svg.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert 'viewBox="0 0 200 100"' in svg
    assert 'href="https://cdn.test/p.jpg?a=1&amp;b=2"' in svg
    assert "<rect" in svg and "<circle" in svg and "<polygon" in svg
    assert "Crack &lt;here&gt;" in svg
    assert "2.50 ft" in svg


def test_svg_line_points_are_offset_by_position():
    svg = annotation_to_svg(ArrowAnnotation(id="a", x=100, y=50, points=[0, 0, 80, 0]))
    assert 'x1="100" y1="50" x2="180" y2="50"' in svg


def test_svg_renderer_export_and_scale(document):
    renderer = SvgRenderer(scale=2)
    renderer.mount()
    renderer.draw(document)
    svg = renderer.export()
    assert 'width="400" height="200"' in svg
    assert len(renderer.native) == len(document.objects)
    with pytest.raises(ValueError):
        renderer.export("png")


# ── raster ───────────────────────────────────────────────

def test_raster_png_has_scaled_size(document):
    renderer = RasterRenderer(scale=2)
    renderer.mount()
    renderer.draw(document)
    png = renderer.export("png")

    img = Image.open(io.BytesIO(png))
    assert img.format == "PNG"
    assert img.size == (400, 200)
    # filled blue dot centre, at 2x
    assert img.getpixel((100, 80))[:3] == (0, 0, 255)
    # untouched background
    assert img.getpixel((390, 10))[:3] == (255, 255, 255)


def test_raster_jpeg_over_background_photo(document, jpeg_bytes):
    renderer = RasterRenderer()
    renderer.set_background_image(jpeg_bytes)
    renderer.draw(document)
    jpeg = renderer.export("jpeg", quality=80)

    img = Image.open(io.BytesIO(jpeg))
    assert img.format == "JPEG"
    assert img.size == (200, 100)


def test_raster_rejects_unknown_format(document):
    renderer = RasterRenderer()
    renderer.draw(document)
    with pytest.raises(ValueError):
        renderer.export("tiff")
