"""Raster renderer: flattens annotations onto an image with Pillow."""

from __future__ import annotations

import io

from PIL import Image, ImageColor, ImageDraw, ImageFont

from fieldmedia.canvas.geometry import absolute_points, text_extent
from fieldmedia.canvas.renderer import CanvasRenderer
from fieldmedia.canvas.svg import arrow_head
from fieldmedia.services.annotation_validation import format_measurement, normalize_color

_FORMATS = {"png": "PNG", "jpeg": "JPEG", "jpg": "JPEG", "webp": "WEBP"}


def _rgba(color: str | None, opacity: float = 1.0) -> tuple[int, int, int, int]:
    r, g, b = ImageColor.getrgb(normalize_color(color))[:3]
    return r, g, b, round(255 * max(0.0, min(1.0, opacity)))


def _font(size: float):
    return ImageFont.load_default(size=max(1, round(size)))


class RasterRenderer(CanvasRenderer):
    """Draws into a PIL image of size canvas × scale."""

    def __init__(self, width: float = 1, height: float = 1, scale: float = 1.0, background_color: str = "#FFFFFF"):
        super().__init__(width, height, scale)
        self.background_color = background_color
        self._image: Image.Image | None = None

    def _size(self) -> tuple[int, int]:
        return max(1, round(self.width * self.scale)), max(1, round(self.height * self.scale))

    def _base(self) -> Image.Image:
        size = self._size()
        if isinstance(self.background, (bytes, bytearray)):
            with Image.open(io.BytesIO(self.background)) as img:
                return img.convert("RGBA").resize(size)
        return Image.new("RGBA", size, self.background_color)

    def render(self):
        image = self._base()
        for obj in self.objects:
            layer = Image.new("RGBA", image.size, (0, 0, 0, 0))
            self._draw_object(ImageDraw.Draw(layer), obj)
            image = Image.alpha_composite(image, layer)
        self._image = image

    def _xy(self, x: float, y: float) -> tuple[float, float]:
        return x * self.scale, y * self.scale

    def _draw_object(self, draw: ImageDraw.ImageDraw, obj):
        s = self.scale
        stroke = _rgba(obj.color, obj.opacity)
        width = max(1, round(obj.stroke_width * s))
        fill = _rgba(obj.fill, obj.opacity) if getattr(obj, "fill", None) else None

        if obj.type in ("arrow", "line", "measurement", "freehand"):
            vertices = [self._xy(px, py) for px, py in absolute_points(obj)]
            if obj.type != "freehand":
                vertices = vertices[:2]
            if len(vertices) < 2:
                return
            draw.line(vertices, fill=stroke, width=width, joint="curve")
            if obj.type == "arrow":
                (x1, y1), (x2, y2) = vertices
                draw.polygon(arrow_head(x1, y1, x2, y2, obj.pointer_length * s), fill=fill or stroke)
            elif obj.type == "measurement":
                (x1, y1), (x2, y2) = vertices
                tick = 5 * s
                for tx, ty in ((x1, y1), (x2, y2)):
                    draw.line([(tx - tick, ty - tick), (tx + tick, ty + tick)], fill=stroke, width=width)
                if obj.show_label:
                    label = format_measurement(obj.length, obj.unit)
                    draw.text(((x1 + x2) / 2, (y1 + y2) / 2 - 10 * s), label, fill=stroke,
                              font=_font(obj.font_size * s), anchor="ms")
            return

        if obj.type == "rect":
            box = [self._xy(obj.x, obj.y), self._xy(obj.x + obj.width * obj.scale_x, obj.y + obj.height * obj.scale_y)]
            if obj.corner_radius:
                draw.rounded_rectangle(box, radius=obj.corner_radius * s, outline=stroke, fill=fill, width=width)
            else:
                draw.rectangle(box, outline=stroke, fill=fill, width=width)
        elif obj.type in ("circle", "ellipse"):
            rx = obj.radius if obj.type == "circle" else obj.radius_x * obj.scale_x
            ry = obj.radius if obj.type == "circle" else obj.radius_y * obj.scale_y
            box = [self._xy(obj.x - rx, obj.y - ry), self._xy(obj.x + rx, obj.y + ry)]
            draw.ellipse(box, outline=stroke, fill=fill, width=width)
        elif obj.type == "text":
            color = fill or stroke
            text_width, _ = text_extent(obj)
            anchor_x = {"left": obj.x, "center": obj.x + text_width / 2, "right": obj.x + text_width}[obj.align]
            anchor = {"left": "la", "center": "ma", "right": "ra"}[obj.align]
            draw.text(
                self._xy(anchor_x + obj.padding, obj.y + obj.padding), obj.text,
                fill=color, font=_font(obj.font_size * s), anchor=anchor,
            )

    def export(self, format: str = "png", **options) -> bytes:
        """Encode the scene. `quality` applies to JPEG/WebP."""
        pil_format = _FORMATS.get(format.lower())
        if pil_format is None:
            raise ValueError(f"RasterRenderer cannot export {format}")
        if self._image is None or self._dirty or not self._mounted:
            self.render()
            self._dirty = False
        image = self._image
        buf = io.BytesIO()
        if pil_format == "JPEG":
            image.convert("RGB").save(buf, pil_format, quality=options.get("quality", 90))
        elif pil_format == "WEBP":
            image.save(buf, pil_format, quality=options.get("quality", 90))
        else:
            image.save(buf, pil_format)
        return buf.getvalue()

    @property
    def native(self) -> Image.Image | None:
        return self._image
