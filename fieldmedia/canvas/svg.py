"""Vector renderer: annotation objects as SVG elements."""

from __future__ import annotations

import math
from html import escape

from fieldmedia.canvas.geometry import absolute_points
from fieldmedia.canvas.renderer import CanvasRenderer
from fieldmedia.schemas.annotation import AnnotationData
from fieldmedia.services.annotation_validation import format_measurement


def _n(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _attr(value) -> str:
    return escape(str(value), quote=True)


def _stroke(obj) -> str:
    attrs = f'stroke="{_attr(obj.color)}" stroke-width="{_n(obj.stroke_width)}"'
    if obj.opacity < 1:
        attrs += f' opacity="{_n(obj.opacity)}"'
    return attrs


def _transform(obj, cx: float, cy: float) -> str:
    if not obj.rotation:
        return ""
    return f' transform="rotate({_n(obj.rotation)} {_n(cx)} {_n(cy)})"'


def _line(x1, y1, x2, y2, attrs: str) -> str:
    return f'<line x1="{_n(x1)}" y1="{_n(y1)}" x2="{_n(x2)}" y2="{_n(y2)}" {attrs}/>'


def arrow_head(x1: float, y1: float, x2: float, y2: float, length: float) -> list[tuple[float, float]]:
    """Triangle at (x2, y2) with sides `length` long, 30 degrees off the shaft."""
    angle = math.atan2(y2 - y1, x2 - x1)
    return [
        (x2, y2),
        (x2 - length * math.cos(angle - math.pi / 6), y2 - length * math.sin(angle - math.pi / 6)),
        (x2 - length * math.cos(angle + math.pi / 6), y2 - length * math.sin(angle + math.pi / 6)),
    ]


def annotation_to_svg(obj) -> str:
    """One object as SVG markup. Every annotation type has a case."""
    stroke = _stroke(obj)
    fill = _attr(obj.fill) if getattr(obj, "fill", None) else "none"

    if obj.type in ("arrow", "line", "measurement"):
        vertices = absolute_points(obj)
        if len(vertices) < 2:
            return ""
        (x1, y1), (x2, y2) = vertices[:2]
        transform = _transform(obj, obj.x, obj.y)
        if obj.type == "line":
            dash = f' stroke-dasharray="{" ".join(_n(d) for d in obj.dash)}"' if obj.dash else ""
            attrs = f'{stroke} stroke-linecap="{obj.line_cap or "round"}"{dash}'
            return f"<g{transform}>{_line(x1, y1, x2, y2, attrs)}</g>"
        if obj.type == "arrow":
            head = " ".join(f"{_n(px)},{_n(py)}" for px, py in arrow_head(x1, y1, x2, y2, obj.pointer_length))
            head_fill = _attr(obj.fill or obj.color)
            return (
                f"<g{transform}>"
                + _line(x1, y1, x2, y2, f'{stroke} stroke-linecap="round"')
                + f'<polygon points="{head}" fill="{head_fill}" stroke="{_attr(obj.color)}" stroke-width="1"/>'
                + "</g>"
            )
        parts = [
            _line(x1, y1, x2, y2, f'{stroke} stroke-linecap="round"'),
            _line(x1 - 5, y1 - 5, x1 + 5, y1 + 5, stroke),
            _line(x2 - 5, y2 - 5, x2 + 5, y2 + 5, stroke),
        ]
        if obj.show_label:
            offset = {"above": -10, "below": 10 + obj.font_size, "center": 0}[obj.label_position]
            parts.append(
                f'<text x="{_n((x1 + x2) / 2)}" y="{_n((y1 + y2) / 2 + offset)}" '
                f'font-size="{_n(obj.font_size)}" font-family="Arial" fill="{_attr(obj.color)}" '
                f'text-anchor="middle">{escape(format_measurement(obj.length, obj.unit))}</text>'
            )
        return f"<g{transform}>{''.join(parts)}</g>"

    if obj.type == "freehand":
        vertices = absolute_points(obj)
        if not vertices:
            return ""
        d = f"M {_n(vertices[0][0])} {_n(vertices[0][1])}" + "".join(
            f" L {_n(px)} {_n(py)}" for px, py in vertices[1:]
        )
        return (
            f'<path d="{d}" {stroke} fill="none" '
            f'stroke-linecap="{obj.line_cap}" stroke-linejoin="{obj.line_join}"{_transform(obj, obj.x, obj.y)}/>'
        )

    if obj.type == "rect":
        radius = f' rx="{_n(obj.corner_radius)}"' if obj.corner_radius else ""
        return (
            f'<rect x="{_n(obj.x)}" y="{_n(obj.y)}" width="{_n(obj.width * obj.scale_x)}" '
            f'height="{_n(obj.height * obj.scale_y)}"{radius} {stroke} fill="{fill}"'
            f"{_transform(obj, obj.x, obj.y)}/>"
        )

    if obj.type == "circle":
        return f'<circle cx="{_n(obj.x)}" cy="{_n(obj.y)}" r="{_n(obj.radius)}" {stroke} fill="{fill}"/>'

    if obj.type == "ellipse":
        return (
            f'<ellipse cx="{_n(obj.x)}" cy="{_n(obj.y)}" rx="{_n(obj.radius_x * obj.scale_x)}" '
            f'ry="{_n(obj.radius_y * obj.scale_y)}" {stroke} fill="{fill}"{_transform(obj, obj.x, obj.y)}/>'
        )

    if obj.type == "text":
        weight = ' font-weight="bold"' if "bold" in obj.font_style else ""
        style = ' font-style="italic"' if "italic" in obj.font_style else ""
        anchor = {"left": "start", "center": "middle", "right": "end"}[obj.align]
        opacity = f' opacity="{_n(obj.opacity)}"' if obj.opacity < 1 else ""
        return (
            f'<text x="{_n(obj.x + obj.padding)}" y="{_n(obj.y + obj.padding)}" '
            f'font-size="{_n(obj.font_size)}" font-family="{_attr(obj.font_family)}"{weight}{style} '
            f'fill="{_attr(obj.fill or obj.color)}" text-anchor="{anchor}" dominant-baseline="hanging"'
            f"{opacity}{_transform(obj, obj.x, obj.y)}>{escape(obj.text)}</text>"
        )

    raise ValueError(f"Unknown annotation type: {obj.type}")


def _document(elements: list[str], width: float, height: float, background_url: str | None, scale: float) -> str:
    body = "\n  ".join(elements)
    image = (
        f'<image href="{_attr(background_url)}" width="{_n(width)}" height="{_n(height)}"/>\n  '
        if background_url else ""
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
        f'width="{_n(width * scale)}" height="{_n(height * scale)}" viewBox="0 0 {_n(width)} {_n(height)}">\n  '
        f"{image}{body}\n</svg>"
    )


def build_annotation_svg(
    objects, width: float, height: float, background_url: str | None = None, scale: float = 1.0,
) -> str:
    return _document([annotation_to_svg(obj) for obj in objects], width, height, background_url, scale)


def render_svg(data: AnnotationData, background_url: str | None = None) -> str:
    return build_annotation_svg(data.objects, data.canvas.width, data.canvas.height, background_url)


class SvgRenderer(CanvasRenderer):
    """Keeps the scene as a list of SVG element strings."""

    def __init__(self, width: float = 1, height: float = 1, scale: float = 1.0):
        super().__init__(width, height, scale)
        self._elements: list[str] = []
        self.render_count = 0

    def render(self):
        self._elements = [annotation_to_svg(obj) for obj in self.objects]
        self.render_count += 1

    def export(self, format: str = "svg", **options) -> str:
        if format != "svg":
            raise ValueError(f"SvgRenderer exports svg only, not {format}")
        if not self._mounted or self._dirty:
            self.render()
            self._dirty = False
        background = self.background if isinstance(self.background, str) else None
        return _document(self._elements, self.width, self.height, background, self.scale)

    @property
    def native(self) -> list[str]:
        return self._elements
