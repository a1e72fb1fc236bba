"""Hit testing and bounds for annotation objects, shared by all renderers.

Line-like points are offsets from the object's (x, y).
"""

from __future__ import annotations

import math

HIT_PADDING = 10


def distance_to_segment(px: float, py: float, x1: float, y1: float, x2: float, y2: float) -> float:
    dx = x2 - x1
    dy = y2 - y1
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(px - x1, py - y1)
    t = ((px - x1) * dx + (py - y1) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return math.hypot(px - (x1 + t * dx), py - (y1 + t * dy))


def absolute_points(obj) -> list[tuple[float, float]]:
    points = list(getattr(obj, "points", None) or [])
    return [(obj.x + points[i], obj.y + points[i + 1]) for i in range(0, len(points) - 1, 2)]


def text_extent(obj) -> tuple[float, float]:
    """Estimated (width, height) of a text object."""
    width = obj.width or (len(obj.text) or 5) * obj.font_size * 0.6
    return width, obj.font_size


def _near_polyline(x: float, y: float, vertices: list[tuple[float, float]], tolerance: float) -> bool:
    if len(vertices) == 1:
        return math.hypot(x - vertices[0][0], y - vertices[0][1]) < tolerance
    return any(
        distance_to_segment(x, y, *vertices[i], *vertices[i + 1]) < tolerance
        for i in range(len(vertices) - 1)
    )


def is_point_in_object(x: float, y: float, obj, padding: float = HIT_PADDING) -> bool:
    tolerance = padding + (obj.stroke_width or 2)

    if obj.type in ("arrow", "line", "measurement"):
        return _near_polyline(x, y, absolute_points(obj)[:2], tolerance)
    if obj.type == "freehand":
        vertices = absolute_points(obj)
        return bool(vertices) and _near_polyline(x, y, vertices, tolerance)
    if obj.type == "rect":
        return (
            obj.x - padding <= x <= obj.x + obj.width + padding
            and obj.y - padding <= y <= obj.y + obj.height + padding
        )
    if obj.type == "circle":
        return math.hypot(x - obj.x, y - obj.y) <= obj.radius + padding
    if obj.type == "ellipse":
        rx = obj.radius_x + padding
        ry = obj.radius_y + padding
        return ((x - obj.x) / rx) ** 2 + ((y - obj.y) / ry) ** 2 <= 1
    if obj.type == "text":
        width, height = text_extent(obj)
        return (
            obj.x - padding <= x <= obj.x + width + padding
            and obj.y - padding <= y <= obj.y + height + padding
        )
    return False


def hit_test(objects, x: float, y: float, padding: float = HIT_PADDING):
    """Top-most object under (x, y): later objects are drawn over earlier ones."""
    for obj in reversed(objects):
        if is_point_in_object(x, y, obj, padding):
            return obj
    return None


def bounding_box(obj) -> tuple[float, float, float, float]:
    """(left, top, right, bottom) in document units, stroke not included."""
    if obj.type in ("arrow", "line", "measurement", "freehand"):
        vertices = absolute_points(obj) or [(obj.x, obj.y)]
        xs = [vx for vx, _ in vertices]
        ys = [vy for _, vy in vertices]
        return min(xs), min(ys), max(xs), max(ys)
    if obj.type == "rect":
        return obj.x, obj.y, obj.x + obj.width, obj.y + obj.height
    if obj.type == "circle":
        return obj.x - obj.radius, obj.y - obj.radius, obj.x + obj.radius, obj.y + obj.radius
    if obj.type == "ellipse":
        return obj.x - obj.radius_x, obj.y - obj.radius_y, obj.x + obj.radius_x, obj.y + obj.radius_y
    if obj.type == "text":
        width, height = text_extent(obj)
        return obj.x, obj.y, obj.x + width, obj.y + height
    return obj.x, obj.y, obj.x, obj.y
