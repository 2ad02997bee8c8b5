"""
Drawing surfaces and line helpers for terrain map rendering.

The renderer draws through the small Canvas interface below, so the same
layer code produces a Pillow raster (PNG/PDF) or an svgwrite document (SVG).
Colors are (r, g, b) or (r, g, b, a) tuples; alpha is blended on rasters and
emitted as opacity attributes in SVG.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

import svgwrite
from PIL import Image, ImageDraw, ImageFont

Color = Tuple[int, ...]
Point = Tuple[float, float]


def get_point_and_angle_at_distance(
    line_coords: List[Tuple[float, float]],
    target_distance: float
) -> Tuple[float, float, float]:
    """Get position and angle at a given distance along a line.

    Args:
        line_coords: List of (x, y) coordinate tuples defining the line
        target_distance: Distance along line to find point

    Returns:
        Tuple of (x, y, angle_degrees) at the target distance
    """
    cumulative = 0
    for i in range(len(line_coords) - 1):
        x1, y1 = line_coords[i]
        x2, y2 = line_coords[i + 1]
        seg_len = math.hypot(x2 - x1, y2 - y1)

        if cumulative + seg_len >= target_distance:
            remaining = target_distance - cumulative
            t = remaining / seg_len if seg_len > 0 else 0
            px = x1 + t * (x2 - x1)
            py = y1 + t * (y2 - y1)
            angle = math.degrees(math.atan2(y2 - y1, x2 - x1))
            return (px, py, angle)
        cumulative += seg_len

    # Past the end: clamp to the last point
    x1, y1 = line_coords[-2]
    x2, y2 = line_coords[-1]
    angle = math.degrees(math.atan2(y2 - y1, x2 - x1))
    return (line_coords[-1][0], line_coords[-1][1], angle)


def get_line_length(line_coords: List[Tuple[float, float]]) -> float:
    """Calculate total length of a line from its coordinates."""
    total = 0
    for i in range(len(line_coords) - 1):
        x1, y1 = line_coords[i]
        x2, y2 = line_coords[i + 1]
        total += math.hypot(x2 - x1, y2 - y1)
    return total


def label_points_along(
    line_coords: List[Point],
    spacing: float,
    max_labels: int = 3,
) -> List[Point]:
    """Evenly spaced label anchor points along a line.

    Starts half a spacing in so labels don't sit on the ring's seam.

    Args:
        line_coords: Line in pixel coordinates
        spacing: Pixels between labels
        max_labels: Upper bound on labels for one line

    Returns:
        List of (x, y) anchor points; empty if the line is shorter than spacing/2
    """
    if len(line_coords) < 2 or spacing <= 0:
        return []
    length = get_line_length(line_coords)
    if length < spacing / 2:
        return []

    points = []
    distance = min(spacing / 2, length / 2)
    while distance < length and len(points) < max_labels:
        x, y, _ = get_point_and_angle_at_distance(line_coords, distance)
        points.append((x, y))
        distance += spacing
    return points


def ring_intersects_box(points: Sequence[Point], width: float, height: float) -> bool:
    """Whether a pixel-space ring's bounding box overlaps the canvas."""
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return not (max(xs) < 0 or min(xs) > width or max(ys) < 0 or min(ys) > height)


def to_svg_color(color: Color) -> Tuple[str, float]:
    """Split an RGB(A) tuple into an SVG color string and opacity."""
    r, g, b = color[:3]
    opacity = color[3] / 255 if len(color) > 3 else 1.0
    return f"rgb({r},{g},{b})", opacity


class Canvas:
    """Drawing surface used by the renderer.

    Coordinates are pixels with the origin at the top left. Subclasses
    implement every drawing primitive.
    """

    width: int
    height: int

    def begin_layer(self, name: str) -> None:
        """Start a named layer; subsequent drawing belongs to it."""

    def fill_background(self, color: Color) -> None:
        raise NotImplementedError

    def polyline(self, points: Sequence[Point], color: Color, width: float) -> None:
        raise NotImplementedError

    def polygon(self, points: Sequence[Point], outline: Optional[Color] = None,
                width: float = 1, fill: Optional[Color] = None) -> None:
        raise NotImplementedError

    def line(self, start: Point, end: Point, color: Color, width: float) -> None:
        raise NotImplementedError

    def rectangle(self, box: Tuple[float, float, float, float],
                  fill: Optional[Color] = None, outline: Optional[Color] = None,
                  width: float = 1) -> None:
        raise NotImplementedError

    def text(self, position: Point, text: str, size: float, color: Color,
             anchor: str = "middle") -> None:
        """Draw text vertically centered on position.

        anchor is "start", "middle" or "end" horizontally.
        """
        raise NotImplementedError

    def text_size(self, text: str, size: float) -> Tuple[float, float]:
        raise NotImplementedError


# Pillow anchors for horizontally aligned, vertically centered text
_PIL_ANCHORS = {"start": "lm", "middle": "mm", "end": "rm"}


class RasterCanvas(Canvas):
    """Pillow-backed canvas with alpha-blended drawing onto an RGB image."""

    def __init__(self, width: int, height: int, background: Color = (255, 255, 255)):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self.image = Image.new("RGB", (self.width, self.height), background[:3])
        self._draw = ImageDraw.Draw(self.image, "RGBA")
        self._fonts: Dict[int, ImageFont.ImageFont] = {}

    def _font(self, size: float):
        key = max(1, int(round(size)))
        if key not in self._fonts:
            self._fonts[key] = ImageFont.load_default(size=key)
        return self._fonts[key]

    @staticmethod
    def _width(width: float) -> int:
        return max(1, int(round(width)))

    def fill_background(self, color: Color) -> None:
        self._draw.rectangle((0, 0, self.width, self.height), fill=color)

    def polyline(self, points, color, width) -> None:
        if len(points) < 2:
            return
        self._draw.line(list(points), fill=color, width=self._width(width), joint="curve")

    def polygon(self, points, outline=None, width=1, fill=None) -> None:
        if len(points) < 3:
            return
        self._draw.polygon(list(points), fill=fill, outline=outline, width=self._width(width))

    def line(self, start, end, color, width) -> None:
        self._draw.line([start, end], fill=color, width=self._width(width))

    def rectangle(self, box, fill=None, outline=None, width=1) -> None:
        x0, y0, x1, y1 = box
        self._draw.rectangle((min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)),
                             fill=fill, outline=outline, width=self._width(width))

    def text(self, position, text, size, color, anchor="middle") -> None:
        self._draw.text(position, text, fill=color, font=self._font(size),
                        anchor=_PIL_ANCHORS.get(anchor, "mm"))

    def text_size(self, text, size) -> Tuple[float, float]:
        left, top, right, bottom = self._draw.textbbox((0, 0), text, font=self._font(size))
        return (right - left, bottom - top)


class SvgCanvas(Canvas):
    """svgwrite-backed canvas; each begin_layer() opens a new <g> group."""

    # Average glyph advance for sans-serif, as a fraction of font size
    CHAR_WIDTH = 0.6

    def __init__(self, width: int, height: int, title: Optional[str] = None,
                 description: Optional[str] = None):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self.drawing = svgwrite.Drawing(
            size=(f"{self.width}px", f"{self.height}px"),
            profile="full",
            viewBox=f"0 0 {self.width} {self.height}",
        )
        if title or description:
            self.drawing.set_desc(title=title, desc=description)
        self._layer = self.drawing.add(self.drawing.g(id="map"))

    def begin_layer(self, name: str) -> None:
        self._layer = self.drawing.add(self.drawing.g(id=name))

    @staticmethod
    def _stroke(color: Color, width: float) -> Dict:
        stroke, opacity = to_svg_color(color)
        props = {"stroke": stroke, "stroke_width": round(width, 3)}
        if opacity < 1:
            props["stroke_opacity"] = round(opacity, 3)
        return props

    @staticmethod
    def _fill(color: Optional[Color]) -> Dict:
        if color is None:
            return {"fill": "none"}
        fill, opacity = to_svg_color(color)
        props = {"fill": fill}
        if opacity < 1:
            props["fill_opacity"] = round(opacity, 3)
        return props

    @staticmethod
    def _points(points) -> List[Tuple[float, float]]:
        return [(round(x, 2), round(y, 2)) for x, y in points]

    def fill_background(self, color: Color) -> None:
        self._layer.add(self.drawing.rect(
            insert=(0, 0), size=(self.width, self.height), **self._fill(color)
        ))

    def polyline(self, points, color, width) -> None:
        if len(points) < 2:
            return
        self._layer.add(self.drawing.polyline(
            points=self._points(points),
            stroke_linejoin="round",
            **self._stroke(color, width),
            **self._fill(None),
        ))

    def polygon(self, points, outline=None, width=1, fill=None) -> None:
        if len(points) < 3:
            return
        props = self._fill(fill)
        if outline is not None:
            props.update(self._stroke(outline, width))
        self._layer.add(self.drawing.polygon(points=self._points(points), **props))

    def line(self, start, end, color, width) -> None:
        self._layer.add(self.drawing.line(
            start=self._points([start])[0], end=self._points([end])[0],
            **self._stroke(color, width),
        ))

    def rectangle(self, box, fill=None, outline=None, width=1) -> None:
        x0, y0, x1, y1 = box
        props = self._fill(fill)
        if outline is not None:
            props.update(self._stroke(outline, width))
        self._layer.add(self.drawing.rect(
            insert=(round(min(x0, x1), 2), round(min(y0, y1), 2)),
            size=(round(abs(x1 - x0), 2), round(abs(y1 - y0), 2)),
            **props,
        ))

    def text(self, position, text, size, color, anchor="middle") -> None:
        fill, opacity = to_svg_color(color)
        props = {
            "insert": self._points([position])[0],
            "font_size": round(size, 2),
            "font_family": "sans-serif",
            "text_anchor": anchor,
            "dominant_baseline": "middle",
            "fill": fill,
        }
        if opacity < 1:
            props["fill_opacity"] = round(opacity, 3)
        self._layer.add(self.drawing.text(text, **props))

    def text_size(self, text, size) -> Tuple[float, float]:
        return (len(text) * size * self.CHAR_WIDTH, size)

    def tostring(self) -> str:
        return self.drawing.tostring()
