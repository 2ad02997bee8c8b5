"""
terrain_map.py - Contour and tabletop grid map renderer

Renders elevation contours and a square/hex gaming grid for a selected
area onto a Canvas (Pillow raster or SVG):
- Minor and major contour lines, labels on major lines
- Grid outlines and cell ids
- Scale bar and optional title

MapPipeline runs the whole flow: bounds -> elevation -> contours -> grid
-> render -> export.
"""

import logging
from dataclasses import dataclass, field, fields
from functools import partial
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

from PIL import Image

from contours import DEFAULT_INTERVAL_M, DEFAULT_MAJOR_EVERY, ContourLine, generate_contours
from fetch_elevation import ElevationFetcher, ElevationRaster
from game_grid import CellGrid, GridConfig, GridType, generate_grid_from_config
from map_errors import ComputeError, ExportError
from map_utils import Bounds, LayerZOrder, PixelProjection
from render_helpers import Canvas, RasterCanvas, SvgCanvas, label_points_along, ring_intersects_box

logger = logging.getLogger(__name__)

# Styles are sized for this canvas and scaled for others
REFERENCE_WIDTH = 800
REFERENCE_HEIGHT = 600

# Colors (RGB or RGBA)
BACKGROUND_COLOR = (255, 254, 240)      # Off-white/cream
CONTOUR_COLOR = (139, 69, 19)           # Brown
MAJOR_CONTOUR_COLOR = (101, 67, 33)     # Darker brown
CONTOUR_LABEL_COLOR = (101, 67, 33)
LABEL_BACKING_COLOR = (255, 255, 255, 190)
GRID_COLOR = (40, 40, 40, 150)
GRID_LABEL_COLOR = (40, 40, 40, 210)
SCALE_BAR_COLOR = (0, 0, 0)
TITLE_COLOR = (0, 0, 0)

# Line widths and font sizes in reference pixels
CONTOUR_WIDTH_PX = 1
MAJOR_CONTOUR_WIDTH_PX = 2
CONTOUR_LABEL_SIZE_PX = 10
CONTOUR_LABEL_SPACING_PX = 300
GRID_WIDTH_PX = 1
GRID_LABEL_SIZE_PX = 9
SCALE_BAR_WIDTH_PX = 2
SCALE_BAR_LABEL_SIZE_PX = 11
TITLE_SIZE_PX = 18

# (map width below km, bar length km); wider maps use SCALE_BAR_MAX_KM
SCALE_BAR_TIERS = [
    (0.025, 0.005),
    (0.05, 0.01),
    (0.1, 0.02),
    (0.25, 0.05),
    (1, 0.1),
    (5, 1),
    (50, 5),
    (100, 10),
]
SCALE_BAR_MAX_KM = 50


@dataclass
class RenderOptions:
    """
    Canvas size and layer switches for one render.

    Attributes:
        width, height: Canvas size in pixels
        show_contour_labels: Label major contours with their elevation
        show_grid: Draw grid outlines
        show_grid_labels: Draw cell ids (also needs the grid's labels on)
        show_scale_bar: Draw the scale bar
        title: Optional title across the top
        min_grid_cell_px: Skip outlines when cells are narrower than this
        min_label_cell_px: Skip cell ids when cells are narrower than this
        background_color, contour_color, major_contour_color,
        contour_label_color, grid_color, grid_label_color: RGB or RGBA tuples
    """
    width: int = REFERENCE_WIDTH
    height: int = REFERENCE_HEIGHT
    show_contour_labels: bool = True
    show_grid: bool = True
    show_grid_labels: bool = True
    show_scale_bar: bool = True
    title: Optional[str] = None
    min_grid_cell_px: float = 3.0
    min_label_cell_px: float = 24.0
    background_color: Tuple[int, ...] = BACKGROUND_COLOR
    contour_color: Tuple[int, ...] = CONTOUR_COLOR
    major_contour_color: Tuple[int, ...] = MAJOR_CONTOUR_COLOR
    contour_label_color: Tuple[int, ...] = CONTOUR_LABEL_COLOR
    grid_color: Tuple[int, ...] = GRID_COLOR
    grid_label_color: Tuple[int, ...] = GRID_LABEL_COLOR

    @classmethod
    def from_dict(cls, data: Dict) -> 'RenderOptions':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        try:
            for name in COLOR_FIELDS:
                if name in values:
                    values[name] = tuple(int(c) for c in values[name])
            for name in ("width", "height"):
                if name in values:
                    values[name] = int(values[name])
            for name in ("min_grid_cell_px", "min_label_cell_px"):
                if name in values:
                    values[name] = float(values[name])
        except TypeError as e:
            raise ValueError(f"Invalid render options: {e}") from e
        options = cls(**values)
        if options.width <= 0 or options.height <= 0:
            raise ValueError(f"Render size must be positive, got {options.width}x{options.height}")
        return options


COLOR_FIELDS = tuple(f.name for f in fields(RenderOptions) if f.name.endswith("_color"))


class ScaleBar(NamedTuple):
    length_km: float
    length_m: float
    pixels: float
    label: str


def style_scale(width: float, height: float) -> float:
    """Multiplier for reference-sized strokes and fonts."""
    return min(width / REFERENCE_WIDTH, height / REFERENCE_HEIGHT)


def choose_scale_bar(bounds: Bounds, width: float) -> ScaleBar:
    """
    Pick a round scale bar length for the map width.

    Args:
        bounds: Map bounds
        width: Canvas width in pixels

    Returns:
        ScaleBar with the real length, its pixel length and a label like "5 km"
    """
    map_width_km = bounds.width_meters / 1000
    length_km = SCALE_BAR_MAX_KM
    for limit_km, bar_km in SCALE_BAR_TIERS:
        if map_width_km < limit_km:
            length_km = bar_km
            break

    length_m = length_km * 1000
    pixels = PixelProjection(bounds, width, 1).meters_to_pixels(length_m)

    if length_km < 1:
        label = f"{length_m:.0f} m"
    else:
        label = f"{length_km:g} km"
    return ScaleBar(length_km, length_m, pixels, label)


def format_elevation(level: float) -> str:
    return f"{level:.0f}" if float(level).is_integer() else f"{level:g}"


def _draw_background(canvas: Canvas, options: RenderOptions) -> None:
    canvas.fill_background(options.background_color)


def _draw_contours(canvas: Canvas, projection: PixelProjection,
                   contours: List[ContourLine], major: bool, options: RenderOptions,
                   scale: float) -> int:
    color = options.major_contour_color if major else options.contour_color
    width = (MAJOR_CONTOUR_WIDTH_PX if major else CONTOUR_WIDTH_PX) * scale
    count = 0
    for contour in contours:
        if contour.is_major != major:
            continue
        for ring in contour.rings:
            canvas.polyline(projection.project_ring(ring), color, width)
            count += 1
    return count


def _draw_label(canvas: Canvas, position, text: str, size: float, color, scale: float,
                anchor: str = "middle") -> None:
    """Text over a translucent white box."""
    text_w, text_h = canvas.text_size(text, size)
    pad = 2 * scale
    x, y = position
    if anchor == "start":
        left = x - pad
    elif anchor == "end":
        left = x - text_w - pad
    else:
        left = x - text_w / 2 - pad
    canvas.rectangle((left, y - text_h / 2 - pad, left + text_w + 2 * pad, y + text_h / 2 + pad),
                     fill=LABEL_BACKING_COLOR)
    canvas.text(position, text, size, color, anchor)


def _draw_contour_labels(canvas: Canvas, projection: PixelProjection,
                         contours: List[ContourLine], options: RenderOptions,
                         scale: float) -> int:
    count = 0
    size = CONTOUR_LABEL_SIZE_PX * scale
    spacing = CONTOUR_LABEL_SPACING_PX * scale
    for contour in contours:
        if not contour.is_major or not contour.rings:
            continue
        ring = projection.project_ring(contour.longest_ring())
        text = format_elevation(contour.level)
        for x, y in label_points_along(ring, spacing):
            if not (0 <= x <= canvas.width and 0 <= y <= canvas.height):
                continue
            _draw_label(canvas, (x, y), text, size, options.contour_label_color, scale)
            count += 1
    return count


def _visible_cells(grid: CellGrid, projection: PixelProjection):
    """Yield (cell, pixel ring) for cells that overlap the canvas."""
    for cell in grid.cells_in_view(projection.bounds):
        points = projection.project_ring(cell.boundary_points)
        if ring_intersects_box(points, projection.width, projection.height):
            yield cell, points


def _draw_grid(canvas: Canvas, projection: PixelProjection, grid: CellGrid,
               options: RenderOptions, scale: float) -> int:
    cell_w, cell_h = grid.cell_pixel_size(projection)
    if min(cell_w, cell_h) < options.min_grid_cell_px:
        logger.warning(
            "Grid cells would be %.1fpx on canvas (min %.1fpx); skipping %d grid outlines",
            min(cell_w, cell_h), options.min_grid_cell_px, len(grid),
        )
        return 0

    width = GRID_WIDTH_PX * scale
    count = 0
    for _, points in _visible_cells(grid, projection):
        canvas.polygon(points, outline=options.grid_color, width=width)
        count += 1
    logger.debug("Drew %d of %d grid cells", count, len(grid))
    return count


def _draw_grid_labels(canvas: Canvas, projection: PixelProjection, grid: CellGrid,
                      options: RenderOptions, scale: float) -> int:
    if not grid.label_config.show_labels:
        return 0
    cell_w, cell_h = grid.cell_pixel_size(projection)
    if min(cell_w, cell_h) < options.min_label_cell_px:
        logger.info("Grid cells %.1fpx wide; too small for cell labels", min(cell_w, cell_h))
        return 0

    size = min(GRID_LABEL_SIZE_PX * scale, cell_h * 0.25)
    # Near the top of the cell so it doesn't cover the center
    offset = cell_h * (0.3 if grid.grid_type == GridType.HEX else 0.32)
    count = 0
    for cell, _ in _visible_cells(grid, projection):
        cx, cy = projection.to_pixel(*cell.center)
        y = cy - offset
        if not (0 <= cx <= canvas.width and 0 <= y <= canvas.height):
            continue
        canvas.text((cx, y), cell.id, size, options.grid_label_color)
        count += 1
    return count


def _draw_scale_bar(canvas: Canvas, bounds: Bounds, scale: float) -> ScaleBar:
    bar = choose_scale_bar(bounds, canvas.width)
    x0 = canvas.width * 0.04
    y0 = canvas.height * 0.95
    x1 = x0 + bar.pixels
    tick = 6 * scale
    width = SCALE_BAR_WIDTH_PX * scale
    label_size = SCALE_BAR_LABEL_SIZE_PX * scale

    _, label_h = canvas.text_size(bar.label, label_size)
    pad = 4 * scale
    canvas.rectangle((x0 - pad, y0 - tick - label_h - 2 * pad, x1 + pad, y0 + pad),
                     fill=LABEL_BACKING_COLOR)
    canvas.line((x0, y0), (x1, y0), SCALE_BAR_COLOR, width)
    canvas.line((x0, y0 - tick), (x0, y0), SCALE_BAR_COLOR, width)
    canvas.line((x1, y0 - tick), (x1, y0), SCALE_BAR_COLOR, width)
    canvas.text(((x0 + x1) / 2, y0 - tick - label_h / 2 - pad / 2), bar.label,
                label_size, SCALE_BAR_COLOR)
    return bar


def _draw_title(canvas: Canvas, title: str, scale: float) -> None:
    _draw_label(canvas, (canvas.width / 2, canvas.height * 0.04), title,
                TITLE_SIZE_PX * scale, TITLE_COLOR, scale)


def render_map(
    canvas: Canvas,
    bounds: Bounds,
    contours: List[ContourLine],
    grid: CellGrid,
    options: Optional[RenderOptions] = None,
) -> Dict[str, int]:
    """
    Render contours and grid onto a canvas.

    Both layers go through one PixelProjection so they stay aligned.
    Layers are drawn in LayerZOrder.

    Args:
        canvas: RasterCanvas, SvgCanvas or any other Canvas
        bounds: Geographic area mapped onto the full canvas
        contours: Output of generate_contours
        grid: Output of generate_grid
        options: Layer switches and density limits

    Returns:
        Counts of drawn items: contours, contour_labels, grid_cells, grid_labels
    """
    options = options or RenderOptions()
    projection = PixelProjection(bounds, canvas.width, canvas.height)
    scale = style_scale(canvas.width, canvas.height)
    stats = {"contours": 0, "contour_labels": 0, "grid_cells": 0, "grid_labels": 0}

    def minor():
        stats["contours"] += _draw_contours(canvas, projection, contours, False, options, scale)

    def major():
        stats["contours"] += _draw_contours(canvas, projection, contours, True, options, scale)

    def contour_labels():
        stats["contour_labels"] = _draw_contour_labels(canvas, projection, contours, options, scale)

    def grid_outlines():
        stats["grid_cells"] = _draw_grid(canvas, projection, grid, options, scale)

    def grid_labels():
        stats["grid_labels"] = _draw_grid_labels(canvas, projection, grid, options, scale)

    layers = [
        (LayerZOrder.BACKGROUND, "background", partial(_draw_background, canvas, options)),
        (LayerZOrder.CONTOURS_MINOR, "contours-minor", minor),
        (LayerZOrder.CONTOURS_MAJOR, "contours-major", major),
    ]
    if options.show_contour_labels:
        layers.append((LayerZOrder.CONTOUR_LABELS, "contour-labels", contour_labels))
    if options.show_grid:
        layers.append((LayerZOrder.GRID, "grid", grid_outlines))
    if options.show_grid_labels:
        layers.append((LayerZOrder.GRID_LABELS, "grid-labels", grid_labels))
    if options.show_scale_bar:
        layers.append((LayerZOrder.SCALE_BAR, "scale-bar", partial(_draw_scale_bar, canvas, bounds, scale)))
    if options.title:
        layers.append((LayerZOrder.TITLE, "title", partial(_draw_title, canvas, options.title, scale)))

    for _, name, draw in sorted(layers, key=lambda layer: layer[0]):
        canvas.begin_layer(name)
        draw()

    logger.info("Rendered %dx%d map: %d contour rings, %d labels, %d grid cells",
                canvas.width, canvas.height, stats["contours"],
                stats["contour_labels"], stats["grid_cells"])
    return stats


def render_to_image(
    bounds: Bounds,
    contours: List[ContourLine],
    grid: CellGrid,
    options: Optional[RenderOptions] = None,
) -> Image.Image:
    """Render onto a new Pillow RGB image of options.width x options.height."""
    options = options or RenderOptions()
    canvas = RasterCanvas(options.width, options.height, options.background_color)
    render_map(canvas, bounds, contours, grid, options)
    return canvas.image


def render_to_svg(
    bounds: Bounds,
    contours: List[ContourLine],
    grid: CellGrid,
    options: Optional[RenderOptions] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> str:
    """Render into an SVG document string."""
    options = options or RenderOptions()
    canvas = SvgCanvas(options.width, options.height, title=title, description=description)
    render_map(canvas, bounds, contours, grid, options)
    return canvas.tostring()


@dataclass
class MapPipeline:
    """
    Stage-by-stage terrain map generation.

    Each stage keeps its artifact, so a failed later stage can be retried
    without refetching. Selecting new bounds clears everything derived.

    Attributes:
        fetcher: Elevation source with provider fallback
        interval_m: Contour interval in meters
        major_every: Every Nth contour is major
        grid_config: Grid type, size and labels
        render_options: Canvas size and layer switches
    """
    fetcher: ElevationFetcher = field(default_factory=ElevationFetcher)
    interval_m: float = DEFAULT_INTERVAL_M
    major_every: int = DEFAULT_MAJOR_EVERY
    grid_config: GridConfig = field(default_factory=GridConfig)
    render_options: RenderOptions = field(default_factory=RenderOptions)

    bounds: Optional[Bounds] = field(default=None, init=False)
    raster: Optional[ElevationRaster] = field(default=None, init=False)
    contours: Optional[List[ContourLine]] = field(default=None, init=False)
    grid: Optional[CellGrid] = field(default=None, init=False)
    image: Optional[Image.Image] = field(default=None, init=False)

    def select(self, bounds: Union[Bounds, Dict]) -> Bounds:
        if not isinstance(bounds, Bounds):
            bounds = Bounds.from_dict(bounds)
        self.bounds = bounds
        self.raster = None
        self.contours = None
        self.grid = None
        self.image = None
        logger.info("Selected %s", bounds.describe(4))
        return bounds

    def load_elevation(self, source_hint: Optional[str] = None,
                       timeout: Optional[float] = None) -> ElevationRaster:
        if self.bounds is None:
            raise ComputeError("Select bounds before loading elevation")
        raster = self.fetcher.fetch(self.bounds, source_hint=source_hint, timeout=timeout)
        self.raster = raster
        self.contours = None
        self.image = None
        return raster

    def build_contours(self, interval_m: Optional[float] = None,
                       major_every: Optional[int] = None) -> List[ContourLine]:
        if self.raster is None:
            raise ComputeError("Load elevation before building contours")
        if interval_m is not None:
            self.interval_m = interval_m
        if major_every is not None:
            self.major_every = major_every
        self.contours = generate_contours(self.raster, self.interval_m, self.major_every)
        self.image = None
        return self.contours

    def build_grid(self, grid_config: Optional[GridConfig] = None) -> CellGrid:
        if self.bounds is None:
            raise ComputeError("Select bounds before building the grid")
        if grid_config is not None:
            self.grid_config = grid_config
        self.grid = generate_grid_from_config(self.bounds, self.grid_config)
        self.image = None
        logger.info("Grid: %r, %d cells", self.grid, len(self.grid))
        return self.grid

    def render(self, options: Optional[RenderOptions] = None) -> Image.Image:
        if self.contours is None or self.grid is None:
            raise ComputeError("Build contours and grid before rendering")
        if options is not None:
            self.render_options = options
        self.image = render_to_image(self.bounds, self.contours, self.grid, self.render_options)
        return self.image

    def export(self, export_options=None):
        """Export the current artifacts; returns a map_export.ExportResult."""
        from map_export import export_map

        if self.contours is None or self.grid is None:
            raise ExportError("Build contours and grid before exporting")
        return export_map(self.bounds, self.contours, self.grid,
                          self.render_options, export_options)

    def run(self, bounds: Union[Bounds, Dict], export_options=None,
            source_hint: Optional[str] = None):
        """Select, fetch, trace, grid and export in one call."""
        self.select(bounds)
        self.load_elevation(source_hint=source_hint)
        self.build_contours()
        self.build_grid()
        return self.export(export_options)
