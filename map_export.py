"""
map_export.py - Export rendered terrain maps as PNG, SVG or PDF

Takes bounds, contours and a grid, renders at print resolution, and
returns the encoded file as bytes with its MIME type and a filename:
- PNG with text metadata and DPI header
- SVG with <title>/<desc> metadata
- PDF sheets (optionally tiled across several pages) with title and footer
"""

import io
import logging
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont
from PIL.PngImagePlugin import PngInfo

from contours import ContourLine
from game_grid import CellGrid
from map_errors import ExportError
from map_utils import Bounds, PixelProjection
from render_helpers import SvgCanvas
from terrain_map import RenderOptions, render_map, render_to_image

logger = logging.getLogger(__name__)

SOFTWARE_NAME = "terrain-grid-map"
DEFAULT_TITLE = "Terrain Map"
MM_PER_INCH = 25.4

# PDF page layout
PDF_MARGIN_MM = 10
PDF_TITLE_SIZE_PT = 16
PDF_FOOTER_SIZE_PT = 8

# Refuse renders larger than this many pixels in total
MAX_EXPORT_PIXELS = 200_000_000


class ExportFormat(str, Enum):
    PNG = "png"
    SVG = "svg"
    PDF = "pdf"


MIME_TYPES = {
    ExportFormat.PNG: "image/png",
    ExportFormat.SVG: "image/svg+xml",
    ExportFormat.PDF: "application/pdf",
}


class PaperSize(str, Enum):
    A4 = "a4"
    LETTER = "letter"
    LEGAL = "legal"
    A3 = "a3"
    TABLOID = "tabloid"
    CUSTOM = "custom"


# Portrait (width, height) in millimeters
PAPER_SIZES_MM: Dict[PaperSize, Tuple[float, float]] = {
    PaperSize.A4: (210, 297),
    PaperSize.LETTER: (215.9, 279.4),
    PaperSize.LEGAL: (215.9, 355.6),
    PaperSize.A3: (297, 420),
    PaperSize.TABLOID: (279.4, 431.8),
}


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


@dataclass
class ExportOptions:
    """
    Output format and page settings.

    Attributes:
        format: png, svg or pdf
        paper_size: Named paper size, or CUSTOM with custom_width_mm/custom_height_mm
        orientation: Landscape swaps width and height of a portrait sheet
        dpi: Output resolution
        fit_to_paper: PNG only; render at page pixel size instead of the
            render options' size
        include_metadata: Embed title/date/bounds (PNG text, PDF footer, SVG desc)
        title: Map title; DEFAULT_TITLE when unset
        filename: Output filename; terrain-map-YYYY-MM-DD.<ext> when unset
        pages_across, pages_down: PDF only; tile the map over several sheets
    """
    format: ExportFormat = ExportFormat.PNG
    paper_size: PaperSize = PaperSize.LETTER
    orientation: Orientation = Orientation.LANDSCAPE
    dpi: int = 150
    custom_width_mm: Optional[float] = None
    custom_height_mm: Optional[float] = None
    fit_to_paper: bool = True
    include_metadata: bool = True
    title: Optional[str] = None
    filename: Optional[str] = None
    pages_across: int = 1
    pages_down: int = 1

    def __post_init__(self):
        self.format = ExportFormat(self.format)
        self.paper_size = PaperSize(self.paper_size)
        self.orientation = Orientation(self.orientation)
        if self.dpi <= 0:
            raise ValueError(f"dpi must be positive, got {self.dpi}")
        if self.pages_across < 1 or self.pages_down < 1:
            raise ValueError("pages_across and pages_down must be at least 1")

    @classmethod
    def from_dict(cls, data: Dict) -> 'ExportOptions':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        try:
            for name in ("dpi", "pages_across", "pages_down"):
                if name in values:
                    values[name] = int(values[name])
            for name in ("custom_width_mm", "custom_height_mm"):
                if values.get(name) is not None:
                    values[name] = float(values[name])
        except TypeError as e:
            raise ValueError(f"Invalid export options: {e}") from e
        return cls(**values)


@dataclass(frozen=True)
class ExportResult:
    data: bytes
    mime_type: str
    filename: str


def page_size_mm(options: ExportOptions) -> Tuple[float, float]:
    """Sheet (width, height) in millimeters after orientation."""
    if options.paper_size == PaperSize.CUSTOM:
        width, height = options.custom_width_mm, options.custom_height_mm
        if not width or not height or width <= 0 or height <= 0:
            raise ValueError("Custom paper size needs positive custom_width_mm and custom_height_mm")
    else:
        width, height = PAPER_SIZES_MM[options.paper_size]

    if options.orientation == Orientation.LANDSCAPE and width < height:
        width, height = height, width
    return (width, height)


def mm_to_px(mm: float, dpi: int) -> int:
    return int(round(mm / MM_PER_INCH * dpi))


def page_size_px(options: ExportOptions) -> Tuple[int, int]:
    """Sheet (width, height) in pixels at options.dpi."""
    width_mm, height_mm = page_size_mm(options)
    return (mm_to_px(width_mm, options.dpi), mm_to_px(height_mm, options.dpi))


def default_filename(fmt: ExportFormat, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"terrain-map-{today:%Y-%m-%d}.{ExportFormat(fmt).value}"


def _check_pixels(width: int, height: int) -> None:
    if width * height > MAX_EXPORT_PIXELS:
        raise ExportError(
            f"Export of {width}x{height} pixels exceeds the {MAX_EXPORT_PIXELS:,} pixel limit; "
            f"lower the DPI or page count"
        )


def _corner_text(bounds: Bounds) -> str:
    nw, ne, se, sw = bounds.corners
    return "  ".join(f"{name} {lat:.5f}, {lon:.5f}"
                     for name, (lon, lat) in zip(("NW", "NE", "SE", "SW"), (nw, ne, se, sw)))


def export_png(bounds: Bounds, contours: List[ContourLine], grid: CellGrid,
               render_options: RenderOptions, options: ExportOptions) -> bytes:
    if options.fit_to_paper:
        width, height = page_size_px(options)
        render_options = replace(render_options, width=width, height=height)
    _check_pixels(render_options.width, render_options.height)

    image = render_to_image(bounds, contours, grid, render_options)

    save_kwargs = {"dpi": (options.dpi, options.dpi)}
    if options.include_metadata:
        info = PngInfo()
        info.add_text("Title", options.title or DEFAULT_TITLE)
        info.add_text("Creation Time", datetime.now().isoformat(timespec="seconds"))
        info.add_text("Bounds", bounds.describe())
        info.add_text("Software", SOFTWARE_NAME)
        save_kwargs["pnginfo"] = info

    buffer = io.BytesIO()
    image.save(buffer, format="PNG", **save_kwargs)
    return buffer.getvalue()


def export_svg(bounds: Bounds, contours: List[ContourLine], grid: CellGrid,
               render_options: RenderOptions, options: ExportOptions) -> bytes:
    width, height = page_size_px(options)
    render_options = replace(render_options, width=width, height=height)

    title = description = None
    if options.include_metadata:
        title = options.title or DEFAULT_TITLE
        description = (f"Bounds: {bounds.describe()}; "
                       f"generated {datetime.now().isoformat(timespec='seconds')} by {SOFTWARE_NAME}")

    canvas = SvgCanvas(width, height, title=title, description=description)
    render_map(canvas, bounds, contours, grid, render_options)
    return canvas.tostring().encode("utf-8")


def _pdf_page(
    tile: Image.Image,
    page_px: Tuple[int, int],
    margin: int,
    header: int,
    footer: int,
    title: str,
    footer_text: Optional[str],
    dpi: int,
) -> Image.Image:
    """Compose one sheet: title, map tile with a border, footer."""
    page = Image.new("RGB", page_px, (255, 255, 255))
    draw = ImageDraw.Draw(page)
    title_font = ImageFont.load_default(size=max(1, int(PDF_TITLE_SIZE_PT * dpi / 72)))
    footer_font = ImageFont.load_default(size=max(1, int(PDF_FOOTER_SIZE_PT * dpi / 72)))

    draw.text((page_px[0] / 2, margin + header / 2), title, fill=(0, 0, 0),
              font=title_font, anchor="mm")

    top = margin + header
    page.paste(tile, (margin, top))
    draw.rectangle((margin, top, margin + tile.width - 1, top + tile.height - 1),
                   outline=(0, 0, 0), width=max(1, dpi // 100))

    if footer_text:
        draw.text((margin, page_px[1] - margin - footer / 2), footer_text,
                  fill=(60, 60, 60), font=footer_font, anchor="lm")
    return page


def export_pdf(bounds: Bounds, contours: List[ContourLine], grid: CellGrid,
               render_options: RenderOptions, options: ExportOptions) -> bytes:
    page_w, page_h = page_size_px(options)
    dpi = options.dpi
    margin = mm_to_px(PDF_MARGIN_MM, dpi)
    header = int(PDF_TITLE_SIZE_PT * dpi / 72 * 2)
    footer = int(PDF_FOOTER_SIZE_PT * dpi / 72 * 2) if options.include_metadata else 0

    area_w = page_w - 2 * margin
    area_h = page_h - 2 * margin - header - footer
    if area_w <= 0 or area_h <= 0:
        raise ExportError(f"Page {page_w}x{page_h}px is too small for the map at {dpi} dpi")

    full_w = area_w * options.pages_across
    full_h = area_h * options.pages_down
    _check_pixels(full_w, full_h)
    full = render_to_image(bounds, contours, grid,
                           replace(render_options, width=full_w, height=full_h))
    projection = PixelProjection(bounds, full_w, full_h)

    title = options.title or DEFAULT_TITLE
    generated = datetime.now().strftime("%Y-%m-%d %H:%M")
    total = options.pages_across * options.pages_down
    pages = []
    for row in range(options.pages_down):
        for col in range(options.pages_across):
            left, top = col * area_w, row * area_h
            tile = full.crop((left, top, left + area_w, top + area_h))

            footer_text = None
            if options.include_metadata:
                west, north = projection.pixel_to_lon_lat(left, top)
                east, south = projection.pixel_to_lon_lat(left + area_w, top + area_h)
                tile_bounds = Bounds(north=north, south=south, east=east, west=west)
                footer_text = (f"Generated {generated}   {_corner_text(tile_bounds)}   "
                               f"Page {len(pages) + 1}/{total}")
            pages.append(_pdf_page(tile, (page_w, page_h), margin, header, footer,
                                   title, footer_text, dpi))

    buffer = io.BytesIO()
    pages[0].save(
        buffer,
        format="PDF",
        save_all=True,
        append_images=pages[1:],
        resolution=float(dpi),
        title=title,
        subject=f"Bounds: {bounds.describe()}",
        creator=SOFTWARE_NAME,
        keywords="terrain, contours, grid, tabletop",
    )
    logger.info("  PDF: %d page(s) at %d dpi", total, dpi)
    return buffer.getvalue()


EXPORTERS = {
    ExportFormat.PNG: export_png,
    ExportFormat.SVG: export_svg,
    ExportFormat.PDF: export_pdf,
}


def export_map(
    bounds: Bounds,
    contours: Optional[List[ContourLine]],
    grid: Optional[CellGrid],
    render_options: Optional[RenderOptions] = None,
    export_options: Optional[ExportOptions] = None,
) -> ExportResult:
    """
    Render and encode a map.

    Args:
        bounds: Map bounds
        contours: Output of generate_contours (may be empty, not None)
        grid: Output of generate_grid
        render_options: Layer switches; width/height are replaced by the page size
            except for PNG with fit_to_paper=False
        export_options: Format, paper and metadata settings

    Returns:
        ExportResult with the file bytes, MIME type and filename

    Raises:
        ExportError: Missing contours/grid/bounds, or encoding failed
    """
    if bounds is None or contours is None or grid is None:
        raise ExportError("Export needs bounds, contours and a grid")
    render_options = render_options or RenderOptions()
    export_options = export_options or ExportOptions()
    fmt = export_options.format
    page_size_mm(export_options)

    logger.info("Exporting %s (%s, %s, %d dpi)", fmt.value.upper(),
                export_options.paper_size.value, export_options.orientation.value,
                export_options.dpi)
    try:
        data = EXPORTERS[fmt](bounds, contours, grid, render_options, export_options)
    except ExportError:
        raise
    except (OSError, ValueError, MemoryError) as e:
        logger.error("Export failed: %s", e)
        raise ExportError(f"Could not encode {fmt.value.upper()}: {e}") from e

    filename = export_options.filename or default_filename(fmt)
    logger.info("  %s: %d bytes", filename, len(data))
    return ExportResult(data=data, mime_type=MIME_TYPES[fmt], filename=filename)
