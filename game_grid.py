"""
game_grid.py - Tabletop gaming grid geometry over a geographic area

Square and pointy-top hexagon grids sized in real-world units. Cells are
laid out row-major from the north-west corner of the bounds.

Hex orientation is pointy-top: rows are offset horizontally by half a hex,
giving the classic brick tiling.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from shapely.geometry import Polygon

from map_errors import ComputeError
from map_utils import Bounds, PixelProjection, degrees_per_meter


class GridType(str, Enum):
    SQUARE = "square"
    HEX = "hex"


class LabelStyle(str, Enum):
    ALPHANUMERIC = "alphanumeric"  # A1, B1, ..., AA1
    NUMERIC = "numeric"            # 1,1  2,1 ...


UNIT_TO_METERS = {
    "feet": 0.3048,
    "meters": 1.0,
    "inches": 0.0254,
    "yards": 0.9144,
}

# Float slack when counting cells for a span that divides evenly
_COUNT_EPSILON = 1e-9


@dataclass(frozen=True)
class LabelConfig:
    """How grid cells are labelled."""
    show_labels: bool = True
    style: LabelStyle = LabelStyle.ALPHANUMERIC


@dataclass(frozen=True)
class GridConfig:
    """
    Grid settings chosen by the user.

    Attributes:
        grid_type: Square or hex
        size: Cell size in `unit` (square side, or hex flat-to-flat)
        unit: One of UNIT_TO_METERS
        show_labels: Whether cells get ids
        label_style: Alphanumeric (A1) or numeric (1,1) ids
    """
    grid_type: GridType = GridType.SQUARE
    size: float = 5
    unit: str = "feet"
    show_labels: bool = True
    label_style: LabelStyle = LabelStyle.ALPHANUMERIC

    @classmethod
    def from_dict(cls, data: Dict) -> 'GridConfig':
        return cls(
            grid_type=GridType(data.get("type", data.get("grid_type", GridType.SQUARE))),
            size=float(data.get("size", 5)),
            unit=data.get("unit", "feet"),
            show_labels=bool(data.get("show_labels", True)),
            label_style=LabelStyle(data.get("label_style", LabelStyle.ALPHANUMERIC)),
        )

    @property
    def size_meters(self) -> float:
        return self.size * unit_to_meters(self.unit)

    @property
    def label_config(self) -> LabelConfig:
        return LabelConfig(show_labels=self.show_labels, style=self.label_style)


# Game system presets
GAME_SYSTEM_PRESETS: Dict[str, Dict] = {
    "generic": {"name": "Generic", "grid_type": GridType.SQUARE, "size": 10, "unit": "feet"},
    "dnd5e": {"name": "D&D 5th Edition", "grid_type": GridType.SQUARE, "size": 5, "unit": "feet"},
    "40k": {"name": "Warhammer 40K", "grid_type": GridType.SQUARE, "size": 1, "unit": "inches"},
    "battletech": {"name": "Battletech", "grid_type": GridType.HEX, "size": 30, "unit": "meters"},
}


def grid_config_for_system(system: str, show_labels: bool = True,
                           label_style: LabelStyle = LabelStyle.ALPHANUMERIC) -> GridConfig:
    """Build a GridConfig from a GAME_SYSTEM_PRESETS key."""
    try:
        preset = GAME_SYSTEM_PRESETS[system]
    except KeyError:
        raise ValueError(
            f"Unknown game system '{system}' (available: {', '.join(GAME_SYSTEM_PRESETS)})"
        ) from None
    return GridConfig(
        grid_type=preset["grid_type"],
        size=preset["size"],
        unit=preset["unit"],
        show_labels=show_labels,
        label_style=LabelStyle(label_style),
    )


def unit_to_meters(unit: str) -> float:
    try:
        return UNIT_TO_METERS[unit]
    except KeyError:
        raise ValueError(f"Unknown unit '{unit}' (available: {', '.join(UNIT_TO_METERS)})") from None


def column_letters(index: int) -> str:
    """
    Bijective base-26 column name: 0 -> A, 25 -> Z, 26 -> AA, 701 -> ZZ.
    """
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def cell_label(column: int, row: int, label_config: LabelConfig) -> str:
    """Id for the cell at 0-based (column, row)."""
    if not label_config.show_labels:
        return ""
    if label_config.style == LabelStyle.NUMERIC:
        return f"{column + 1},{row + 1}"
    return f"{column_letters(column)}{row + 1}"


@dataclass(frozen=True)
class GridCell:
    """
    A single grid cell.

    Attributes:
        id: Label such as "B7" or "2,7"; empty when labels are off
        boundary_points: Closed ring of (lon, lat), first point == last point
        center: (lon, lat) of the cell center
        column: 0-based column
        row: 0-based row
    """
    id: str
    boundary_points: Tuple[Tuple[float, float], ...]
    center: Tuple[float, float]
    column: int
    row: int

    @property
    def polygon(self) -> Polygon:
        """Shapely polygon of the cell in lon/lat."""
        return Polygon(self.boundary_points)

    def as_dict(self) -> Dict:
        return {
            "id": self.id,
            "boundary_points": [list(p) for p in self.boundary_points],
            "center": list(self.center),
            "column": self.column,
            "row": self.row,
        }


class CellGrid(Sequence):
    """
    Lazily computed grid of cells covering a bounds.

    Cells are built on access in row-major order, so very fine grids
    (millions of cells) cost nothing until iterated.

    Attributes:
        bounds: Area the grid covers (may overrun the south/east edges)
        grid_type: Square or hex
        cell_size_meters: Square side or hex flat-to-flat distance
        label_config: Cell id settings
        columns: Cells per row
        rows: Number of rows
        col_spacing_deg: Longitude step between adjacent cell centers
        row_spacing_deg: Latitude step between adjacent rows
    """

    def __init__(
        self,
        bounds: Bounds,
        grid_type: GridType,
        cell_size_meters: float,
        label_config: Optional[LabelConfig] = None,
    ):
        self.bounds = bounds
        self.grid_type = GridType(grid_type)
        self.cell_size_meters = cell_size_meters
        self.label_config = label_config or LabelConfig()

        dpm = degrees_per_meter(bounds.mid_latitude)
        self._lat_dpm = dpm.lat_deg_per_meter
        self._lon_dpm = dpm.lon_deg_per_meter

        if self.grid_type == GridType.SQUARE:
            self.col_spacing_deg = cell_size_meters * self._lon_dpm
            self.row_spacing_deg = cell_size_meters * self._lat_dpm
            self.columns = _cells_to_cover(bounds.width_deg, self.col_spacing_deg)
            self.rows = _cells_to_cover(bounds.height_deg, self.row_spacing_deg)
        else:
            # Pointy-top: width = flat-to-flat = sqrt(3) * R, height = 2R
            inradius = cell_size_meters / 2
            self.circumradius_meters = inradius * 2 / math.sqrt(3)
            self.col_spacing_deg = math.sqrt(3) * self.circumradius_meters * self._lon_dpm
            self.row_spacing_deg = 0.75 * (2 * self.circumradius_meters) * self._lat_dpm
            self.columns = _cells_to_cover(bounds.width_deg, self.col_spacing_deg) + 1
            self.rows = _cells_to_cover(bounds.height_deg, self.row_spacing_deg) + 1

    def __len__(self) -> int:
        return self.columns * self.rows

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        if index < 0:
            index += len(self)
        if not 0 <= index < len(self):
            raise IndexError("grid cell index out of range")
        row, column = divmod(index, self.columns)
        return self.cell(column, row)

    def __iter__(self) -> Iterator[GridCell]:
        for row in range(self.rows):
            for column in range(self.columns):
                yield self.cell(column, row)

    def __repr__(self) -> str:
        return (f"CellGrid({self.grid_type.value}, {self.columns}x{self.rows}, "
                f"{self.cell_size_meters:g}m)")

    def center(self, column: int, row: int) -> Tuple[float, float]:
        """(lon, lat) of a cell center."""
        if self.grid_type == GridType.SQUARE:
            lon = self.bounds.west + (column + 0.5) * self.col_spacing_deg
            lat = self.bounds.north - (row + 0.5) * self.row_spacing_deg
        else:
            offset = self.col_spacing_deg / 2 if row % 2 == 1 else 0.0
            lon = self.bounds.west + offset + column * self.col_spacing_deg
            lat = self.bounds.north - row * self.row_spacing_deg
        return (lon, lat)

    def cell(self, column: int, row: int) -> GridCell:
        """Build the cell at 0-based (column, row)."""
        if self.grid_type == GridType.SQUARE:
            points = self._square_points(column, row)
        else:
            points = self._hex_points(column, row)
        return GridCell(
            id=cell_label(column, row, self.label_config),
            boundary_points=points,
            center=self.center(column, row),
            column=column,
            row=row,
        )

    def _square_points(self, column: int, row: int):
        west = self.bounds.west + column * self.col_spacing_deg
        east = self.bounds.west + (column + 1) * self.col_spacing_deg
        north = self.bounds.north - row * self.row_spacing_deg
        south = self.bounds.north - (row + 1) * self.row_spacing_deg
        # Clockwise from NW, closed
        return (
            (west, north),
            (east, north),
            (east, south),
            (west, south),
            (west, north),
        )

    def _hex_points(self, column: int, row: int):
        cx, cy = self.center(column, row)
        r_lon = self.circumradius_meters * self._lon_dpm
        r_lat = self.circumradius_meters * self._lat_dpm
        vertices = []
        for i in range(6):
            # Pointy-top, clockwise from the top vertex: 90, 30, -30, ...
            angle = math.radians(90 - 60 * i)
            vertices.append((cx + r_lon * math.cos(angle), cy + r_lat * math.sin(angle)))
        vertices.append(vertices[0])
        return tuple(vertices)

    def cell_pixel_size(self, projection: PixelProjection) -> Tuple[float, float]:
        """Approximate on-canvas (width, height) of one cell in pixels."""
        if self.grid_type == GridType.SQUARE:
            width_deg = self.col_spacing_deg
            height_deg = self.row_spacing_deg
        else:
            width_deg = self.col_spacing_deg
            height_deg = 2 * self.circumradius_meters * self._lat_dpm
        return (
            width_deg / self.bounds.width_deg * projection.width,
            height_deg / self.bounds.height_deg * projection.height,
        )

    def cells_in_view(self, view: Bounds) -> Iterator[GridCell]:
        """Cells whose row/column range can intersect `view`."""
        margin = 1 if self.grid_type == GridType.HEX else 0
        col_lo = max(0, int((view.west - self.bounds.west) / self.col_spacing_deg) - 1 - margin)
        col_hi = min(self.columns, int(math.ceil((view.east - self.bounds.west) / self.col_spacing_deg)) + 1 + margin)
        row_lo = max(0, int((self.bounds.north - view.north) / self.row_spacing_deg) - 1 - margin)
        row_hi = min(self.rows, int(math.ceil((self.bounds.north - view.south) / self.row_spacing_deg)) + 1 + margin)
        for row in range(row_lo, row_hi):
            for column in range(col_lo, col_hi):
                yield self.cell(column, row)

    def to_list(self) -> List[GridCell]:
        return list(self)


def _cells_to_cover(span: float, step: float) -> int:
    return max(1, int(math.ceil(span / step - _COUNT_EPSILON)))


def generate_grid(
    bounds: Bounds,
    cell_size: float,
    grid_type: GridType = GridType.SQUARE,
    label_config: Optional[LabelConfig] = None,
    unit: str = "feet",
) -> CellGrid:
    """
    Generate a square or hex grid over bounds.

    Args:
        bounds: Area to cover
        cell_size: Cell size in `unit`
        grid_type: GridType.SQUARE or GridType.HEX
        label_config: Cell id settings (defaults to alphanumeric labels)
        unit: Real-world unit of cell_size

    Returns:
        CellGrid sequence of GridCells, row-major from the north-west

    Raises:
        ComputeError: cell_size is not a positive number
        ValueError: Unknown unit or grid type
    """
    if not isinstance(cell_size, (int, float)) or not math.isfinite(cell_size) or cell_size <= 0:
        raise ComputeError(f"Grid cell size must be a positive number, got {cell_size!r}")
    meters = cell_size * unit_to_meters(unit)
    return CellGrid(bounds, GridType(grid_type), meters, label_config)


def generate_grid_from_config(bounds: Bounds, config: GridConfig) -> CellGrid:
    return generate_grid(bounds, config.size, config.grid_type, config.label_config, config.unit)
