"""
Tests for game_grid module.

Run with: pytest tests/test_game_grid.py -v
"""

import math
import pytest

from game_grid import (
    GAME_SYSTEM_PRESETS, CellGrid, GridConfig, GridType, LabelConfig, LabelStyle,
    cell_label, column_letters, generate_grid, generate_grid_from_config,
    grid_config_for_system, unit_to_meters,
)
from map_errors import ComputeError
from map_utils import METERS_PER_DEGREE, Bounds, distance_meters


@pytest.fixture
def equator_bounds():
    """1 degree x 1 degree centred on the equator."""
    return Bounds(north=0.5, south=-0.5, east=0.5, west=-0.5)


class TestColumnLetters:
    """Tests for bijective base-26 column names."""

    def test_single_letters(self):
        """0-25 map to A-Z."""
        assert column_letters(0) == "A"
        assert column_letters(25) == "Z"

    def test_double_letters(self):
        """26 rolls over to AA."""
        assert column_letters(26) == "AA"
        assert column_letters(27) == "AB"
        assert column_letters(701) == "ZZ"

    def test_triple_letters(self):
        """702 is AAA."""
        assert column_letters(702) == "AAA"

    def test_negative(self):
        """Negative indices are invalid."""
        with pytest.raises(ValueError):
            column_letters(-1)


class TestCellLabel:
    """Tests for cell ids."""

    def test_alphanumeric(self):
        """Column letter plus 1-based row."""
        config = LabelConfig()
        assert cell_label(0, 0, config) == "A1"
        assert cell_label(1, 6, config) == "B7"
        assert cell_label(26, 0, config) == "AA1"

    def test_numeric(self):
        """1-based column,row."""
        config = LabelConfig(style=LabelStyle.NUMERIC)
        assert cell_label(0, 0, config) == "1,1"
        assert cell_label(4, 9, config) == "5,10"

    def test_disabled(self):
        """No labels means empty ids."""
        assert cell_label(3, 3, LabelConfig(show_labels=False)) == ""


class TestSquareGrid:
    """Tests for square grids."""

    def test_evenly_dividing_cells(self, equator_bounds):
        """A tenth of a degree on a 1x1 degree area gives 10x10 cells."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        assert (grid.columns, grid.rows) == (10, 10)
        assert len(grid) == 100
        assert len(list(grid)) == 100

    def test_rings_closed(self, equator_bounds):
        """Every cell ring is closed with 5 points."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        for cell in grid:
            assert len(cell.boundary_points) == 5
            assert cell.boundary_points[0] == cell.boundary_points[-1]

    def test_first_cell_starts_north_west(self, equator_bounds):
        """Points run NW, NE, SE, SW from the bounds' NW corner."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        nw, ne, se, sw, _ = grid[0].boundary_points
        assert nw == (equator_bounds.west, equator_bounds.north)
        assert ne[0] > nw[0] and ne[1] == nw[1]
        assert se[1] < ne[1] and se[0] == ne[0]
        assert sw == (nw[0], se[1])

    def test_row_major_order(self, equator_bounds):
        """Index walks west to east, then north to south."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        assert (grid[1].column, grid[1].row) == (1, 0)
        assert (grid[10].column, grid[10].row) == (0, 1)
        assert grid[10].id == "A2"

    def test_partial_cells_cover_bounds(self):
        """Sizes that don't divide evenly round up."""
        bounds = Bounds(north=0.5, south=-0.5, east=0.5, west=-0.5)
        grid = generate_grid(bounds, METERS_PER_DEGREE / 3.5, GridType.SQUARE, unit="meters")
        assert (grid.columns, grid.rows) == (4, 4)

    def test_cell_size_in_meters(self, sf_bounds):
        """A 100 ft cell is about 30.48 m across."""
        grid = generate_grid(sf_bounds, 100, GridType.SQUARE, unit="feet")
        nw, ne, se, _, _ = grid[0].boundary_points
        assert distance_meters(nw[1], nw[0], ne[1], ne[0]) == pytest.approx(30.48, rel=1e-3)
        assert distance_meters(ne[1], ne[0], se[1], se[0]) == pytest.approx(30.48, rel=1e-3)

    def test_center(self, equator_bounds):
        """Center is the middle of the cell."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        assert grid[0].center == pytest.approx((-0.45, 0.45))

    def test_polygon(self, equator_bounds):
        """Cells convert to shapely polygons."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        assert grid[0].polygon.area == pytest.approx(0.01)


class TestHexGrid:
    """Tests for pointy-top hex grids."""

    def test_first_center_at_north_west(self, sf_bounds):
        """Hex (0, 0) is centred on the bounds corner."""
        grid = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        assert grid[0].center == pytest.approx((sf_bounds.west, sf_bounds.north))

    def test_odd_rows_offset(self, sf_bounds):
        """Adjacent rows are offset by half the horizontal spacing."""
        grid = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        row0 = grid.center(0, 0)
        row1 = grid.center(0, 1)
        row2 = grid.center(0, 2)
        assert row1[0] - row0[0] == pytest.approx(grid.col_spacing_deg / 2)
        assert row2[0] == pytest.approx(row0[0])

    def test_spacing(self, sf_bounds):
        """Columns are one hex width apart, rows 1.5 circumradii."""
        grid = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        radius = 30 / math.sqrt(3)
        assert grid.circumradius_meters == pytest.approx(radius)
        a, b = grid.center(0, 0), grid.center(1, 0)
        assert distance_meters(a[1], a[0], b[1], b[0]) == pytest.approx(30, rel=1e-3)
        c = grid.center(0, 2)
        assert distance_meters(a[1], a[0], c[1], c[0]) == pytest.approx(3 * radius, rel=1e-3)

    def test_counts(self, sf_bounds):
        """One extra column and row cover the offset edges."""
        grid = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        assert grid.columns == math.ceil(sf_bounds.width_deg / grid.col_spacing_deg) + 1
        assert grid.rows == math.ceil(sf_bounds.height_deg / grid.row_spacing_deg) + 1

    def test_hexagon_shape(self, sf_bounds):
        """Seven points, closed, flat sides one size apart."""
        grid = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        points = grid[5].boundary_points
        assert len(points) == 7
        assert points[0] == points[-1]
        lons = [p[0] for p in points]
        assert max(lons) - min(lons) == pytest.approx(grid.col_spacing_deg)
        # Pointy top: first vertex straight above the center
        assert points[0][0] == pytest.approx(grid[5].center[0])
        assert points[0][1] > grid[5].center[1]

    def test_polygon_valid(self, sf_bounds):
        """Hex polygons are valid shapely geometries."""
        grid = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        assert grid[0].polygon.is_valid


class TestGenerateGrid:
    """Tests for generate_grid validation and behaviour."""

    def test_zero_size(self, sf_bounds):
        """Cell size must be positive."""
        with pytest.raises(ComputeError):
            generate_grid(sf_bounds, 0)

    def test_negative_size(self, sf_bounds):
        """Negative sizes are rejected."""
        with pytest.raises(ComputeError):
            generate_grid(sf_bounds, -5)

    def test_nan_size(self, sf_bounds):
        """NaN sizes are rejected."""
        with pytest.raises(ComputeError):
            generate_grid(sf_bounds, float("nan"))

    def test_unknown_unit(self, sf_bounds):
        """Units must be known."""
        with pytest.raises(ValueError):
            generate_grid(sf_bounds, 5, unit="cubits")

    def test_unknown_grid_type(self, sf_bounds):
        """Grid type must be square or hex."""
        with pytest.raises(ValueError):
            generate_grid(sf_bounds, 5, "triangle")

    def test_idempotent(self, sf_bounds):
        """Same inputs give identical cells."""
        a = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        b = generate_grid(sf_bounds, 30, GridType.HEX, unit="meters")
        assert len(a) == len(b)
        assert a[:50] == b[:50]
        assert a[-1] == b[-1]

    def test_lazy_fine_grid(self, sf_bounds):
        """A 5 ft grid over several km is millions of cells, built lazily."""
        grid = generate_grid(sf_bounds, 5, GridType.SQUARE, unit="feet")
        width_ft = sf_bounds.width_meters / 0.3048
        height_ft = sf_bounds.height_meters / 0.3048
        expected = (width_ft / 5) * (height_ft / 5)
        assert len(grid) == pytest.approx(expected, rel=0.01)
        assert len(grid) > 1_000_000
        assert isinstance(grid, CellGrid)

    def test_negative_index(self, equator_bounds):
        """grid[-1] is the south-east cell."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        assert (grid[-1].column, grid[-1].row) == (9, 9)
        assert grid[-1].id == "J10"

    def test_index_out_of_range(self, equator_bounds):
        """Indexing past the end raises IndexError."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        with pytest.raises(IndexError):
            grid[100]

    def test_cells_in_view(self, equator_bounds):
        """Only cells near a sub-area are produced."""
        grid = generate_grid(equator_bounds, METERS_PER_DEGREE / 10, GridType.SQUARE, unit="meters")
        view = Bounds(north=0.5, south=0.3, east=-0.3, west=-0.5)
        cells = list(grid.cells_in_view(view))
        assert len(cells) < len(grid)
        assert {(c.column, c.row) for c in cells} >= {(0, 0), (1, 0), (0, 1), (1, 1)}


class TestGridConfig:
    """Tests for grid configuration and presets."""

    def test_size_meters(self):
        """Size converts through the unit."""
        assert GridConfig(size=10, unit="feet").size_meters == pytest.approx(3.048)
        assert GridConfig(size=1, unit="inches").size_meters == pytest.approx(0.0254)
        assert GridConfig(size=2, unit="yards").size_meters == pytest.approx(1.8288)

    def test_unit_table(self):
        """All four units are known."""
        assert unit_to_meters("meters") == 1
        with pytest.raises(ValueError):
            unit_to_meters("furlongs")

    def test_from_dict(self):
        """Builds from the JSON shape used by the server."""
        config = GridConfig.from_dict({"type": "hex", "size": 30, "unit": "meters",
                                       "label_style": "numeric"})
        assert config.grid_type == GridType.HEX
        assert config.size == 30
        assert config.label_style == LabelStyle.NUMERIC

    def test_presets(self):
        """Game systems map to the expected grids."""
        assert GAME_SYSTEM_PRESETS["dnd5e"]["size"] == 5
        assert GAME_SYSTEM_PRESETS["battletech"]["grid_type"] == GridType.HEX
        config = grid_config_for_system("40k")
        assert (config.grid_type, config.size, config.unit) == (GridType.SQUARE, 1, "inches")

    def test_unknown_system(self):
        """Unknown systems are rejected."""
        with pytest.raises(ValueError):
            grid_config_for_system("chess")

    def test_generate_from_config(self, sf_bounds):
        """generate_grid_from_config honours labels."""
        config = GridConfig(grid_type=GridType.SQUARE, size=100, unit="meters",
                            label_style=LabelStyle.NUMERIC)
        grid = generate_grid_from_config(sf_bounds, config)
        assert grid[0].id == "1,1"
        assert grid.cell_size_meters == 100

    def test_labels_off(self, sf_bounds):
        """show_labels=False gives empty ids."""
        grid = generate_grid_from_config(sf_bounds, GridConfig(size=100, unit="meters", show_labels=False))
        assert grid[0].id == ""
