"""
Tests for map_utils module.

Run with: pytest tests/test_map_utils.py -v
"""

import math
import pytest
from map_utils import (
    Bounds, PixelProjection, LayerZOrder, EARTH_RADIUS_M, METERS_PER_DEGREE,
    distance_meters, degrees_per_meter, lat_lon_to_tile, tile_to_lat_lon,
    tile_range, tile_count, lat_to_tile_y, lon_to_tile_x,
)


class TestBounds:
    """Tests for the Bounds dataclass."""

    def test_bounds_creation(self):
        """Test basic bounds creation."""
        bounds = Bounds(north=10, south=0, east=20, west=5)
        assert bounds.north == 10
        assert bounds.south == 0
        assert bounds.east == 20
        assert bounds.west == 5

    def test_width_height_degrees(self):
        """Test degree extents."""
        bounds = Bounds(north=37.8, south=37.7, east=-122.4, west=-122.5)
        assert bounds.width_deg == pytest.approx(0.1)
        assert bounds.height_deg == pytest.approx(0.1)

    def test_center(self):
        """Center is (lon, lat)."""
        bounds = Bounds(north=2, south=0, east=10, west=6)
        assert bounds.center == (8, 1)

    def test_corners_clockwise_from_nw(self):
        """Corners come back NW, NE, SE, SW as (lon, lat)."""
        bounds = Bounds(north=2, south=1, east=4, west=3)
        assert bounds.corners == [(3, 2), (4, 2), (4, 1), (3, 1)]

    def test_contains(self):
        """Test point containment check."""
        bounds = Bounds(north=10, south=0, east=10, west=0)
        assert bounds.contains(5, 5) is True
        assert bounds.contains(0, 0) is True
        assert bounds.contains(10, 10) is True
        assert bounds.contains(-1, 5) is False
        assert bounds.contains(5, 11) is False

    def test_rejects_inverted_latitudes(self):
        """north must be greater than south."""
        with pytest.raises(ValueError):
            Bounds(north=0, south=1, east=1, west=0)

    def test_rejects_inverted_longitudes(self):
        """east must be greater than west (no antimeridian wrap)."""
        with pytest.raises(ValueError):
            Bounds(north=1, south=0, east=-170, west=170)

    def test_rejects_out_of_range(self):
        """Latitudes past the poles are invalid."""
        with pytest.raises(ValueError):
            Bounds(north=91, south=0, east=1, west=0)

    def test_rejects_nan(self):
        """Non-finite values are invalid."""
        with pytest.raises(ValueError):
            Bounds(north=float("nan"), south=0, east=1, west=0)

    def test_from_dict_round_trip(self):
        """from_dict accepts the selection widget's dict shape."""
        data = {"north": 37.8, "south": 37.7, "east": -122.4, "west": -122.5}
        assert Bounds.from_dict(data).as_dict() == data

    def test_from_dict_missing_key(self):
        """A missing edge is a ValueError naming the key."""
        with pytest.raises(ValueError, match="west"):
            Bounds.from_dict({"north": 1, "south": 0, "east": 1})

    def test_width_meters_shrinks_with_latitude(self):
        """The same longitude span is narrower further north."""
        equator = Bounds(north=0.5, south=-0.5, east=1, west=0)
        north = Bounds(north=60.5, south=59.5, east=1, west=0)
        assert north.width_meters == pytest.approx(equator.width_meters * 0.5, rel=0.01)

    def test_frozen(self):
        """Bounds are immutable."""
        bounds = Bounds(north=1, south=0, east=1, west=0)
        with pytest.raises(AttributeError):
            bounds.north = 2


class TestDistance:
    """Tests for haversine distance."""

    def test_zero_distance(self):
        """Same point is zero meters apart."""
        assert distance_meters(37.7, -122.4, 37.7, -122.4) == 0

    def test_one_degree_latitude(self):
        """One degree along a meridian is R*pi/180."""
        assert distance_meters(0, 0, 1, 0) == pytest.approx(METERS_PER_DEGREE)
        assert METERS_PER_DEGREE == pytest.approx(111194.93, rel=1e-6)

    def test_symmetric(self):
        """Distance doesn't depend on direction."""
        a = distance_meters(37.8, -122.5, 37.7, -122.4)
        b = distance_meters(37.7, -122.4, 37.8, -122.5)
        assert a == pytest.approx(b)

    def test_north_and_south_edges_match(self):
        """NW-NE equals SW-SE for a narrow latitude band."""
        bounds = Bounds(north=37.8, south=37.79, east=-122.4, west=-122.5)
        top = distance_meters(bounds.north, bounds.west, bounds.north, bounds.east)
        bottom = distance_meters(bounds.south, bounds.west, bounds.south, bounds.east)
        assert top == pytest.approx(bottom, rel=1e-3)

    def test_half_circumference(self):
        """Antipodal points on the equator are pi*R apart."""
        assert distance_meters(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_M)


class TestDegreesPerMeter:
    """Tests for degree/meter conversion."""

    def test_equator(self):
        """At the equator both factors are equal."""
        dpm = degrees_per_meter(0)
        assert dpm.lat_deg_per_meter == pytest.approx(1 / METERS_PER_DEGREE)
        assert dpm.lon_deg_per_meter == pytest.approx(dpm.lat_deg_per_meter)

    def test_sixty_degrees(self):
        """At 60 degrees a meter spans twice the longitude."""
        dpm = degrees_per_meter(60)
        assert dpm.lon_deg_per_meter == pytest.approx(2 * dpm.lat_deg_per_meter)

    def test_pole_is_finite(self):
        """No division by zero at the pole."""
        assert math.isfinite(degrees_per_meter(90).lon_deg_per_meter)


class TestTileMath:
    """Tests for slippy-map tile indices."""

    def test_zoom_zero(self):
        """Everything is tile 0,0 at zoom 0."""
        assert lat_lon_to_tile(37.7, -122.4, 0) == (0, 0)

    def test_known_tile(self):
        """San Francisco at zoom 12."""
        assert lat_lon_to_tile(37.7749, -122.4194, 12) == (655, 1583)

    def test_east_edge_clamped(self):
        """lon=180 stays inside the tile grid."""
        x, _ = lat_lon_to_tile(0, 180, 3)
        assert x == 7

    def test_tile_to_lat_lon_nw_corner(self):
        """Tile 0,0 starts at the top-left of the world."""
        lat, lon = tile_to_lat_lon(0, 0, 1)
        assert lon == -180
        assert lat == pytest.approx(85.0511, abs=1e-3)

    def test_round_trip_contains_point(self):
        """A point lies inside the tile it maps to."""
        x, y = lat_lon_to_tile(37.7749, -122.4194, 12)
        north, west = tile_to_lat_lon(x, y, 12)
        south, east = tile_to_lat_lon(x + 1, y + 1, 12)
        assert south <= 37.7749 <= north
        assert west <= -122.4194 <= east

    def test_fractional_tile_position(self):
        """Fractional positions floor to the integer tile index."""
        x = lon_to_tile_x(-122.4194, 12)
        y = lat_to_tile_y(37.7749, 12)
        assert (math.floor(x), math.floor(y)) == lat_lon_to_tile(37.7749, -122.4194, 12)

    def test_fractional_tile_inverse(self):
        """tile_to_lat_lon undoes the fractional conversion."""
        lat, lon = tile_to_lat_lon(lon_to_tile_x(10.5, 7), lat_to_tile_y(-33.2, 7), 7)
        assert lat == pytest.approx(-33.2)
        assert lon == pytest.approx(10.5)

    def test_tile_range_and_count(self):
        """Ranges are inclusive and count is their product."""
        bounds = Bounds(north=37.8, south=37.7, east=-122.4, west=-122.5)
        xs, ys = tile_range(bounds, 12)
        assert xs.start <= xs.stop - 1
        assert tile_count(bounds, 12) == len(xs) * len(ys)


class TestPixelProjection:
    """Tests for the lon/lat to pixel projection."""

    def test_corners(self):
        """(west, north) is (0, 0) and (east, south) is (width, height)."""
        bounds = Bounds(north=37.8, south=37.7, east=-122.4, west=-122.5)
        proj = PixelProjection(bounds, 800, 600)
        assert proj.to_pixel(bounds.west, bounds.north) == pytest.approx((0, 0))
        assert proj.to_pixel(bounds.east, bounds.south) == pytest.approx((800, 600))

    def test_center(self):
        """Center of bounds is the middle of the canvas."""
        bounds = Bounds(north=2, south=0, east=4, west=0)
        proj = PixelProjection(bounds, 400, 200)
        assert proj.to_pixel(*bounds.center) == pytest.approx((200, 100))

    def test_inverse(self):
        """pixel_to_lon_lat undoes to_pixel."""
        bounds = Bounds(north=37.8, south=37.7, east=-122.4, west=-122.5)
        proj = PixelProjection(bounds, 1000, 700)
        px, py = proj.to_pixel(-122.43, 37.76)
        assert proj.pixel_to_lon_lat(px, py) == pytest.approx((-122.43, 37.76))

    def test_project_ring(self):
        """Rings project point by point."""
        bounds = Bounds(north=1, south=0, east=1, west=0)
        proj = PixelProjection(bounds, 100, 100)
        assert proj.project_ring([(0, 1), (1, 0)]) == [(0, 0), (100, 100)]

    def test_meters_to_pixels(self):
        """Real distances scale with the canvas width."""
        bounds = Bounds(north=0.5, south=-0.5, east=1, west=0)
        proj = PixelProjection(bounds, 1000, 1000)
        assert proj.meters_to_pixels(METERS_PER_DEGREE) == pytest.approx(1000)
        assert PixelProjection(bounds, 2000, 1000).meters_to_pixels(500) == pytest.approx(
            2 * proj.meters_to_pixels(500))

    def test_rejects_empty_canvas(self):
        """Zero-sized canvases are invalid."""
        bounds = Bounds(north=1, south=0, east=1, west=0)
        with pytest.raises(ValueError):
            PixelProjection(bounds, 0, 100)


class TestLayerZOrder:
    """Tests for layer ordering."""

    def test_draw_order(self):
        """Background, contours, labels, grid, scale bar, title."""
        order = [
            LayerZOrder.BACKGROUND,
            LayerZOrder.CONTOURS_MINOR,
            LayerZOrder.CONTOURS_MAJOR,
            LayerZOrder.CONTOUR_LABELS,
            LayerZOrder.GRID,
            LayerZOrder.GRID_LABELS,
            LayerZOrder.SCALE_BAR,
            LayerZOrder.TITLE,
        ]
        assert order == sorted(order)
