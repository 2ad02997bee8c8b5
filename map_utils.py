"""
Geographic utilities for terrain map generation.

This module provides the bounds value object, spherical distance and
degree/meter conversion, slippy-map tile index math, and the single
linear projection from geographic coordinates into canvas pixels.
"""

import math
from dataclasses import dataclass
from typing import Tuple, List, Dict, NamedTuple


EARTH_RADIUS_M = 6_371_000

# Meters spanned by one degree of latitude on the sphere
METERS_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180

# Web Mercator latitude limit for tile math
MAX_MERCATOR_LAT = 85.05112878


@dataclass(frozen=True)
class Bounds:
    """A rectangular geographic selection in decimal degrees.

    Attributes:
        north: Northern latitude
        south: Southern latitude
        east: Eastern longitude
        west: Western longitude
    """
    north: float
    south: float
    east: float
    west: float

    def __post_init__(self):
        for name in ("north", "south", "east", "west"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"Bounds.{name} must be a finite number, got {value!r}")
        if not (-90 <= self.south < self.north <= 90):
            raise ValueError(
                f"Bounds need -90 <= south < north <= 90 (got south={self.south}, north={self.north})"
            )
        if not (-180 <= self.west < self.east <= 180):
            raise ValueError(
                f"Bounds need -180 <= west < east <= 180 (got west={self.west}, east={self.east})"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> 'Bounds':
        """Build bounds from a {north, south, east, west} mapping."""
        try:
            return cls(
                north=float(data["north"]),
                south=float(data["south"]),
                east=float(data["east"]),
                west=float(data["west"]),
            )
        except KeyError as e:
            raise ValueError(f"Bounds missing key: {e.args[0]}") from e

    def as_dict(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south,
                "east": self.east, "west": self.west}

    @property
    def width_deg(self) -> float:
        """East-west extent in degrees."""
        return self.east - self.west

    @property
    def height_deg(self) -> float:
        """North-south extent in degrees."""
        return self.north - self.south

    @property
    def center(self) -> Tuple[float, float]:
        """Center point as (lon, lat)."""
        return ((self.west + self.east) / 2, (self.north + self.south) / 2)

    @property
    def mid_latitude(self) -> float:
        return (self.north + self.south) / 2

    @property
    def corners(self) -> List[Tuple[float, float]]:
        """Corner coordinates as (lon, lat), clockwise from north-west."""
        return [
            (self.west, self.north),
            (self.east, self.north),
            (self.east, self.south),
            (self.west, self.south),
        ]

    @property
    def width_meters(self) -> float:
        """East-west distance along the middle latitude."""
        lat = self.mid_latitude
        return distance_meters(lat, self.west, lat, self.east)

    @property
    def height_meters(self) -> float:
        """North-south distance along the western edge."""
        return distance_meters(self.north, self.west, self.south, self.west)

    def contains(self, lon: float, lat: float) -> bool:
        """Check if a point is within bounds."""
        return (self.west <= lon <= self.east and
                self.south <= lat <= self.north)

    def describe(self, precision: int = 6) -> str:
        """Human-readable bounds string used in export metadata."""
        return (f"N{self.north:.{precision}f}° S{self.south:.{precision}f}° "
                f"E{self.east:.{precision}f}° W{self.west:.{precision}f}°")


class DegreesPerMeter(NamedTuple):
    lat_deg_per_meter: float
    lon_deg_per_meter: float


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points using the haversine formula.

    Args:
        lat1, lon1: First point in decimal degrees
        lat2, lon2: Second point in decimal degrees

    Returns:
        Distance in meters on a sphere of radius EARTH_RADIUS_M
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (math.sin(d_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def degrees_per_meter(latitude: float) -> DegreesPerMeter:
    """Degrees of latitude and longitude spanned by one meter at a latitude.

    Longitude degrees shrink towards the poles (meridian convergence), so
    the longitude factor grows by 1/cos(latitude).
    """
    lat_dpm = 1 / METERS_PER_DEGREE
    cos_lat = math.cos(math.radians(latitude))
    # Clamp so the poles don't divide by zero
    cos_lat = max(cos_lat, 1e-12)
    return DegreesPerMeter(lat_dpm, lat_dpm / cos_lat)


def lat_lon_to_tile(lat: float, lon: float, zoom: int) -> Tuple[int, int]:
    """Convert a coordinate to the slippy-map tile (x, y) containing it."""
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    n = 2 ** zoom
    x = int((lon + 180) / 360 * n)
    y = int((1 - math.asinh(math.tan(math.radians(lat))) / math.pi) / 2 * n)
    # lon == 180 lands one past the last column
    return min(x, n - 1), min(max(y, 0), n - 1)


def tile_to_lat_lon(x: float, y: float, zoom: int) -> Tuple[float, float]:
    """Convert a (possibly fractional) tile position to its NW corner (lat, lon)."""
    n = 2 ** zoom
    lon = x / n * 360 - 180
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y / n))))
    return lat, lon


def lat_to_tile_y(lat: float, zoom: int) -> float:
    """Fractional Mercator tile row for a latitude."""
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    n = 2 ** zoom
    return (1 - math.asinh(math.tan(math.radians(lat))) / math.pi) / 2 * n


def lon_to_tile_x(lon: float, zoom: int) -> float:
    """Fractional tile column for a longitude."""
    return (lon + 180) / 360 * (2 ** zoom)


def tile_range(bounds: Bounds, zoom: int) -> Tuple[range, range]:
    """Inclusive tile x and y ranges covering the bounds."""
    x_min, y_min = lat_lon_to_tile(bounds.north, bounds.west, zoom)
    x_max, y_max = lat_lon_to_tile(bounds.south, bounds.east, zoom)
    return range(x_min, x_max + 1), range(y_min, y_max + 1)


def tile_count(bounds: Bounds, zoom: int) -> int:
    """Number of tiles needed to cover the bounds at a zoom level."""
    xs, ys = tile_range(bounds, zoom)
    return len(xs) * len(ys)


class PixelProjection:
    """Linear (equirectangular) projection from lon/lat into canvas pixels.

    Contours and grid share one instance so both layers stay aligned.

    Attributes:
        bounds: Geographic bounds mapped onto the full canvas
        width: Canvas width in pixels
        height: Canvas height in pixels
    """

    def __init__(self, bounds: Bounds, width: float, height: float):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.bounds = bounds
        self.width = width
        self.height = height
        self._scale_x = width / bounds.width_deg
        self._scale_y = height / bounds.height_deg

    def x(self, lon: float) -> float:
        return (lon - self.bounds.west) * self._scale_x

    def y(self, lat: float) -> float:
        return (self.bounds.north - lat) * self._scale_y

    def to_pixel(self, lon: float, lat: float) -> Tuple[float, float]:
        """Convert (lon, lat) to (pixel_x, pixel_y)."""
        return (self.x(lon), self.y(lat))

    def pixel_to_lon_lat(self, px: float, py: float) -> Tuple[float, float]:
        """Inverse of to_pixel."""
        lon = self.bounds.west + px / self._scale_x
        lat = self.bounds.north - py / self._scale_y
        return (lon, lat)

    def project_ring(self, ring) -> List[Tuple[float, float]]:
        return [self.to_pixel(lon, lat) for lon, lat in ring]

    def meters_to_pixels(self, meters: float) -> float:
        """Horizontal pixel length of a real distance at the mid latitude."""
        lon_dpm = degrees_per_meter(self.bounds.mid_latitude).lon_deg_per_meter
        return meters * lon_dpm * self._scale_x


class LayerZOrder:
    """Draw order for map layers.

    Lower values render first (underneath).
    """
    BACKGROUND = 0

    CONTOURS_MINOR = 500
    CONTOURS_MAJOR = 510
    CONTOUR_LABELS = 520

    GRID = 2100
    GRID_LABELS = 2120

    SCALE_BAR = 3000
    TITLE = 3010
