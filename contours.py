"""
contours.py - Elevation contour tracing

Traces iso-elevation rings from an ElevationRaster with marching squares
(skimage.measure.find_contours, linearly interpolated along crossing edges)
and classifies every Nth interval as a major (index) contour.
"""

import logging
import math
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

import numpy as np
from shapely.geometry import LineString
from skimage import measure

from fetch_elevation import ElevationRaster
from map_errors import ComputeError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_M = 10
DEFAULT_MAJOR_EVERY = 5

# Interval presets offered to the user (meters)
CONTOUR_INTERVALS: Dict[str, Dict] = {
    "fine": {"name": "Fine (5m)", "value": 5},
    "medium": {"name": "Medium (10m)", "value": 10},
    "coarse": {"name": "Coarse (25m)", "value": 25},
    "very_coarse": {"name": "Very Coarse (50m)", "value": 50},
}

Ring = Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class ContourLine:
    """All rings traced at one elevation threshold.

    Attributes:
        level: Elevation threshold in meters
        is_major: True for index contours (every Nth interval)
        rings: Closed rings of (lon, lat) points, first point == last point
    """
    level: float
    is_major: bool
    rings: Tuple[Ring, ...]

    @property
    def point_count(self) -> int:
        return sum(len(ring) for ring in self.rings)

    def longest_ring(self) -> Ring:
        """Ring with the most points (used for label placement)."""
        return max(self.rings, key=len) if self.rings else ()


def contour_levels(min_elevation: float, max_elevation: float, interval: float) -> List[float]:
    """
    Thresholds from floor(min/interval)*interval up to ceil(max/interval)*interval.

    The top band is always included.
    """
    start = math.floor(min_elevation / interval)
    stop = math.ceil(max_elevation / interval)
    return [round(k * interval, 9) for k in range(start, stop + 1)]


def is_major_level(level: float, interval: float, major_every: int) -> bool:
    """level % (interval * major_every) == 0, tolerant of float rounding."""
    major = interval * major_every
    remainder = math.fmod(level, major)
    return math.isclose(remainder, 0, abs_tol=1e-9) or math.isclose(abs(remainder), major, abs_tol=1e-9)


def _prepare_field(raster: ElevationRaster, interval: float) -> np.ndarray:
    """
    Fill no-data, pad with one ring of below-everything samples, and negate.

    Padding closes every ring along the raster edge. Negating makes
    find_contours' "above level" side mean `value < level`, so a cell
    crosses a level exactly when some corner >= level and some corner < level.
    """
    data = np.where(raster.valid_mask, raster.data, raster.min_elevation)
    floor_value = raster.min_elevation - interval
    padded = np.pad(data, 1, mode="constant", constant_values=floor_value)
    return -padded


def _to_ring(path: np.ndarray, raster: ElevationRaster) -> Optional[Ring]:
    """Convert a padded-index contour path to a closed geographic ring."""
    # Undo padding, then clamp edge-closing segments onto the raster boundary
    rows = np.clip(path[:, 0] - 1, -0.5, raster.height - 0.5)
    cols = np.clip(path[:, 1] - 1, -0.5, raster.width - 0.5)

    lons = raster.bounds.west + (cols + 0.5) * raster.pixel_width
    lats = raster.bounds.north - (rows + 0.5) * raster.pixel_height

    points = []
    for lon, lat in zip(lons.tolist(), lats.tolist()):
        if not points or points[-1] != (lon, lat):
            points.append((lon, lat))

    if len(points) > 1 and points[0] != points[-1]:
        points.append(points[0])
    if len(points) < 4:
        return None
    return tuple(points)


def trace_level(field: np.ndarray, level: float, raster: ElevationRaster) -> List[Ring]:
    """Trace all closed rings for one level on a prepared field."""
    rings = []
    for path in measure.find_contours(field, -level):
        ring = _to_ring(path, raster)
        if ring is not None:
            rings.append(ring)
    return rings


def generate_contours(
    raster: ElevationRaster,
    interval_m: float = DEFAULT_INTERVAL_M,
    major_every: int = DEFAULT_MAJOR_EVERY,
) -> List[ContourLine]:
    """
    Generate contour lines from an elevation raster.

    Args:
        raster: Elevation samples covering the map bounds
        interval_m: Meters between contour levels
        major_every: Every Nth interval is drawn as a major contour

    Returns:
        ContourLines ordered by ascending level; empty for flat terrain

    Raises:
        ValueError: interval_m or major_every is not positive
        ComputeError: The raster has no valid samples
    """
    if not interval_m or interval_m <= 0:
        raise ValueError(f"Contour interval must be positive, got {interval_m}")
    if major_every < 1:
        raise ValueError(f"major_every must be at least 1, got {major_every}")
    if raster.valid_count == 0:
        logger.error("Contour input has no valid samples (%dx%d, source=%s)",
                     raster.width, raster.height, raster.source)
        raise ComputeError("Elevation raster has no valid samples")

    min_elev, max_elev = raster.min_elevation, raster.max_elevation
    # Only levels with samples on both sides can cross any cell
    levels = [
        level for level in contour_levels(min_elev, max_elev, interval_m)
        if min_elev < level <= max_elev
    ]
    logger.info("Generating contours: %.0fm to %.0fm, %d levels at %gm",
                min_elev, max_elev, len(levels), interval_m)

    field = _prepare_field(raster, interval_m)
    contours = []
    for level in levels:
        rings = trace_level(field, level, raster)
        if not rings:
            continue
        contours.append(ContourLine(
            level=level,
            is_major=is_major_level(level, interval_m, major_every),
            rings=tuple(rings),
        ))

    logger.info("  %d contour levels, %d rings",
                len(contours), sum(len(c.rings) for c in contours))
    return contours


def generate_contours_async(
    raster: ElevationRaster,
    interval_m: float = DEFAULT_INTERVAL_M,
    major_every: int = DEFAULT_MAJOR_EVERY,
    executor: Optional[Executor] = None,
) -> Future:
    """
    Run generate_contours off the calling thread.

    The worker gets its own copy of the raster, so the result is identical
    to the synchronous call.

    Returns:
        Future resolving to the list of ContourLines
    """
    raster_copy = replace(raster)
    if executor is not None:
        return executor.submit(generate_contours, raster_copy, interval_m, major_every)

    own_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="contours")
    try:
        return own_executor.submit(generate_contours, raster_copy, interval_m, major_every)
    finally:
        own_executor.shutdown(wait=False)


def simplify_contours(contours: List[ContourLine], tolerance: float = 0.0001) -> List[ContourLine]:
    """
    Douglas-Peucker simplification of every ring.

    Args:
        contours: Contours to simplify
        tolerance: Maximum deviation in degrees

    Returns:
        New ContourLines; rings that collapse are dropped, as are levels
        left without rings
    """
    simplified = []
    for contour in contours:
        rings = []
        for ring in contour.rings:
            coords = list(LineString(ring).simplify(tolerance, preserve_topology=False).coords)
            if coords and coords[0] != coords[-1]:
                coords.append(coords[0])
            if len(coords) >= 4:
                rings.append(tuple((float(x), float(y)) for x, y in coords))
        if rings:
            simplified.append(replace(contour, rings=tuple(rings)))
    return simplified
