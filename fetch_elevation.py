"""
fetch_elevation.py - Assemble an elevation raster for a geographic selection

Elevation comes from interchangeable providers that all return the same
ElevationRaster:

- TerrainTileProvider: Terrarium RGB-encoded PNG tiles (AWS Terrain Tiles,
  free, no auth), fetched concurrently and stitched into one mosaic
- GeoTiffProvider: a single GeoTIFF from the USGS 3DEP ImageServer
- PointQueryProvider: one USGS EPQS point query per sample of a coarse grid
- SimulatedElevationProvider: deterministic synthetic terrain, no network

ElevationFetcher tries them in a fixed priority order and only gives up
when every provider has failed.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import requests
from PIL import Image
from rasterio.errors import RasterioError
from rasterio.io import MemoryFile

from map_errors import AreaTooLarge, DataUnavailable, ProviderError
from map_utils import Bounds, lat_to_tile_y, lon_to_tile_x, tile_count, tile_range

logger = logging.getLogger(__name__)

# AWS Terrain Tiles, Terrarium encoding
TERRAIN_TILE_URL = "https://s3.amazonaws.com/elevation-tiles-prod/terrarium/{z}/{x}/{y}.png"
# USGS 3DEP public ImageServer (no key required)
USGS_GEOTIFF_URL = (
    "https://elevation.nationalmap.gov/arcgis/rest/services/"
    "3DEPElevation/ImageServer/exportImage"
)
# USGS Elevation Point Query Service
USGS_POINT_URL = "https://epqs.nationalmap.gov/v1/json"

TILE_ZOOM = 12                 # ~30m/pixel at mid latitudes
TILE_SIZE = 256
MAX_TILES = 16                 # Hard cap on stitched tiles per fetch
MAX_SAMPLES_PER_SIDE = 1000    # Hard cap on raster width/height
NO_DATA_VALUE = -32768.0
MIN_VALID_ELEVATION = -12000.0  # Anything lower is a provider fill value
GEOTIFF_SAMPLES_PER_DEGREE = 3600  # ~1 arc-second
EPQS_NO_DATA = -1000000

DEFAULT_SOURCE_ORDER = ("tiles", "geotiff", "points")


@dataclass
class FetchConfig:
    """Settings shared by the elevation providers."""
    zoom: int = TILE_ZOOM
    max_tiles: int = MAX_TILES
    max_samples_per_side: int = MAX_SAMPLES_PER_SIDE
    request_timeout: float = 30.0
    max_workers: int = 8
    point_grid_size: int = 16
    tile_url: str = TERRAIN_TILE_URL
    geotiff_url: str = USGS_GEOTIFF_URL
    point_url: str = USGS_POINT_URL
    source_order: Tuple[str, ...] = DEFAULT_SOURCE_ORDER


@dataclass(frozen=True, eq=False)
class ElevationRaster:
    """
    Regular grid of elevation samples covering a bounds.

    Samples sit at cell centers: row 0 is the northern edge, column 0 the
    western edge. The data array is read-only once the raster exists.

    Attributes:
        data: 2-D float array of shape (height, width), meters
        bounds: Geographic area covered by the grid
        no_data_value: Sentinel for missing samples
        min_elevation: Lowest valid sample (NaN when none are valid)
        max_elevation: Highest valid sample (NaN when none are valid)
        source: Name of the provider that produced the raster
    """
    data: np.ndarray
    bounds: Bounds
    no_data_value: float = NO_DATA_VALUE
    min_elevation: float = field(default=math.nan, init=False)
    max_elevation: float = field(default=math.nan, init=False)
    source: str = ""

    def __post_init__(self):
        arr = np.array(self.data, dtype=np.float64, copy=True)
        if arr.ndim != 2 or arr.shape[0] < 1 or arr.shape[1] < 1:
            raise ValueError(f"Elevation data must be a non-empty 2-D array, got shape {arr.shape}")
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

        # Derived from the valid samples
        valid = np.isfinite(arr) & (arr != self.no_data_value)
        if valid.any():
            min_elev, max_elev = float(arr[valid].min()), float(arr[valid].max())
        else:
            min_elev = max_elev = math.nan
        object.__setattr__(self, "min_elevation", min_elev)
        object.__setattr__(self, "max_elevation", max_elev)

    @classmethod
    def from_array(
        cls,
        data,
        bounds: Bounds,
        no_data_value: float = NO_DATA_VALUE,
        source: str = "",
    ) -> 'ElevationRaster':
        return cls(data=data, bounds=bounds, no_data_value=no_data_value, source=source)

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def sample_count(self) -> int:
        return self.width * self.height

    @property
    def pixel_width(self) -> float:
        """Degrees of longitude per sample."""
        return self.bounds.width_deg / self.width

    @property
    def pixel_height(self) -> float:
        """Degrees of latitude per sample."""
        return self.bounds.height_deg / self.height

    @property
    def valid_mask(self) -> np.ndarray:
        return np.isfinite(self.data) & (self.data != self.no_data_value)

    @property
    def valid_count(self) -> int:
        return int(self.valid_mask.sum())

    @property
    def values(self) -> List[float]:
        """Samples as a flat row-major list."""
        return self.data.ravel().tolist()

    def sample_lon_lat(self, row: float, col: float) -> Tuple[float, float]:
        """Geographic position of a (fractional) sample index."""
        lon = self.bounds.west + (col + 0.5) * self.pixel_width
        lat = self.bounds.north - (row + 0.5) * self.pixel_height
        return (lon, lat)

    def summary(self) -> Dict:
        return {
            "width": self.width,
            "height": self.height,
            "bounds": self.bounds.as_dict(),
            "min_elevation": self.min_elevation,
            "max_elevation": self.max_elevation,
            "no_data_value": self.no_data_value,
            "valid_samples": self.valid_count,
            "source": self.source,
        }


def decode_terrarium(rgb: np.ndarray) -> np.ndarray:
    """Decode a Terrarium RGB tile into meters: R*256 + G + B/256 - 32768."""
    rgb = np.asarray(rgb, dtype=np.float64)
    return rgb[..., 0] * 256 + rgb[..., 1] + rgb[..., 2] / 256 - 32768


def _fit_sample_grid(width: float, height: float, cap: int) -> Tuple[int, int]:
    """Scale a requested sample grid down so neither side exceeds cap."""
    width = max(2, int(math.ceil(width)))
    height = max(2, int(math.ceil(height)))
    scale = min(1.0, cap / max(width, height))
    return max(2, int(width * scale)), max(2, int(height * scale))


class ElevationProvider:
    """Interface shared by all elevation sources."""

    name = "provider"

    def __init__(self, config: Optional[FetchConfig] = None):
        self.config = config or FetchConfig()

    def fetch(self, bounds: Bounds) -> ElevationRaster:
        raise NotImplementedError


class TerrainTileProvider(ElevationProvider):
    """Terrarium-encoded elevation tiles at a fixed zoom level."""

    name = "tiles"

    def check_budget(self, bounds: Bounds) -> int:
        count = tile_count(bounds, self.config.zoom)
        if count > self.config.max_tiles:
            raise AreaTooLarge(limit=self.config.max_tiles, requested=count, unit="tiles")
        return count

    def fetch_tile(self, x: int, y: int) -> Optional[np.ndarray]:
        """Download and decode one tile. Returns None on any failure."""
        url = self.config.tile_url.format(z=self.config.zoom, x=x, y=y)
        try:
            response = requests.get(url, timeout=self.config.request_timeout)
            response.raise_for_status()
            with Image.open(BytesIO(response.content)) as img:
                rgb = np.asarray(img.convert("RGB"))
        except (requests.RequestException, OSError) as e:
            logger.warning("Tile %d/%d/%d failed: %s", self.config.zoom, x, y, e)
            return None

        if rgb.shape[:2] != (TILE_SIZE, TILE_SIZE):
            logger.warning("Tile %d/%d/%d has unexpected size %s", self.config.zoom, x, y, rgb.shape)
            return None
        return decode_terrarium(rgb)

    def fetch(self, bounds: Bounds) -> ElevationRaster:
        self.check_budget(bounds)
        xs, ys = tile_range(bounds, self.config.zoom)
        positions = [(x, y) for y in ys for x in xs]
        logger.info("Fetching %d terrain tiles at zoom %d", len(positions), self.config.zoom)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            tiles = list(executor.map(lambda pos: self.fetch_tile(*pos), positions))

        mosaic = np.full((len(ys) * TILE_SIZE, len(xs) * TILE_SIZE), NO_DATA_VALUE)
        fetched = 0
        for (x, y), tile in zip(positions, tiles):
            if tile is None:
                continue
            px = (x - xs.start) * TILE_SIZE
            py = (y - ys.start) * TILE_SIZE
            mosaic[py:py + TILE_SIZE, px:px + TILE_SIZE] = tile
            fetched += 1

        if fetched == 0:
            raise ProviderError("no terrain tiles could be fetched")
        logger.info("  Stitched %d/%d tiles", fetched, len(positions))

        return ElevationRaster.from_array(
            self._resample(mosaic, bounds, xs.start, ys.start),
            bounds,
            source=self.name,
        )

    def _resample(self, mosaic: np.ndarray, bounds: Bounds, x0: int, y0: int) -> np.ndarray:
        """Nearest-neighbour resample of the Mercator mosaic onto a lat/lon grid."""
        zoom = self.config.zoom

        def col_of(lon):
            return (lon_to_tile_x(lon, zoom) - x0) * TILE_SIZE

        def row_of(lat):
            return (lat_to_tile_y(lat, zoom) - y0) * TILE_SIZE

        span_x = col_of(bounds.east) - col_of(bounds.west)
        span_y = row_of(bounds.south) - row_of(bounds.north)
        width, height = _fit_sample_grid(span_x, span_y, self.config.max_samples_per_side)

        lons = bounds.west + (np.arange(width) + 0.5) * bounds.width_deg / width
        lats = bounds.north - (np.arange(height) + 0.5) * bounds.height_deg / height

        cols = np.floor([col_of(lon) for lon in lons]).astype(int)
        rows = np.floor([row_of(lat) for lat in lats]).astype(int)
        cols = np.clip(cols, 0, mosaic.shape[1] - 1)
        rows = np.clip(rows, 0, mosaic.shape[0] - 1)
        return mosaic[np.ix_(rows, cols)]


class GeoTiffProvider(ElevationProvider):
    """Single GeoTIFF export from the USGS 3DEP ImageServer."""

    name = "geotiff"

    def request_size(self, bounds: Bounds) -> Tuple[int, int]:
        return _fit_sample_grid(
            bounds.width_deg * GEOTIFF_SAMPLES_PER_DEGREE,
            bounds.height_deg * GEOTIFF_SAMPLES_PER_DEGREE,
            self.config.max_samples_per_side,
        )

    def fetch(self, bounds: Bounds) -> ElevationRaster:
        width, height = self.request_size(bounds)
        params = {
            "bbox": f"{bounds.west},{bounds.south},{bounds.east},{bounds.north}",
            "bboxSR": 4326,
            "imageSR": 4326,
            "size": f"{width},{height}",
            "format": "tiff",
            "pixelType": "F32",
            "noDataInterpretation": "esriNoDataMatchAny",
            "interpolation": "RSP_BilinearInterpolation",
            "f": "image",
        }
        logger.info("Requesting %dx%d GeoTIFF from %s", width, height, self.config.geotiff_url)
        response = requests.get(self.config.geotiff_url, params=params,
                                timeout=self.config.request_timeout)
        response.raise_for_status()

        # ArcGIS reports errors as JSON with a 200 status
        if response.content[:1] in (b"{", b"<"):
            raise ProviderError(f"GeoTIFF service returned an error: {response.text[:200]}")

        with MemoryFile(response.content) as memfile:
            with memfile.open() as dataset:
                data = dataset.read(1).astype(np.float64)
                nodata = dataset.nodata

        return ElevationRaster.from_array(
            clean_elevation(data, nodata), bounds, source=self.name
        )


class PointQueryProvider(ElevationProvider):
    """One elevation query per point of an evenly spaced sample grid."""

    name = "points"

    def sample_points(self, bounds: Bounds) -> List[Tuple[float, float]]:
        """(lat, lon) of each sample, row-major from the north-west."""
        n = self.config.point_grid_size
        lat_step = bounds.height_deg / n
        lon_step = bounds.width_deg / n
        return [
            (bounds.north - (row + 0.5) * lat_step, bounds.west + (col + 0.5) * lon_step)
            for row in range(n)
            for col in range(n)
        ]

    def query_point(self, lat: float, lon: float) -> Optional[float]:
        """Elevation at one point, or None when the query fails."""
        params = {"x": lon, "y": lat, "wkid": 4326, "units": "Meters", "includeDate": "false"}
        try:
            response = requests.get(self.config.point_url, params=params,
                                    timeout=self.config.request_timeout)
            response.raise_for_status()
            value = float(response.json()["value"])
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.debug("Point query (%.5f, %.5f) failed: %s", lat, lon, e)
            return None

        if not math.isfinite(value) or value <= EPQS_NO_DATA or value < MIN_VALID_ELEVATION:
            return None
        return value

    def fetch(self, bounds: Bounds) -> ElevationRaster:
        n = self.config.point_grid_size
        if n < 2:
            raise ValueError(f"point_grid_size must be at least 2, got {n}")
        points = self.sample_points(bounds)
        logger.info("Querying %d elevation points", len(points))

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            results = list(executor.map(lambda p: self.query_point(*p), points))

        missing = sum(1 for v in results if v is None)
        if missing == len(results):
            raise ProviderError("every point query failed")
        if missing:
            logger.warning("  %d/%d point queries failed, filled with no-data", missing, len(results))

        data = np.array(
            [NO_DATA_VALUE if v is None else v for v in results], dtype=np.float64
        ).reshape(n, n)
        return ElevationRaster.from_array(data, bounds, source=self.name)


class SimulatedElevationProvider(ElevationProvider):
    """
    Deterministic synthetic terrain: rolling sine hills plus a central peak.

    Useful offline and in tests; never part of the default source order.
    """

    name = "simulated"

    def __init__(self, config: Optional[FetchConfig] = None,
                 width: Optional[int] = None, height: Optional[int] = None):
        super().__init__(config)
        self.width = width
        self.height = height

    def fetch(self, bounds: Bounds) -> ElevationRaster:
        if self.width and self.height:
            width, height = self.width, self.height
        else:
            width, height = _fit_sample_grid(
                min(500, bounds.width_deg * 1200),
                min(500, bounds.height_deg * 1200),
                self.config.max_samples_per_side,
            )
        return ElevationRaster.from_array(
            simulated_terrain(width, height), bounds, source=self.name
        )


def simulated_terrain(width: int, height: int) -> np.ndarray:
    """Sine-wave hills (0-1000m base) with a mountain near the center."""
    y, x = np.mgrid[0:height, 0:width].astype(np.float64)
    elevation = 500.0
    elevation = elevation + np.sin(x / 20) * np.cos(y / 20) * 200
    elevation = elevation + np.sin(x / 10 + y / 10) * 100

    distance = np.hypot(x - width / 2, y - height / 2)
    mountain = np.maximum(0, 1 - distance / (min(width, height) / 2))
    elevation = elevation + mountain * 500
    return np.maximum(0, elevation)


def clean_elevation(data: np.ndarray, nodata: Optional[float] = None) -> np.ndarray:
    """Replace provider fill values and non-finite samples with NO_DATA_VALUE."""
    data = np.array(data, dtype=np.float64)
    bad = ~np.isfinite(data) | (data < MIN_VALID_ELEVATION)
    if nodata is not None:
        bad |= data == nodata
    data[bad] = NO_DATA_VALUE
    return data


def default_providers(config: Optional[FetchConfig] = None) -> Dict[str, ElevationProvider]:
    config = config or FetchConfig()
    return {
        TerrainTileProvider.name: TerrainTileProvider(config),
        GeoTiffProvider.name: GeoTiffProvider(config),
        PointQueryProvider.name: PointQueryProvider(config),
    }


# Failures that make the fetcher move on to the next provider
FALLBACK_ERRORS = (requests.RequestException, ProviderError, RasterioError, OSError, ValueError)


class ElevationFetcher:
    """
    Fetch an elevation raster with automatic fallback across providers.

    Attributes:
        config: Shared fetch settings
        providers: Mapping of provider name to provider instance
    """

    def __init__(
        self,
        providers: Optional[Dict[str, ElevationProvider]] = None,
        config: Optional[FetchConfig] = None,
    ):
        self.config = config or FetchConfig()
        self.providers = providers if providers is not None else default_providers(self.config)

    def check_budget(self, bounds: Bounds) -> None:
        """Raise AreaTooLarge if the selection exceeds the tile cap."""
        count = tile_count(bounds, self.config.zoom)
        if count > self.config.max_tiles:
            raise AreaTooLarge(limit=self.config.max_tiles, requested=count, unit="tiles")

    def provider_order(self, source_hint: Optional[str] = None) -> List[str]:
        """Provider names in the order they will be tried."""
        order = [name for name in self.config.source_order if name in self.providers]
        # Providers registered outside the configured order go last
        order += [name for name in self.providers if name not in order]
        if source_hint is not None:
            if source_hint not in self.providers:
                raise ValueError(
                    f"Unknown elevation source '{source_hint}' "
                    f"(available: {', '.join(sorted(self.providers))})"
                )
            order.remove(source_hint)
            order.insert(0, source_hint)
        return order

    def fetch(
        self,
        bounds: Bounds,
        source_hint: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ElevationRaster:
        """
        Fetch elevation for bounds.

        Args:
            bounds: Selected area
            source_hint: Provider to try first (e.g. "geotiff")
            timeout: Optional overall deadline in seconds

        Returns:
            ElevationRaster from the first provider that delivers valid data

        Raises:
            AreaTooLarge: Bounds exceed the tile budget (before any network I/O)
            DataUnavailable: Every provider failed or the deadline passed
        """
        self.check_budget(bounds)
        order = self.provider_order(source_hint)

        if timeout is None:
            return self._fetch_with_fallback(bounds, order)

        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._fetch_with_fallback, bounds, order)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            logger.error("Elevation fetch exceeded %.1fs deadline", timeout)
            raise DataUnavailable({"timeout": f"no result within {timeout:g}s"})
        finally:
            executor.shutdown(wait=False)

    def _fetch_with_fallback(self, bounds: Bounds, order: Sequence[str]) -> ElevationRaster:
        failures: Dict[str, str] = {}
        for name in order:
            provider = self.providers[name]
            try:
                raster = provider.fetch(bounds)
            except FALLBACK_ERRORS as e:
                logger.warning("Elevation source '%s' failed: %s", name, e)
                failures[name] = str(e) or type(e).__name__
                continue

            if raster.valid_count == 0:
                logger.warning("Elevation source '%s' returned no valid samples", name)
                failures[name] = "no valid samples"
                continue

            logger.info(
                "Elevation from '%s': %dx%d, %.0fm to %.0fm",
                name, raster.width, raster.height,
                raster.min_elevation, raster.max_elevation,
            )
            return raster

        raise DataUnavailable(failures)


def fetch_elevation(
    bounds: Bounds,
    source_hint: Optional[str] = None,
    timeout: Optional[float] = None,
    config: Optional[FetchConfig] = None,
) -> ElevationRaster:
    """Fetch elevation with the default providers."""
    return ElevationFetcher(config=config).fetch(bounds, source_hint=source_hint, timeout=timeout)
