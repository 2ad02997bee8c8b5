"""Shared fixtures for terrain map tests."""

import numpy as np
import pytest

from fetch_elevation import ElevationRaster
from map_utils import Bounds


@pytest.fixture
def sf_bounds():
    """A few kilometres of San Francisco."""
    return Bounds(north=37.8, south=37.7, east=-122.4, west=-122.5)


@pytest.fixture
def sf_scenario_bounds():
    """North-east San Francisco, about 4.4 km x 11 km."""
    return Bounds(north=37.80, south=37.70, east=-122.40, west=-122.45)


@pytest.fixture
def small_bounds():
    """About 1.1km x 0.9km near Denver."""
    return Bounds(north=39.75, south=39.74, east=-104.98, west=-104.99)


@pytest.fixture
def cone_raster(small_bounds):
    """A 40x40 cone: 100m at the edges rising to 150m in the middle."""
    y, x = np.mgrid[0:40, 0:40].astype(float)
    distance = np.hypot(x - 19.5, y - 19.5)
    data = 150 - distance * (50 / distance.max())
    return ElevationRaster.from_array(data, small_bounds, source="test")
