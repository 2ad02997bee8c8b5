"""
Error hierarchy for terrain map generation.

Each pipeline stage raises one of these so callers can show a single
human-readable message per failure kind and keep earlier artifacts.
"""

from typing import Dict, Optional


class TerrainMapError(Exception):
    """Base error for terrain map operations."""

    user_message = "Map generation failed."


class ProviderError(TerrainMapError):
    """A single elevation provider could not deliver data.

    Absorbed by the fetcher's fallback loop; never surfaced on its own.
    """


class DataUnavailable(TerrainMapError):
    """Every elevation source failed for the requested bounds.

    Attributes:
        failures: Mapping of provider name to the reason it failed
    """

    user_message = "No elevation data available here. Try a different area or retry."

    def __init__(self, failures: Optional[Dict[str, str]] = None):
        self.failures = dict(failures or {})
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures.items())
        super().__init__(f"All elevation sources failed ({detail})" if detail
                         else "All elevation sources failed")


class AreaTooLarge(TerrainMapError):
    """Selected bounds exceed the raster/tile budget.

    Attributes:
        limit: Maximum allowed units (tiles or samples)
        requested: Units the selection would need
        unit: What is being counted, e.g. "tiles"
    """

    def __init__(self, limit: int, requested: int, unit: str = "tiles"):
        self.limit = limit
        self.requested = requested
        self.unit = unit
        super().__init__(
            f"Selected area needs {requested} {unit}, limit is {limit}"
        )

    @property
    def user_message(self) -> str:
        return (f"Selected area is too large ({self.requested} {self.unit}, "
                f"max {self.limit}). Please select a smaller area.")


class ComputeError(TerrainMapError):
    """Contour or grid generation received malformed input."""

    user_message = "Could not compute the map layers for this selection."


class ExportError(TerrainMapError):
    """Export was invoked without prerequisites, or encoding failed."""

    user_message = "Map export failed. Generate elevation, contours and grid first."
