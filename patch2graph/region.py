"""
Processing Region Module.

This module provides the :class:`Region` value object describing a processing
window of the GIS backend, and the computation of the cutoff window used to
mask cost-distance calculations to the neighbourhood of one source patch.

Regions are plain values passed to every backend call, so that the window of
one patch never leaks into the processing of another.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
import math
from dataclasses import dataclass
from dataclasses import replace

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = ["METERS_PER_DEGREE", "Region", "cutoff_window"]

# Length of one degree of latitude along a meridian
METERS_PER_DEGREE = 111_320.0

# Absorbs floating point noise when snapping to the grid
_SNAP_TOLERANCE = 1e-9


@dataclass(frozen=True)
class Region:
    """
    Rectangular processing window with a cell resolution.

    Parameters
    ----------
    north, south, east, west : float
        Window edges in map units.
    nsres, ewres : float
        North-south and east-west cell size.
    name : str, optional
        Name under which the backend stores the window. Regions without a name
        refer to the backend's current window.
    """

    north: float
    south: float
    east: float
    west: float
    nsres: float
    ewres: float
    name: str | None = None

    @property
    def rows(self) -> int:
        """Number of cell rows in the window."""
        return round((self.north - self.south) / self.nsres)

    @property
    def cols(self) -> int:
        """Number of cell columns in the window."""
        return round((self.east - self.west) / self.ewres)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Window as ``(minx, miny, maxx, maxy)``."""
        return (self.west, self.south, self.east, self.north)

    def with_name(self, name: str | None) -> Region:
        """Return the same window stored under ``name``."""
        return replace(self, name=name)

    def contains(self, other: Region) -> bool:
        """Whether ``other`` lies entirely inside this window."""
        return (
            other.west >= self.west
            and other.east <= self.east
            and other.south >= self.south
            and other.north <= self.north
        )


def _snap_down(value: float, origin: float, res: float) -> float:
    """Move ``value`` down onto the grid defined by ``origin`` and ``res``."""
    return origin + math.floor((value - origin) / res + _SNAP_TOLERANCE) * res


def _snap_up(value: float, origin: float, res: float) -> float:
    """Move ``value`` up onto the grid defined by ``origin`` and ``res``."""
    return origin + math.ceil((value - origin) / res - _SNAP_TOLERANCE) * res


def _geographic_expansion(
    bounds: tuple[float, float, float, float],
    cutoff: float,
    full_region: Region,
) -> tuple[float, float, float, float]:
    """
    Expand lat/lon ``bounds`` by a metric ``cutoff``.

    The latitude expansion uses the meridian length of a degree. The longitude
    expansion is computed at the pole-most latitude of the expanded window,
    which gives the widest (most conservative) value over the window. Windows
    touching a pole, spanning a half circle or crossing the antimeridian fall
    back to the full longitude range of ``full_region``.
    """
    minx, miny, maxx, maxy = bounds
    dlat = cutoff / METERS_PER_DEGREE
    south = max(miny - dlat, -90.0)
    north = min(maxy + dlat, 90.0)

    full_lon = (full_region.west, full_region.east)
    if south <= -90.0 or north >= 90.0:
        logger.debug("Cutoff window reaches a pole, using the full longitude range")
        return (full_lon[0], south, full_lon[1], north)

    pole_lat = max(abs(south), abs(north))
    dlon = dlat / math.cos(math.radians(pole_lat))
    west = minx - dlon
    east = maxx + dlon
    if dlon >= 180.0 or west < -180.0 or east > 180.0:
        logger.debug("Cutoff window wraps around in longitude, using the full longitude range")
        return (full_lon[0], south, full_lon[1], north)
    return (west, south, east, north)


def cutoff_window(
    bounds: tuple[float, float, float, float] | None,
    cutoff: float,
    full_region: Region,
    geographic: bool = False,
    name: str | None = None,
) -> Region:
    """
    Compute the processing window around a patch for a given cutoff.

    The patch bounding box is expanded by ``cutoff`` on every side, snapped
    outward onto the cell grid of ``full_region`` and clipped to it. In a
    geographic coordinate system the cutoff is taken in metres and converted to
    degrees; see :func:`_geographic_expansion`.

    Parameters
    ----------
    bounds : tuple[float, float, float, float] or None
        Patch bounding box ``(minx, miny, maxx, maxy)``. ``None`` returns the
        full region.
    cutoff : float
        Search distance in map units (metres for geographic systems).
    full_region : Region
        The run's full processing window. Its grid and extent bound the result.
    geographic : bool, default False
        Whether coordinates are latitude/longitude degrees.
    name : str, optional
        Name for the resulting region.

    Returns
    -------
    Region
        Window aligned to ``full_region`` and never larger than it.

    Examples
    --------
    >>> full = Region(north=100.0, south=0.0, east=100.0, west=0.0, nsres=1.0, ewres=1.0)
    >>> cutoff_window((40.5, 40.5, 50.5, 50.5), 10, full).bounds
    (30.0, 30.0, 61.0, 61.0)
    """
    if bounds is None:
        return full_region.with_name(name)

    if geographic:
        west, south, east, north = _geographic_expansion(bounds, cutoff, full_region)
    else:
        minx, miny, maxx, maxy = bounds
        west, south, east, north = minx - cutoff, miny - cutoff, maxx + cutoff, maxy + cutoff

    west = max(_snap_down(west, full_region.west, full_region.ewres), full_region.west)
    east = min(_snap_up(east, full_region.west, full_region.ewres), full_region.east)
    south = max(_snap_down(south, full_region.south, full_region.nsres), full_region.south)
    north = min(_snap_up(north, full_region.south, full_region.nsres), full_region.north)

    return Region(
        north=north,
        south=south,
        east=east,
        west=west,
        nsres=full_region.nsres,
        ewres=full_region.ewres,
        name=name,
    )
