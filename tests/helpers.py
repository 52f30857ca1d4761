"""Shared test helpers: an in-memory GIS backend and small frame builders.

The fake backend stands in for GRASS GIS in pipeline, sampler and CLI tests.
Distance samples are declared up front per source patch, so tests control
exactly which boundary-cell distances the sampler sees.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from patch2graph.backend import FEATURE_COLUMNS
from patch2graph.backend import GISBackend
from patch2graph.base import BackendError
from patch2graph.region import Region

if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Mapping

# Public constants used in multiple test modules
TOLERANCE = 1e-9
DEFAULT_REGION = Region(north=100.0, south=0.0, east=100.0, west=0.0, nsres=1.0, ewres=1.0)


# ----------------------------------------------------------------------------
# Frame builders
# ----------------------------------------------------------------------------


def make_features(
    rows: Iterable[tuple[object, object, float, float]],
    half_size: float = 1.0,
) -> pd.DataFrame:
    """Build a feature table from ``(patch_id, value, x, y)`` rows.

    Bounding boxes are squares of ``2 * half_size`` around the centroid.
    """
    records = [
        {
            "patch_id": pid,
            "value": value,
            "x": x,
            "y": y,
            "minx": x - half_size,
            "miny": y - half_size,
            "maxx": x + half_size,
            "maxy": y + half_size,
        }
        for pid, value, x, y in rows
    ]
    return pd.DataFrame(records, columns=FEATURE_COLUMNS)


# ----------------------------------------------------------------------------
# Fake backend
# ----------------------------------------------------------------------------


class FakeBackend(GISBackend):
    """In-memory GIS backend recording every call.

    Parameters
    ----------
    features : pandas.DataFrame
        Feature table returned by ``list_features``.
    samples : Mapping[int, list[tuple[int, float]]], optional
        ``(target patch id, distance)`` boundary-cell rows per source patch.
    layer : str, default "patches"
        Name of the only vector layer.
    columns : list[str], optional
        Attribute columns of the layer. Defaults to ``["cat", "proxy"]``.
    rasters : Iterable[str], optional
        Rasters that exist before the run.
    geographic : bool, default False
        Value returned by ``is_geographic``.
    failing : Iterable[int], optional
        Patch ids whose distance computation raises :class:`BackendError`.
    unrasterized : Iterable[int], optional
        Patch ids missing from the rasterized patch map.
    """

    def __init__(
        self,
        features: pd.DataFrame,
        samples: Mapping[int, list[tuple[int, float]]] | None = None,
        *,
        layer: str = "patches",
        columns: list[str] | None = None,
        rasters: Iterable[str] = ("friction",),
        geographic: bool = False,
        region: Region = DEFAULT_REGION,
        failing: Iterable[int] = (),
        unrasterized: Iterable[int] = (),
    ) -> None:
        self.features = features
        self.samples = dict(samples or {})
        self.layer = layer
        self.columns = columns if columns is not None else ["cat", "proxy"]
        self.rasters: set[str] = set(rasters)
        self.geographic = geographic
        self.region = region
        self.failing = set(failing)
        self.unrasterized = set(unrasterized)
        self.regions: set[str] = set()
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.removed: list[str] = []
        self._seed_source: dict[str, int] = {}
        self._distance_source: dict[str, int] = {}

    def _record(self, call: str, /, **kwargs: object) -> None:
        self.calls.append((call, kwargs))

    def called(self, name: str) -> list[dict[str, object]]:
        """Return the keyword arguments of every call to ``name``."""
        return [kwargs for call, kwargs in self.calls if call == name]

    # -- region and coordinate system ------------------------------------------

    def is_geographic(self) -> bool:
        self._record("is_geographic")
        return self.geographic

    def current_region(self) -> Region:
        self._record("current_region")
        return self.region

    def set_region(self, region: Region) -> None:
        self._record("set_region", region=region)
        self.regions.add(region.name)

    def remove_region(self, name: str) -> None:
        self._record("remove_region", name=name)
        self.regions.discard(name)

    # -- queries ---------------------------------------------------------------

    def vector_columns(self, layer: str) -> list[str]:
        self._record("vector_columns", layer=layer)
        if layer != self.layer:
            msg = f"Vector map <{layer}> not found"
            raise BackendError(msg, returncode=1)
        return list(self.columns)

    def raster_exists(self, name: str) -> bool:
        self._record("raster_exists", name=name)
        return name in self.rasters

    def list_features(self, layer: str, column: str) -> pd.DataFrame:
        self._record("list_features", layer=layer, column=column)
        return self.features.copy()

    def raster_values(self, raster: str, region: Region | None = None) -> set[int]:
        self._record("raster_values", raster=raster, region=region)
        ids = pd.to_numeric(self.features["patch_id"], errors="coerce").dropna().astype(int)
        return set(ids) - self.unrasterized

    def paired_values(self, rasters: list[str], region: Region | None = None) -> pd.DataFrame:
        self._record("paired_values", rasters=list(rasters), region=region)
        distance, borders = rasters
        rows = self.samples.get(self._distance_source[distance], [])
        return pd.DataFrame(
            {
                distance: np.array([d for _, d in rows], dtype=float),
                borders: np.array([t for t, _ in rows], dtype=float),
            }
        )

    # -- map production --------------------------------------------------------

    def rasterize(self, layer: str, output: str, region: Region | None = None) -> None:
        self._record("rasterize", layer=layer, output=output, region=region)
        self.rasters.add(output)

    def extract_value(
        self,
        raster: str,
        value: int,
        output: str,
        region: Region | None = None,
    ) -> None:
        self._record("extract_value", raster=raster, value=value, output=output, region=region)
        self.rasters.add(output)
        self._seed_source[output] = value

    def border_cells(self, raster: str, output: str, region: Region | None = None) -> None:
        self._record("border_cells", raster=raster, output=output, region=region)
        self.rasters.add(output)

    def distance_field(
        self,
        seed: str,
        output: str,
        *,
        mode: str,
        cutoff: float,
        costs: str | None = None,
        geodesic: bool = False,
        region: Region | None = None,
    ) -> None:
        self._record(
            "distance_field",
            seed=seed,
            output=output,
            mode=mode,
            cutoff=cutoff,
            costs=costs,
            geodesic=geodesic,
            region=region,
        )
        source = self._seed_source[seed]
        if source in self.failing:
            msg = f"r.cost failed for patch {source}"
            raise BackendError(msg, command=["r.cost"], returncode=1, stderr="ERROR: failed")
        self.rasters.add(output)
        self._distance_source[output] = source

    def remove_rasters(self, names: Iterable[str]) -> None:
        names = list(names)
        self._record("remove_rasters", names=names)
        self.removed.extend(names)
        self.rasters.difference_update(names)
