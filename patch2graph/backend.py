"""
GIS Backend Module.

This module defines :class:`GISBackend`, the abstract set of operations the
connectivity-distance workflow needs from an external GIS toolkit, and
:class:`GrassBackend`, the adapter running GRASS GIS modules as subprocesses.

The workflow never computes rasters itself. Rasterization, distance
propagation and cell statistics are all delegated to the backend, which
returns plain Python values and pandas DataFrames.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
import os
import subprocess
from abc import ABC
from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

# Third-party imports
import pandas as pd
from pyproj import CRS
from pyproj.exceptions import CRSError

# Local imports
from .base import BackendError
from .region import Region

if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Mapping

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = ["FEATURE_COLUMNS", "GISBackend", "GrassBackend"]

# Columns of the frame returned by GISBackend.list_features
FEATURE_COLUMNS = ["patch_id", "value", "x", "y", "minx", "miny", "maxx", "maxy"]


class GISBackend(ABC):
    """
    Abstract interface of the external GIS toolkit.

    Every operation is synchronous and either returns a finite result or raises
    :class:`~patch2graph.base.BackendError`. Operations taking a ``region``
    run inside that processing window; ``None`` means the backend's current
    window.
    """

    # -- region and coordinate system ---------------------------------------

    @abstractmethod
    def is_geographic(self) -> bool:
        """Whether the working coordinate reference system is latitude/longitude."""

    @abstractmethod
    def current_region(self) -> Region:
        """Return the backend's current processing window."""

    @abstractmethod
    def set_region(self, region: Region) -> None:
        """Store ``region`` under ``region.name`` so later calls can use it."""

    @abstractmethod
    def remove_region(self, name: str) -> None:
        """Delete a stored region."""

    # -- queries --------------------------------------------------------------

    @abstractmethod
    def vector_columns(self, layer: str) -> list[str]:
        """Return the attribute column names of a vector layer."""

    @abstractmethod
    def raster_exists(self, name: str) -> bool:
        """Whether a raster map called ``name`` exists."""

    @abstractmethod
    def list_features(self, layer: str, column: str) -> pd.DataFrame:
        """
        Enumerate the features of a vector layer.

        Returns
        -------
        pandas.DataFrame
            One row per feature with the columns of :data:`FEATURE_COLUMNS`:
            the feature id, the raw ``column`` value (``None`` when absent),
            the centroid and the bounding box. Unknown coordinates are NaN.
        """

    @abstractmethod
    def raster_values(self, raster: str, region: Region | None = None) -> set[int]:
        """Return the distinct non-null integer values of a raster."""

    @abstractmethod
    def paired_values(self, rasters: list[str], region: Region | None = None) -> pd.DataFrame:
        """
        Return the values of coincident cells of several rasters.

        Returns
        -------
        pandas.DataFrame
            One row per cell where no raster is null, in row-major cell order,
            with one float column per raster named after it.
        """

    # -- map production -------------------------------------------------------

    @abstractmethod
    def rasterize(self, layer: str, output: str, region: Region | None = None) -> None:
        """Rasterize the areas of ``layer`` into ``output`` using feature ids as cell values."""

    @abstractmethod
    def extract_value(
        self,
        raster: str,
        value: int,
        output: str,
        region: Region | None = None,
    ) -> None:
        """Write a raster that is 1 where ``raster`` equals ``value`` and null elsewhere."""

    @abstractmethod
    def border_cells(self, raster: str, output: str, region: Region | None = None) -> None:
        """Keep only the cells of ``raster`` lying on the boundary of their patch."""

    @abstractmethod
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
        """
        Compute the distance from the non-null cells of ``seed``.

        ``mode="cost"`` accumulates cost over ``costs`` up to ``cutoff``;
        ``mode="straight"`` computes euclidean distances, or geodesic distances
        when ``geodesic`` is True.
        """

    @abstractmethod
    def remove_rasters(self, names: Iterable[str]) -> None:
        """Delete raster maps. Missing maps are ignored."""


# =============================================================================
# GRASS GIS ADAPTER
# =============================================================================


def _parse_key_value(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines (shell style output of GRASS modules)."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip().strip("'\"")
    return values


def _parse_records(text: str, width: int, separator: str = ";") -> list[list[str]]:
    """
    Split delimited output into records whose first field is an integer id.

    Header lines and lines with fewer than ``width`` fields are skipped.
    """
    records: list[list[str]] = []
    for line in text.splitlines():
        fields = [f.strip() for f in line.split(separator)]
        if len(fields) < width:
            continue
        try:
            int(float(fields[0]))
        except ValueError:
            continue
        records.append(fields[:width])
    return records


class GrassBackend(GISBackend):
    """
    Run GRASS GIS modules as subprocesses.

    Parameters
    ----------
    mapset : str or pathlib.Path, optional
        Path to a GRASS mapset (``<database>/<location>/<mapset>``). When set,
        every module runs through ``grass <mapset> --exec``; otherwise modules
        are called directly and an active GRASS session is required.
    executable : str, default "grass"
        GRASS launcher used together with ``mapset``.
    timeout : float, optional
        Timeout in seconds for every module call.
    env : Mapping[str, str], optional
        Extra environment variables for every module call.

    Notes
    -----
    Named regions are saved with ``g.region save=`` and selected per call
    through the ``WIND_OVERRIDE`` variable of the child process, so the
    current region of the mapset is left untouched.

    Examples
    --------
    >>> backend = GrassBackend("/data/grassdata/utm32/patches", timeout=600)
    >>> backend.is_geographic()
    False
    """

    def __init__(
        self,
        mapset: str | Path | None = None,
        *,
        executable: str = "grass",
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.mapset = Path(mapset) if mapset is not None else None
        self.executable = executable
        self.timeout = timeout
        self.env = dict(env or {})

    # -- command execution -----------------------------------------------------

    def _command(
        self,
        module: str,
        flags: str = "",
        options: Mapping[str, object] | None = None,
        overwrite: bool = False,
    ) -> list[str]:
        """Build the argument list of one module call."""
        cmd = [module]
        if flags:
            cmd.append(f"-{flags}")
        for key, value in (options or {}).items():
            if value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                value = ",".join(map(str, value))
            cmd.append(f"{key}={value}")
        if overwrite:
            cmd.append("--overwrite")
        cmd.append("--quiet")

        if self.mapset is not None:
            cmd = [self.executable, str(self.mapset), "--exec", *cmd]
        return cmd

    def _environment(self, region: Region | None) -> dict[str, str] | None:
        """Return the child environment, or None to inherit ours unchanged."""
        if not self.env and (region is None or region.name is None):
            return None
        env = os.environ.copy()
        env.update(self.env)
        if region is not None and region.name is not None:
            env["WIND_OVERRIDE"] = region.name
        return env

    def _run(
        self,
        module: str,
        flags: str = "",
        options: Mapping[str, object] | None = None,
        *,
        region: Region | None = None,
        overwrite: bool = False,
    ) -> str:
        """
        Run one GRASS module and return its standard output.

        Raises
        ------
        BackendError
            If the module exits with a non-zero status, cannot be started or
            exceeds the timeout.
        """
        cmd = self._command(module, flags, options, overwrite)
        logger.debug("Running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                env=self._environment(region),
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            msg = f"{module} failed with exit status {exc.returncode}: {stderr or 'no error output'}"
            raise BackendError(msg, command=cmd, returncode=exc.returncode, stderr=stderr) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"{module} timed out after {exc.timeout} seconds"
            raise BackendError(msg, command=cmd) from exc
        except OSError as exc:
            msg = f"Could not run {cmd[0]}: {exc}"
            raise BackendError(msg, command=cmd) from exc
        return proc.stdout

    # -- region and coordinate system ---------------------------------------

    def is_geographic(self) -> bool:
        """Read the location's projection as WKT and ask pyproj about it."""
        wkt = self._run("g.proj", "w").strip()
        if not wkt:
            # XY locations have no projection information
            return False
        try:
            return bool(CRS.from_wkt(wkt).is_geographic)
        except CRSError as exc:
            msg = f"Could not interpret the location projection: {exc}"
            raise BackendError(msg) from exc

    def current_region(self) -> Region:
        """Parse ``g.region -g`` into a :class:`~patch2graph.region.Region`."""
        values = _parse_key_value(self._run("g.region", "g"))
        try:
            return Region(
                north=float(values["n"]),
                south=float(values["s"]),
                east=float(values["e"]),
                west=float(values["w"]),
                nsres=float(values["nsres"]),
                ewres=float(values["ewres"]),
            )
        except (KeyError, ValueError) as exc:
            msg = f"Unexpected g.region output, missing or invalid {exc}"
            raise BackendError(msg) from exc

    def set_region(self, region: Region) -> None:
        """Save ``region`` as a named GRASS region."""
        if region.name is None:
            msg = "Only named regions can be stored"
            raise ValueError(msg)
        # Snapshot the current region under the new name, then edit only the copy
        self._run("g.region", options={"save": region.name}, overwrite=True)
        self._run(
            "g.region",
            options={
                "n": repr(region.north),
                "s": repr(region.south),
                "e": repr(region.east),
                "w": repr(region.west),
                "nsres": repr(region.nsres),
                "ewres": repr(region.ewres),
            },
            region=region,
        )

    def remove_region(self, name: str) -> None:
        """Delete a named GRASS region."""
        self._run("g.remove", "f", {"type": "region", "name": name})

    # -- queries --------------------------------------------------------------

    def vector_columns(self, layer: str) -> list[str]:
        """List the attribute columns reported by ``v.info -c``."""
        out = self._run("v.info", "c", {"map": layer})
        return [line.split("|", 1)[1].strip() for line in out.splitlines() if "|" in line]

    def raster_exists(self, name: str) -> bool:
        """Look the raster up with ``g.findfile``."""
        try:
            out = self._run("g.findfile", options={"element": "cell", "file": name})
        except BackendError as exc:
            # g.findfile exits with status 1 when nothing is found
            if exc.returncode == 1:
                return False
            raise
        return bool(_parse_key_value(out).get("name"))

    def list_features(self, layer: str, column: str) -> pd.DataFrame:
        """
        Collect ids, attribute values, centroids and bounding boxes.

        Attribute values come from ``v.db.select``; centroids and bounding
        boxes from ``v.to.db -p``. Features made of several parts get the mean
        of their centroids and the union of their bounding boxes. A category
        without an attribute row is still listed, with ``value`` missing.
        """
        attrs = _parse_records(
            self._run(
                "v.db.select",
                "c",
                {"map": layer, "columns": f"cat,{column}", "separator": ";"},
            ),
            width=2,
        )
        attr_df = pd.DataFrame(
            {"value": [r[1] if r[1] != "" else None for r in attrs]},
            index=pd.Index([int(float(r[0])) for r in attrs], name="patch_id", dtype="int64"),
            dtype=object,
        )

        coords = _parse_records(
            self._run(
                "v.to.db",
                "p",
                {"map": layer, "option": "coor", "type": "centroid", "separator": ";"},
            ),
            width=3,
        )
        coord_df = pd.DataFrame(coords, columns=["patch_id", "x", "y"]).astype(float)
        coord_df = coord_df.groupby(coord_df["patch_id"].astype("int64"))[["x", "y"]].mean()

        boxes = _parse_records(
            self._run("v.to.db", "p", {"map": layer, "option": "bbox", "separator": ";"}),
            width=5,
        )
        box_df = pd.DataFrame(boxes, columns=["patch_id", "maxy", "miny", "maxx", "minx"])
        box_df = box_df.astype(float)
        box_df = box_df.groupby(box_df["patch_id"].astype("int64")).agg(
            {"minx": "min", "miny": "min", "maxx": "max", "maxy": "max"}
        )

        ids = attr_df.index.union(coord_df.index).union(box_df.index)
        if ids.empty:
            return pd.DataFrame(columns=FEATURE_COLUMNS)
        missing = ids.difference(attr_df.index)
        if not missing.empty:
            logger.debug("Features without an attribute row in %s: %s", layer, list(missing))

        features = (
            pd.DataFrame(index=pd.Index(ids, name="patch_id"))
            .join(attr_df)
            .join(coord_df)
            .join(box_df)
            .reset_index()
        )
        return features[FEATURE_COLUMNS]

    def raster_values(self, raster: str, region: Region | None = None) -> set[int]:
        """List the distinct non-null values of ``raster`` with ``r.stats -n``."""
        out = self._run("r.stats", "n", {"input": raster}, region=region)
        return {int(float(line.split()[0])) for line in out.splitlines() if line.strip()}

    def paired_values(self, rasters: list[str], region: Region | None = None) -> pd.DataFrame:
        """Dump coincident non-null cells with ``r.stats -1n``."""
        out = self._run(
            "r.stats",
            "1n",
            {"input": list(rasters), "separator": ";"},
            region=region,
        )
        records = _parse_records(out, width=len(rasters))
        try:
            return pd.DataFrame(records, columns=list(rasters)).astype(float)
        except ValueError as exc:
            msg = f"Unexpected r.stats output for {rasters}: {exc}"
            raise BackendError(msg) from exc

    # -- map production -------------------------------------------------------

    def rasterize(self, layer: str, output: str, region: Region | None = None) -> None:
        """Rasterize areas with ``v.to.rast use=cat``."""
        self._run(
            "v.to.rast",
            options={"input": layer, "output": output, "use": "cat", "type": "area"},
            region=region,
            overwrite=True,
        )

    def extract_value(
        self,
        raster: str,
        value: int,
        output: str,
        region: Region | None = None,
    ) -> None:
        """Isolate one patch with ``r.mapcalc``."""
        expression = f"{output} = if({raster} == {int(value)}, 1, null())"
        self._run("r.mapcalc", options={"expression": expression}, region=region, overwrite=True)

    def border_cells(self, raster: str, output: str, region: Region | None = None) -> None:
        """
        Keep patch cells with at least one 4-neighbour outside their patch.

        ``|||`` is the null-tolerant logical or of ``r.mapcalc``.
        """
        r = raster
        neighbours = [f"{r}[-1,0]", f"{r}[1,0]", f"{r}[0,-1]", f"{r}[0,1]"]
        outside = " ||| ".join(
            [f"isnull({n})" for n in neighbours] + [f"{n} != {r}" for n in neighbours]
        )
        expression = f"{output} = if(isnull({r}), null(), if({outside}, {r}, null()))"
        self._run("r.mapcalc", options={"expression": expression}, region=region, overwrite=True)

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
        """Run ``r.cost`` (cost mode) or ``r.grow.distance`` (straight mode)."""
        if mode == "cost":
            if not costs:
                msg = "Cost-weighted distances need a friction raster"
                raise ValueError(msg)
            self._run(
                "r.cost",
                "n",
                {
                    "input": costs,
                    "output": output,
                    "start_raster": seed,
                    "max_cost": repr(float(cutoff)),
                },
                region=region,
                overwrite=True,
            )
        elif mode == "straight":
            self._run(
                "r.grow.distance",
                options={
                    "input": seed,
                    "distance": output,
                    "metric": "geodesic" if geodesic else "euclidean",
                },
                region=region,
                overwrite=True,
            )
        else:
            msg = f"Unknown distance mode: {mode}"
            raise ValueError(msg)

    def remove_rasters(self, names: Iterable[str]) -> None:
        """Delete rasters with ``g.remove -f``."""
        names = [n for n in names if n]
        if not names:
            return
        self._run("g.remove", "f", {"type": "raster", "name": names})
