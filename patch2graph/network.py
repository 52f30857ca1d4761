"""
Edge-List Network Module.

This module collects the results of a connectivity-distance run and persists
them as plain semicolon-delimited tables ready for downstream graph analysis:

- the directed edge list (``<prefix>_edges.csv``),
- the vertex coordinate table (``<prefix>_vertices_coordinates.csv``),
- the vertex population table (``<prefix>_vertices_population.csv``),
- the patches left out of the run (``<prefix>_unconsidered_patches.csv``),
- the run log (``<prefix>_log.txt``).

The same network can be exported to GeoDataFrames (patch centroids and
centroid-to-centroid lines) or to a :class:`networkx.DiGraph`, and persisted
tables can be read back with :func:`read_network`.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import TYPE_CHECKING

# Third-party imports
import geopandas as gpd
import networkx as nx
import pandas as pd
from shapely.geometry import LineString

# Local imports
from .base import SkippedPatch
from .base import ValidationError
from .config import write_run_log

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pyproj import CRS

    from .base import Edge
    from .base import Patch
    from .config import RunConfig

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = [
    "COORDINATE_COLUMNS",
    "EDGE_COLUMNS",
    "POPULATION_COLUMNS",
    "UNCONSIDERED_COLUMNS",
    "EdgeListAccumulator",
    "RunSummary",
    "output_paths",
    "read_network",
]

# Headers of the persisted tables
EDGE_COLUMNS = ["from_patch", "to_patch", "cost-distance"]
COORDINATE_COLUMNS = ["patch_id", "cetroid_x_coordinate", "cetroid_y_coordinate"]
POPULATION_COLUMNS = ["patch_id", "population_proxy"]
UNCONSIDERED_COLUMNS = ["patch_id", "reason"]

SEPARATOR = ";"


def output_paths(folder: str | Path, prefix: str) -> dict[str, Path]:
    """
    Return the paths of every file written by a run.

    Parameters
    ----------
    folder : str or pathlib.Path
        Output folder.
    prefix : str
        Run prefix.

    Returns
    -------
    dict[str, pathlib.Path]
        Paths keyed by ``"edges"``, ``"coordinates"``, ``"population"``,
        ``"unconsidered"`` and ``"log"``.

    Examples
    --------
    >>> output_paths("out", "run")["edges"].name
    'run_edges.csv'
    """
    folder = Path(folder)
    return {
        "edges": folder / f"{prefix}_edges.csv",
        "coordinates": folder / f"{prefix}_vertices_coordinates.csv",
        "population": folder / f"{prefix}_vertices_population.csv",
        "unconsidered": folder / f"{prefix}_unconsidered_patches.csv",
        "log": folder / f"{prefix}_log.txt",
    }


@dataclass(frozen=True)
class RunSummary:
    """
    Outcome of a finalized run.

    Parameters
    ----------
    patches_considered : int
        Patches whose distances were computed.
    patches_skipped : int
        Patches left out, before or during the patch loop.
    edges : int
        Directed edges written.
    substitutions : int
        Edges whose non-positive distance was replaced by the epsilon.
    outputs : dict[str, pathlib.Path]
        Written files, see :func:`output_paths`.
    """

    patches_considered: int
    patches_skipped: int
    edges: int
    substitutions: int
    outputs: dict[str, Path] = field(default_factory=dict)


# =============================================================================
# ACCUMULATOR
# =============================================================================


class EdgeListAccumulator:
    """
    Append-only store of the vertices, edges and skipped patches of a run.

    Vertices are kept in insertion order, edges in ``(from, to)`` order of
    arrival. Adding a vertex or a directed edge twice is an error.

    Examples
    --------
    >>> acc = EdgeListAccumulator()
    >>> acc.add_patch(Patch(1, 2.0, 0.0, 0.0))
    >>> acc.add_edges([Edge(1, 2, 80.0)])
    1
    """

    def __init__(self) -> None:
        self._patches: dict[int, Patch] = {}
        self._edges: dict[tuple[int, int], Edge] = {}
        self._skipped: list[SkippedPatch] = []
        self._failed: set[int] = set()
        self.substitutions = 0

    def __len__(self) -> int:
        return len(self._edges)

    @property
    def patches(self) -> list[Patch]:
        """Vertices in insertion order."""
        return list(self._patches.values())

    @property
    def edges(self) -> list[Edge]:
        """Edges in insertion order."""
        return list(self._edges.values())

    @property
    def skipped(self) -> list[SkippedPatch]:
        """Patches left out of the run."""
        return list(self._skipped)

    def add_patch(self, patch: Patch) -> None:
        """Register ``patch`` as a vertex of the network."""
        if patch.id in self._patches:
            msg = f"Patch {patch.id} is already part of the network"
            raise ValueError(msg)
        self._patches[patch.id] = patch

    def add_edges(self, edges: Iterable[Edge]) -> int:
        """
        Append edges to the network.

        Parameters
        ----------
        edges : Iterable[Edge]
            Edges to add. Either all of them are added or none.

        Returns
        -------
        int
            Number of edges added.

        Raises
        ------
        ValueError
            If a ``(from, to)`` pair is already present.
        """
        edges = list(edges)
        keys = [edge.key for edge in edges]
        duplicated = [k for k in keys if k in self._edges]
        if duplicated or len(set(keys)) != len(keys):
            msg = f"Duplicate directed edges: {duplicated or keys}"
            raise ValueError(msg)

        for edge in edges:
            self._edges[edge.key] = edge
            if edge.substituted:
                self.substitutions += 1
        return len(edges)

    def record_skip(self, patch_id: int, reason: str) -> None:
        """Record a patch left out of the run, with the reason."""
        self._skipped.append(SkippedPatch(int(patch_id), reason))
        if patch_id in self._patches:
            self._failed.add(int(patch_id))

    def summary(self, outputs: dict[str, Path] | None = None) -> RunSummary:
        """Return the counts of the run so far."""
        return RunSummary(
            patches_considered=len(self._patches) - len(self._failed),
            patches_skipped=len(self._skipped),
            edges=len(self._edges),
            substitutions=self.substitutions,
            outputs=dict(outputs or {}),
        )

    # -- tables ---------------------------------------------------------------

    def edges_frame(self) -> pd.DataFrame:
        """Edge list with the persisted column names."""
        rows = [(e.source, e.target, e.distance) for e in self._edges.values()]
        return pd.DataFrame(rows, columns=EDGE_COLUMNS).astype(
            {"from_patch": "int64", "to_patch": "int64", "cost-distance": "float64"}
        )

    def coordinates_frame(self) -> pd.DataFrame:
        """Vertex coordinate table with the persisted column names."""
        rows = [(p.id, p.x, p.y) for p in self._patches.values()]
        return pd.DataFrame(rows, columns=COORDINATE_COLUMNS).astype(
            {"patch_id": "int64", "cetroid_x_coordinate": "float64", "cetroid_y_coordinate": "float64"}
        )

    def population_frame(self) -> pd.DataFrame:
        """Vertex population table with the persisted column names."""
        rows = [(p.id, p.population_proxy) for p in self._patches.values()]
        return pd.DataFrame(rows, columns=POPULATION_COLUMNS).astype(
            {"patch_id": "int64", "population_proxy": "float64"}
        )

    def unconsidered_frame(self) -> pd.DataFrame:
        """Skipped patches with their reasons."""
        rows = [(s.patch_id, s.reason) for s in self._skipped]
        return pd.DataFrame(rows, columns=UNCONSIDERED_COLUMNS).astype({"patch_id": "int64"})

    def finalize(self, config: RunConfig) -> RunSummary:
        """
        Write every output table and the run log.

        Existing files are overwritten. A single warning is logged when any
        edge distance has been replaced by the epsilon.

        Parameters
        ----------
        config : RunConfig
            Configuration of the run; gives the folder, prefix and log entries.

        Returns
        -------
        RunSummary
            Counts of the run and the written paths.
        """
        paths = output_paths(config.folder, config.prefix)
        tables = {
            "edges": self.edges_frame(),
            "coordinates": self.coordinates_frame(),
            "population": self.population_frame(),
            "unconsidered": self.unconsidered_frame(),
        }
        for key, frame in tables.items():
            frame.to_csv(paths[key], sep=SEPARATOR, index=False)
        write_run_log(config, paths["log"])

        summary = self.summary(paths)
        logger.info(
            "Run %s finished: %d patches considered, %d skipped, %d edges written to %s",
            config.prefix,
            summary.patches_considered,
            summary.patches_skipped,
            summary.edges,
            config.folder,
        )
        if summary.substitutions:
            logger.warning(
                "%d edges had a zero or negative distance and were set to a small epsilon",
                summary.substitutions,
            )
        return summary

    # -- exports --------------------------------------------------------------

    def to_gdf(self, crs: str | CRS | None = None) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
        """
        Export the network as node and edge GeoDataFrames.

        Parameters
        ----------
        crs : str or pyproj.CRS, optional
            Coordinate reference system of the patch coordinates.

        Returns
        -------
        tuple[geopandas.GeoDataFrame, geopandas.GeoDataFrame]
            Centroid points indexed by ``patch_id``, and centroid-to-centroid
            lines indexed by ``(from_patch, to_patch)``.
        """
        edges = self.edges_frame().assign(substituted=[e.substituted for e in self._edges.values()])
        return _network_gdfs(self.coordinates_frame(), self.population_frame(), edges, crs)

    def to_nx(self, crs: str | CRS | None = None) -> nx.DiGraph:
        """
        Export the network as a directed NetworkX graph.

        Nodes carry ``pos`` and ``population_proxy``; edges carry ``weight``
        (the representative distance) and ``substituted``.
        """
        graph = nx.DiGraph(crs=crs)
        for patch in self._patches.values():
            graph.add_node(patch.id, pos=(patch.x, patch.y), population_proxy=patch.population_proxy)
        for edge in self._edges.values():
            graph.add_edge(edge.source, edge.target, weight=edge.distance, substituted=edge.substituted)
        logger.info(
            "Created graph with %d nodes and %d edges",
            graph.number_of_nodes(),
            graph.number_of_edges(),
        )
        return graph


# =============================================================================
# READERS AND GEODATAFRAME ASSEMBLY
# =============================================================================


def _network_gdfs(
    coordinates: pd.DataFrame,
    population: pd.DataFrame,
    edges: pd.DataFrame,
    crs: str | CRS | None,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """Build node and edge GeoDataFrames from the persisted tables."""
    nodes = coordinates.merge(population, on="patch_id", how="left")
    points = gpd.points_from_xy(
        nodes["cetroid_x_coordinate"], nodes["cetroid_y_coordinate"]
    )
    nodes_gdf = gpd.GeoDataFrame(
        nodes.drop(columns=["cetroid_x_coordinate", "cetroid_y_coordinate"]),
        geometry=points,
        crs=crs,
    ).set_index("patch_id", drop=False)

    # Map ids -> centroids
    lookup = dict(zip(nodes_gdf["patch_id"], nodes_gdf.geometry, strict=True))
    src_pts = edges["from_patch"].map(lookup)
    tgt_pts = edges["to_patch"].map(lookup)
    missing = src_pts.isna() | tgt_pts.isna()
    if missing.any():
        logger.warning("Dropping %d edges with unknown patch ids", int(missing.sum()))
        edges = edges.loc[~missing]
        src_pts = src_pts.loc[~missing]
        tgt_pts = tgt_pts.loc[~missing]

    lines = [LineString([a, b]) for a, b in zip(src_pts, tgt_pts, strict=True)]
    edges_gdf = gpd.GeoDataFrame(
        edges.reset_index(drop=True),
        geometry=gpd.GeoSeries(lines, crs=crs),
        crs=crs,
    )
    edges_gdf.index = pd.MultiIndex.from_arrays(
        [edges_gdf["from_patch"].to_numpy(), edges_gdf["to_patch"].to_numpy()],
        names=["from_patch", "to_patch"],
    )
    edges_gdf = edges_gdf.drop(columns=["from_patch", "to_patch"])
    return nodes_gdf, edges_gdf


def _read_table(path: Path, columns: list[str]) -> pd.DataFrame:
    """Read one persisted table and check its header."""
    if not path.is_file():
        msg = f"Network table not found: {path}"
        raise ValidationError(msg)
    frame = pd.read_csv(path, sep=SEPARATOR)
    if list(frame.columns) != columns:
        msg = f"Unexpected header in {path}: {list(frame.columns)}, expected {columns}"
        raise ValidationError(msg)
    return frame


def read_network(
    folder: str | Path,
    prefix: str,
    crs: str | CRS | None = None,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """
    Read the persisted tables of a run into GeoDataFrames.

    Parameters
    ----------
    folder : str or pathlib.Path
        Output folder of the run.
    prefix : str
        Prefix of the run.
    crs : str or pyproj.CRS, optional
        Coordinate reference system of the patch coordinates.

    Returns
    -------
    tuple[geopandas.GeoDataFrame, geopandas.GeoDataFrame]
        Nodes indexed by ``patch_id`` and edges indexed by
        ``(from_patch, to_patch)``, as returned by
        :meth:`EdgeListAccumulator.to_gdf`.

    Raises
    ------
    ValidationError
        If a table is missing or its header does not match.

    Examples
    --------
    >>> nodes, edges = read_network("results", "run", crs="EPSG:32632")
    >>> edges.loc[(1, 2), "cost-distance"]
    80.0
    """
    paths = output_paths(folder, prefix)
    coordinates = _read_table(paths["coordinates"], COORDINATE_COLUMNS)
    population = _read_table(paths["population"], POPULATION_COLUMNS)
    edges = _read_table(paths["edges"], EDGE_COLUMNS)
    return _network_gdfs(coordinates, population, edges, crs)
