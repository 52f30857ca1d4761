"""
Distance Sampling and Edge Selection Module.

This module holds the core of a connectivity-distance run. For every source
patch, :class:`DistanceSampler` asks the GIS backend for a distance field
seeded on the patch and reads the distance of every boundary cell of every
other patch within the cutoff. :func:`select_edges` then reduces the samples
of each neighbour to one representative distance, the ``border_depth``-th
closest boundary cell, and emits one directed :class:`~patch2graph.base.Edge`
per neighbour.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

# Third-party imports
import numpy as np
import pandas as pd

# Local imports
from .base import ZERO_DISTANCE_EPSILON
from .base import BackendError
from .base import DistanceSample
from .base import Edge
from .region import cutoff_window

if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Iterator

    from .backend import GISBackend
    from .base import Patch
    from .config import RunConfig
    from .region import Region

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = [
    "DistanceSampler",
    "PatchContext",
    "representative_rank",
    "select_edges",
]


# =============================================================================
# DISTANCE SAMPLER
# =============================================================================


@dataclass(frozen=True)
class PatchContext:
    """
    Scratch state of one source patch.

    Every name is derived from the run prefix and the patch id, so processing
    the same patch again overwrites the maps of the previous attempt.

    Parameters
    ----------
    patch : Patch
        The source patch.
    region : Region or None
        Masked processing window (cost mode), or None for the full region.
    seed : str
        Raster holding the source patch cells only.
    distance : str
        Raster holding the distance field from the source patch.
    """

    patch: Patch
    region: Region | None
    seed: str
    distance: str


class DistanceSampler:
    """
    Compute boundary-to-boundary distances from one patch to its neighbours.

    Parameters
    ----------
    backend : GISBackend
        Backend running the distance computations.
    config : RunConfig
        Validated run configuration.
    patches_raster : str
        Raster of all patches, cell values are patch ids.
    border_raster : str
        Raster of the boundary cells of all patches, cell values are patch ids.
    full_region : Region
        The run's processing window. Cost-mode windows are aligned to it.
    geographic : bool, default False
        Whether the location uses latitude/longitude coordinates. Straight-line
        distances are then geodesic, and cost-mode windows expand the cutoff
        from metres to degrees.
    vertices : Iterable[int], optional
        Ids of the patches forming the network. Cells of any other raster
        value are ignored. When omitted, every raster value is accepted.

    Examples
    --------
    >>> sampler = DistanceSampler(backend, config, "run_patches", "run_patch_borders", region)
    >>> samples = list(sampler.sample(patch))
    """

    def __init__(
        self,
        backend: GISBackend,
        config: RunConfig,
        patches_raster: str,
        border_raster: str,
        full_region: Region,
        geographic: bool = False,
        vertices: Iterable[int] | None = None,
    ) -> None:
        self.backend = backend
        self.config = config
        self.patches_raster = patches_raster
        self.border_raster = border_raster
        self.full_region = full_region
        self.geographic = geographic
        self.vertices = frozenset(vertices) if vertices is not None else None

    @property
    def geodesic(self) -> bool:
        """Whether straight-line distances use the geodesic metric."""
        return self.geographic and self.config.straight_line

    def context(self, patch: Patch) -> PatchContext:
        """Derive the window and scratch map names for ``patch``."""
        prefix = self.config.prefix
        region = None
        if not self.config.straight_line:
            region = cutoff_window(
                patch.bounds,
                self.config.cutoff,
                self.full_region,
                geographic=self.geographic,
                name=f"{prefix}_region_{patch.id}",
            )
        return PatchContext(
            patch=patch,
            region=region,
            seed=f"{prefix}_seed_{patch.id}",
            distance=f"{prefix}_{self.config.distance_mode}_{patch.id}",
        )

    def sample(self, patch: Patch) -> Iterator[DistanceSample]:
        """
        Sample distances from ``patch`` to the boundary cells of other patches.

        All backend work happens before this method returns; the scratch maps
        are removed even if a backend call fails. The returned iterator is
        consumed once and yields only neighbours within the cutoff.

        Parameters
        ----------
        patch : Patch
            Source patch.

        Returns
        -------
        Iterator[DistanceSample]
            One sample per boundary cell of a neighbouring patch.

        Raises
        ------
        BackendError
            If any backend call for this patch fails.
        """
        ctx = self.context(patch)
        logger.debug("Computing %s distances from patch %d", self.config.distance_mode, patch.id)
        try:
            if ctx.region is not None:
                self.backend.set_region(ctx.region)
            self.backend.extract_value(self.patches_raster, patch.id, ctx.seed, region=ctx.region)
            self.backend.distance_field(
                ctx.seed,
                ctx.distance,
                mode=self.config.distance_mode,
                cutoff=self.config.cutoff,
                costs=self.config.costs,
                geodesic=self.geodesic,
                region=ctx.region,
            )
            cells = self.backend.paired_values([ctx.distance, self.border_raster], region=ctx.region)
        finally:
            self.cleanup(ctx)

        return self._iter_samples(patch.id, cells, ctx)

    def _iter_samples(
        self,
        source: int,
        cells: pd.DataFrame,
        ctx: PatchContext,
    ) -> Iterator[DistanceSample]:
        """Turn the paired cell values into filtered samples."""
        cutoff = self.config.cutoff
        distances = cells[ctx.distance].to_numpy(dtype=float)
        targets = cells[self.border_raster].to_numpy(dtype=float)
        unknown: set[int] = set()
        for distance, target in zip(distances, targets, strict=True):
            if not (math.isfinite(distance) and math.isfinite(target)):
                continue
            if int(target) == source or distance > cutoff:
                continue
            if self.vertices is not None and int(target) not in self.vertices:
                unknown.add(int(target))
                continue
            yield DistanceSample(source, int(target), float(distance))
        if unknown:
            logger.debug(
                "Patch %d: ignoring cells of %d raster values that are not patches: %s",
                source,
                len(unknown),
                sorted(unknown),
            )

    def cleanup(self, ctx: PatchContext) -> None:
        """
        Remove the scratch maps and the region of one patch.

        The distance raster is kept when ``keep_maps`` is set. Failures are
        logged and do not propagate.
        """
        names = [ctx.seed]
        if not self.config.keep_maps:
            names.append(ctx.distance)
        try:
            self.backend.remove_rasters(names)
            if ctx.region is not None and ctx.region.name is not None:
                self.backend.remove_region(ctx.region.name)
        except BackendError as exc:
            logger.warning("Could not remove scratch maps of patch %d: %s", ctx.patch.id, exc)


# =============================================================================
# EDGE SELECTOR
# =============================================================================


def representative_rank(border_depth: int, group_size: int) -> int:
    """
    Return the zero-based rank of the representative distance in a group.

    Parameters
    ----------
    border_depth : int
        Requested border-sample depth N.
    group_size : int
        Number of samples G for one neighbour.

    Returns
    -------
    int
        ``0`` if N <= 1, otherwise ``min(N, G) - 1``.

    Examples
    --------
    >>> representative_rank(2, 3)
    1
    >>> representative_rank(5, 3)
    2
    """
    if border_depth <= 1:
        return 0
    return min(border_depth, group_size) - 1


def select_edges(
    samples: Iterable[DistanceSample],
    border_depth: int,
    cutoff: float | None = None,
) -> list[Edge]:
    """
    Pick one representative distance per neighbour and build the edges.

    Samples are grouped by ``(source, target)``. Each group is sorted by
    distance, ties keeping the order in which the samples arrived, and the
    sample at :func:`representative_rank` is selected. A selected distance of
    zero or less is replaced by :data:`~patch2graph.base.ZERO_DISTANCE_EPSILON`
    and the edge is flagged as substituted.

    Parameters
    ----------
    samples : Iterable[DistanceSample]
        Distance samples, usually those of a single source patch.
    border_depth : int
        Border-sample depth N (>= 1).
    cutoff : float, optional
        Samples farther than this are ignored before grouping.

    Returns
    -------
    list[Edge]
        One edge per neighbour with at least one sample, ordered by
        ``(source, target)``.

    Examples
    --------
    >>> samples = [DistanceSample(1, 2, d) for d in (120.0, 50.0, 80.0)]
    >>> samples.append(DistanceSample(1, 3, 5.0))
    >>> [(e.source, e.target, e.distance) for e in select_edges(samples, 2)]
    [(1, 2, 80.0), (1, 3, 5.0)]
    """
    frame = pd.DataFrame(
        [(s.source, s.target, s.distance) for s in samples],
        columns=["source", "target", "distance"],
    )
    frame = frame[np.isfinite(frame["distance"].astype(float))]
    if cutoff is not None:
        frame = frame[frame["distance"] <= cutoff]
    if frame.empty:
        return []

    # Stable ordering: ties on distance keep arrival order
    frame = frame.assign(order=np.arange(len(frame))).sort_values(
        ["source", "target", "distance", "order"], kind="mergesort"
    )
    groups = frame.groupby(["source", "target"], sort=False)
    size = groups["distance"].transform("size")
    wanted = np.minimum(max(border_depth, 1), size) - 1
    selected = frame[groups.cumcount() == wanted]

    substituted = selected["distance"] <= 0
    distance = selected["distance"].where(~substituted, ZERO_DISTANCE_EPSILON)

    return [
        Edge(int(src), int(dst), float(dist), bool(flag))
        for src, dst, dist, flag in zip(
            selected["source"], selected["target"], distance, substituted, strict=True
        )
    ]
