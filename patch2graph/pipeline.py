"""
Connectivity-Distance Pipeline Module.

This module wires the patch enumerator, the distance sampler, the edge
selector and the edge-list accumulator into one run. Input problems are
detected before anything is written; backend failures while processing a
single patch only skip that patch.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
from pathlib import Path
from typing import TYPE_CHECKING

# Local imports
from .backend import GrassBackend
from .base import BackendError
from .base import ValidationError
from .distance import DistanceSampler
from .distance import select_edges
from .network import EdgeListAccumulator
from .patches import drop_unrasterized
from .patches import enumerate_patches

if TYPE_CHECKING:
    from .backend import GISBackend
    from .config import RunConfig
    from .network import RunSummary

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = ["connectivity_distance"]


def connectivity_distance(config: RunConfig, backend: GISBackend | None = None) -> RunSummary:
    """
    Build the patch connectivity network of one run.

    For every patch of ``config.input`` the distance to the boundary cells of
    all other patches within ``config.cutoff`` is computed by the backend, and
    the ``config.border_depth``-th closest boundary cell of each neighbour
    gives the distance of one directed edge. Edges and vertex tables are
    written to ``config.folder``.

    Parameters
    ----------
    config : RunConfig
        Run parameters.
    backend : GISBackend, optional
        Backend to use. Defaults to a :class:`~patch2graph.backend.GrassBackend`
        running in the current GRASS session with ``config.timeout``.

    Returns
    -------
    RunSummary
        Counts of the run and the written files.

    Raises
    ------
    ValidationError
        If a parameter, the input layer, the attribute column, the friction
        raster or a population proxy value is invalid. Nothing is written.
    BackendError
        If the backend fails before the per-patch loop (region query or
        rasterization of the patches).

    See Also
    --------
    patch2graph.network.read_network : Read the written tables back.

    Examples
    --------
    >>> config = RunConfig(input="patches", pop_proxy="area", prefix="run",
    ...                    folder="results", cutoff=5000, costs="friction")
    >>> summary = connectivity_distance(config, GrassBackend("/data/grassdata/utm32/work"))
    >>> summary.edges
    412
    """
    config.validate()
    if backend is None:
        backend = GrassBackend(timeout=config.timeout)

    _validate_inputs(config, backend)
    patch_set = enumerate_patches(backend, config.input, config.pop_proxy)
    _prepare_folder(config.folder)

    geographic = backend.is_geographic()
    full_region = backend.current_region()
    if geographic and not config.straight_line:
        logger.info("Geographic location: the cutoff window is expanded from metres to degrees")

    patches_raster = f"{config.prefix}_patches"
    border_raster = f"{config.prefix}_patch_borders"
    accumulator = EdgeListAccumulator()
    try:
        backend.rasterize(config.input, patches_raster)
        backend.border_cells(patches_raster, border_raster)
        patch_set = drop_unrasterized(patch_set, backend.raster_values(patches_raster))

        for skipped in patch_set.skipped:
            accumulator.record_skip(skipped.patch_id, skipped.reason)
        for patch in patch_set.patches:
            accumulator.add_patch(patch)

        sampler = DistanceSampler(
            backend,
            config,
            patches_raster,
            border_raster,
            full_region,
            geographic=geographic,
            vertices=patch_set.ids,
        )
        total = len(patch_set.patches)
        for index, patch in enumerate(patch_set.patches, start=1):
            logger.info("Processing patch %d (%d of %d)", patch.id, index, total)
            try:
                edges = select_edges(sampler.sample(patch), config.border_depth)
            except BackendError as exc:
                reason = " ".join(str(exc).split())
                logger.warning("Skipping patch %d: %s", patch.id, reason)
                accumulator.record_skip(patch.id, reason)
                continue
            accumulator.add_edges(edges)
            logger.debug("Patch %d: %d neighbours within the cutoff", patch.id, len(edges))
    finally:
        if not config.keep_maps:
            _remove_scratch(backend, [patches_raster, border_raster])

    return accumulator.finalize(config)


def _validate_inputs(config: RunConfig, backend: GISBackend) -> None:
    """Check that the input layer, its attribute column and the friction raster exist."""
    try:
        columns = backend.vector_columns(config.input)
    except BackendError as exc:
        msg = f"Vector layer '{config.input}' not found or unreadable: {exc}"
        raise ValidationError(msg) from exc

    if config.pop_proxy not in columns:
        msg = (
            f"Attribute column '{config.pop_proxy}' not found in '{config.input}'. "
            f"Available columns: {', '.join(columns)}"
        )
        raise ValidationError(msg)

    if not config.straight_line and not backend.raster_exists(config.costs):
        msg = f"Friction raster '{config.costs}' not found"
        raise ValidationError(msg)


def _prepare_folder(folder: Path) -> None:
    """Create the output folder if needed."""
    try:
        Path(folder).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"Cannot create output folder {folder}: {exc}"
        raise ValidationError(msg) from exc


def _remove_scratch(backend: GISBackend, names: list[str]) -> None:
    """Remove run-level scratch rasters, logging failures."""
    try:
        backend.remove_rasters(names)
    except BackendError as exc:
        logger.warning("Could not remove scratch maps %s: %s", ", ".join(names), exc)
