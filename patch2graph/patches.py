"""
Patch Enumeration Module.

This module turns the feature table of a vector patch layer into validated
:class:`~patch2graph.base.Patch` records. Population proxies are checked for
the whole layer up front, so a single bad value aborts the run before any map
or file is produced. Patches that cannot take part in the distance analysis
(no centroid, lost during rasterization) are set aside with a reason instead.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
from typing import TYPE_CHECKING

# Third-party imports
import numpy as np
import pandas as pd

# Local imports
from .base import BackendError
from .base import Patch
from .base import PatchSet
from .base import SkippedPatch
from .base import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .backend import GISBackend

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = ["drop_unrasterized", "enumerate_patches", "patches_from_frame"]

# Number of offending ids quoted in validation messages
_MAX_QUOTED_IDS = 10


def _quote_ids(ids: Iterable[object]) -> str:
    """Format a short list of ids for an error message."""
    ids = list(ids)
    shown = ", ".join(map(str, ids[:_MAX_QUOTED_IDS]))
    if len(ids) > _MAX_QUOTED_IDS:
        shown += f", ... ({len(ids)} in total)"
    return shown


def patches_from_frame(features: pd.DataFrame, pop_proxy: str = "value") -> PatchSet:
    """
    Validate a feature table and build the patch set.

    Parameters
    ----------
    features : pandas.DataFrame
        Table with the columns listed in
        :data:`~patch2graph.backend.FEATURE_COLUMNS`.
    pop_proxy : str, default "value"
        Name of the attribute, used in error messages only.

    Returns
    -------
    PatchSet
        Patches ordered by id, and the patches without a centroid.

    Raises
    ------
    ValidationError
        If the table is empty, an id is not an integer or is repeated, or any
        population proxy is absent, non-numeric, non-finite or not positive.

    Examples
    --------
    >>> features = pd.DataFrame(
    ...     {"patch_id": [1, 2], "value": ["3.5", "1"], "x": [0.0, 10.0], "y": [0.0, 0.0],
    ...      "minx": [-1.0, 9.0], "miny": [-1.0, -1.0], "maxx": [1.0, 11.0], "maxy": [1.0, 1.0]}
    ... )
    >>> [p.population_proxy for p in patches_from_frame(features).patches]
    [3.5, 1.0]
    """
    if features.empty:
        msg = "The patch layer holds no features"
        raise ValidationError(msg)

    ids = pd.to_numeric(features["patch_id"], errors="coerce")
    bad_ids = features.loc[ids.isna() | (ids % 1 != 0), "patch_id"]
    if not bad_ids.empty:
        msg = f"Patch ids must be integers, got: {_quote_ids(bad_ids)}"
        raise ValidationError(msg)
    ids = ids.astype(np.int64)

    duplicated = ids[ids.duplicated()]
    if not duplicated.empty:
        msg = f"Patch ids must be unique, repeated: {_quote_ids(sorted(set(duplicated)))}"
        raise ValidationError(msg)

    proxy = pd.to_numeric(features["value"], errors="coerce")
    invalid = proxy.isna() | ~np.isfinite(proxy.fillna(0.0)) | (proxy <= 0)
    if invalid.any():
        msg = (
            f"Population proxy '{pop_proxy}' must be a positive number for every patch; "
            f"absent, non-numeric or non-positive values for patches: "
            f"{_quote_ids(sorted(ids[invalid]))}"
        )
        raise ValidationError(msg)

    table = features.assign(patch_id=ids, value=proxy.astype(float)).sort_values("patch_id")

    patch_set = PatchSet()
    for row in table.itertuples(index=False):
        if not (np.isfinite(row.x) and np.isfinite(row.y)):
            patch_set.skipped.append(SkippedPatch(int(row.patch_id), "no centroid"))
            continue
        box = (row.minx, row.miny, row.maxx, row.maxy)
        bounds = tuple(float(v) for v in box) if np.isfinite(box).all() else None
        patch_set.patches.append(
            Patch(
                id=int(row.patch_id),
                population_proxy=float(row.value),
                x=float(row.x),
                y=float(row.y),
                bounds=bounds,
            )
        )

    if patch_set.skipped:
        logger.warning(
            "%d patches have no centroid and are excluded: %s",
            len(patch_set.skipped),
            _quote_ids(s.patch_id for s in patch_set.skipped),
        )
    return patch_set


def enumerate_patches(backend: GISBackend, layer: str, pop_proxy: str) -> PatchSet:
    """
    List and validate the patches of a vector layer.

    Parameters
    ----------
    backend : GISBackend
        Backend holding the layer.
    layer : str
        Vector layer with one area per patch.
    pop_proxy : str
        Attribute column holding the population proxy.

    Returns
    -------
    PatchSet
        Patches ordered by id, plus the excluded ones.

    Raises
    ------
    ValidationError
        If the layer cannot be read or any population proxy is invalid.
    """
    try:
        features = backend.list_features(layer, pop_proxy)
    except BackendError as exc:
        msg = f"Could not read patches from vector layer '{layer}': {exc}"
        raise ValidationError(msg) from exc

    patch_set = patches_from_frame(features, pop_proxy)
    logger.info("Found %d patches in %s", len(patch_set.patches), layer)
    return patch_set


def drop_unrasterized(patch_set: PatchSet, rasterized: Iterable[int]) -> PatchSet:
    """
    Exclude patches missing from the rasterized patch map.

    Small or degenerate polygons may not cover the centre of any cell and then
    vanish from the raster.

    Parameters
    ----------
    patch_set : PatchSet
        Patches to check.
    rasterized : Iterable[int]
        Ids present in the patch raster.

    Returns
    -------
    PatchSet
        A new patch set; the dropped patches are appended to its skipped list.
    """
    present = set(rasterized)
    kept = [p for p in patch_set.patches if p.id in present]
    dropped = [SkippedPatch(p.id, "did not rasterize") for p in patch_set.patches if p.id not in present]
    if dropped:
        logger.warning(
            "%d patches did not rasterize and are excluded: %s",
            len(dropped),
            _quote_ids(s.patch_id for s in dropped),
        )
    return PatchSet(patches=kept, skipped=[*patch_set.skipped, *dropped])
