"""
patch2graph: Patch connectivity networks from GIS distance computations.

This package builds directed connectivity networks between habitat patches.
Distances between patches (cost-weighted over a friction surface, or straight
line) are computed by an external GIS toolkit, reduced to one representative
boundary-to-boundary distance per patch pair and persisted as an edge list
with vertex tables, ready for graph analysis.

Notes
-----
Main modules include:
- base : Records shared by every stage and the error taxonomy
- config : Run configuration and the run log
- backend : Abstract GIS backend and the GRASS GIS adapter
- patches : Enumerating and validating patches
- distance : Distance sampling and representative edge selection
- network : Edge-list accumulation, persisted tables and graph exports
- pipeline : End-to-end connectivity-distance run
"""

# Standard library imports
import contextlib
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

# Import all public APIs from submodules
from .backend import *  # noqa: F403
from .base import *  # noqa: F403
from .config import *  # noqa: F403
from .distance import *  # noqa: F403
from .network import *  # noqa: F403
from .patches import *  # noqa: F403
from .pipeline import *  # noqa: F403
from .region import *  # noqa: F403

# Package metadata
__author__ = "patch2graph developers"

# Version handling with graceful fallback
with contextlib.suppress(PackageNotFoundError):
    __version__ = version("patch2graph")
