"""
Base Module for Patch Connectivity Networks.

This module provides the foundational record types shared by every stage of a
connectivity-distance run: patches read from the vector source, raw distance
samples returned by the GIS backend, and the directed edges that make up the
persisted network. It also defines the error taxonomy used across the package.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
from dataclasses import dataclass
from dataclasses import field

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = [
    "DISTANCE_MODES",
    "ZERO_DISTANCE_EPSILON",
    "BackendError",
    "DistanceSample",
    "Edge",
    "Patch",
    "Patch2GraphError",
    "PatchSet",
    "SkippedPatch",
    "ValidationError",
]

# Replacement for non-positive representative distances
ZERO_DISTANCE_EPSILON = 1e-8

# "cost" accumulates over a friction raster, "straight" is euclidean or geodesic
DISTANCE_MODES = ("cost", "straight")


# =============================================================================
# ERRORS
# =============================================================================


class Patch2GraphError(Exception):
    """Base class for all errors raised by patch2graph."""


class ValidationError(Patch2GraphError, ValueError):
    """
    Raised when required input is missing or invalid.

    A validation error is fatal: it aborts the run before any output file is
    written.
    """


class BackendError(Patch2GraphError, RuntimeError):
    """
    Raised when the external GIS backend fails or returns no usable result.

    Parameters
    ----------
    message : str
        Human readable description of the failure.
    command : list[str], optional
        The command line that failed.
    returncode : int, optional
        Exit status of the failed command.
    stderr : str, optional
        Captured standard error of the failed command.
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


# =============================================================================
# RECORDS
# =============================================================================


@dataclass(frozen=True)
class Patch:
    """
    A discrete spatial unit acting as a node of the connectivity network.

    Parameters
    ----------
    id : int
        Unique patch identifier (the category value of the vector feature).
    population_proxy : float
        Strictly positive attribute used as a population proxy.
    x, y : float
        Centroid coordinates.
    bounds : tuple[float, float, float, float], optional
        Bounding box ``(minx, miny, maxx, maxy)`` of the patch geometry.
    """

    id: int
    population_proxy: float
    x: float
    y: float
    bounds: tuple[float, float, float, float] | None = None


@dataclass(frozen=True)
class SkippedPatch:
    """A patch left out of the run, with the reason it was left out."""

    patch_id: int
    reason: str


@dataclass
class PatchSet:
    """Patches to process, plus the ones excluded while enumerating."""

    patches: list[Patch] = field(default_factory=list)
    skipped: list[SkippedPatch] = field(default_factory=list)

    @property
    def ids(self) -> list[int]:
        """Identifiers of the patches to process, in processing order."""
        return [patch.id for patch in self.patches]


@dataclass(frozen=True)
class DistanceSample:
    """One boundary-cell distance observation from a source patch."""

    source: int
    target: int
    distance: float


@dataclass(frozen=True)
class Edge:
    """
    One directed connectivity relation between two patches.

    ``substituted`` is True when the raw representative distance was zero or
    negative and has been replaced by :data:`ZERO_DISTANCE_EPSILON`.
    """

    source: int
    target: int
    distance: float
    substituted: bool = False

    @property
    def key(self) -> tuple[int, int]:
        """Directed ``(source, target)`` pair."""
        return (self.source, self.target)
