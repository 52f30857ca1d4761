"""
Run Configuration Module.

This module defines :class:`RunConfig`, the immutable set of parameters for one
connectivity-distance run, together with its validation rules and the plain
``key=value`` run log used to hand the resolved configuration to downstream
processing steps without re-specifying every parameter.
"""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import logging
import math
import re
from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from numbers import Integral
from numbers import Real
from pathlib import Path

# Local imports
from .base import DISTANCE_MODES
from .base import ValidationError

# Module logger configuration
logger = logging.getLogger(__name__)

__all__ = ["RUN_LOG_KEYS", "RunConfig", "read_run_log", "write_run_log"]

# GRASS map names must start with a letter and stay within [A-Za-z0-9_]
_PREFIX_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# Order of the keys written to the run log
RUN_LOG_KEYS = (
    "prefix",
    "input",
    "pop_proxy",
    "costs",
    "cutoff",
    "border_depth",
    "folder",
    "distance_mode",
    "keep_maps",
)


@dataclass(frozen=True)
class RunConfig:
    """
    Parameters for one connectivity-distance run.

    Parameters
    ----------
    input : str
        Name of the vector layer holding the patch polygons.
    pop_proxy : str
        Attribute column with the population proxy of every patch.
    prefix : str
        Prefix for output files and for every scratch map created in the
        GIS database.
    folder : pathlib.Path
        Output folder for the edge list, vertex tables and run log.
    cutoff : float
        Maximum search distance (map units, or accumulated cost in cost mode).
    border_depth : int, default 1
        Rank of the boundary-cell distance used as the edge distance. ``1`` is
        the strict minimum boundary-to-boundary distance.
    distance_mode : {"cost", "straight"}, default "cost"
        Cost-weighted distance over ``costs`` or straight-line distance.
    costs : str, optional
        Friction raster. Required when ``distance_mode`` is ``"cost"``.
    keep_maps : bool, default False
        Keep per-patch distance rasters and the run-level scratch rasters.
    timeout : float, optional
        Timeout in seconds for each external command.
    """

    input: str
    pop_proxy: str
    prefix: str
    folder: Path
    cutoff: float
    border_depth: int = 1
    distance_mode: str = "cost"
    costs: str | None = None
    keep_maps: bool = False
    timeout: float | None = None

    def __post_init__(self) -> None:
        """Coerce the output folder to a :class:`pathlib.Path`."""
        object.__setattr__(self, "folder", Path(self.folder))

    @property
    def straight_line(self) -> bool:
        """Whether the run uses straight-line instead of cost distances."""
        return self.distance_mode == "straight"

    def validate(self) -> RunConfig:
        """
        Check every parameter and return the configuration unchanged.

        Returns
        -------
        RunConfig
            ``self``, to allow chaining.

        Raises
        ------
        ValidationError
            If any parameter is missing or out of range.
        """
        if not self.input:
            msg = "An input vector layer with patches is required"
            raise ValidationError(msg)
        if not self.pop_proxy:
            msg = "A population proxy attribute column is required"
            raise ValidationError(msg)
        if not self.prefix or not _PREFIX_PATTERN.match(self.prefix):
            msg = (
                f"Invalid prefix {self.prefix!r}: it must start with a letter and contain "
                "only letters, digits and underscores"
            )
            raise ValidationError(msg)

        if (
            isinstance(self.cutoff, bool)
            or not isinstance(self.cutoff, Real)
            or not math.isfinite(self.cutoff)
            or self.cutoff <= 0
        ):
            msg = f"cutoff must be a positive number, got {self.cutoff!r}"
            raise ValidationError(msg)
        if (
            isinstance(self.border_depth, bool)
            or not isinstance(self.border_depth, Integral)
            or self.border_depth < 1
        ):
            msg = f"border_depth must be an integer >= 1, got {self.border_depth!r}"
            raise ValidationError(msg)

        if self.distance_mode not in DISTANCE_MODES:
            msg = (
                f"Unknown distance mode: {self.distance_mode!r}. "
                f"Valid choices: {', '.join(DISTANCE_MODES)}"
            )
            raise ValidationError(msg)
        if self.distance_mode == "cost" and not self.costs:
            msg = "A friction raster (costs) is required for cost-weighted distances"
            raise ValidationError(msg)

        if self.timeout is not None and (
            not isinstance(self.timeout, Real) or not self.timeout > 0
        ):
            msg = f"timeout must be positive, got {self.timeout!r}"
            raise ValidationError(msg)
        return self

    def to_log(self) -> dict[str, str]:
        """
        Return the run log entries for this configuration.

        Returns
        -------
        dict[str, str]
            Mapping of run log keys to their string values, in log order.
        """
        values = {
            "prefix": self.prefix,
            "input": self.input,
            "pop_proxy": self.pop_proxy,
            "costs": self.costs or "",
            "cutoff": repr(float(self.cutoff)),
            "border_depth": str(self.border_depth),
            "folder": str(self.folder),
            "distance_mode": self.distance_mode,
            "keep_maps": "1" if self.keep_maps else "0",
        }
        return {key: values[key] for key in RUN_LOG_KEYS}

    @classmethod
    def from_log(cls, entries: dict[str, str]) -> RunConfig:
        """
        Build a configuration from run log entries.

        Parameters
        ----------
        entries : dict[str, str]
            Parsed ``key=value`` pairs. Unknown keys are ignored.

        Returns
        -------
        RunConfig
            The configuration. It is not validated.

        Raises
        ------
        ValidationError
            If a required key is missing or a numeric value cannot be parsed.
        """
        required = ("prefix", "input", "pop_proxy", "folder", "cutoff")
        missing = [key for key in required if key not in entries]
        if missing:
            msg = f"Run log is missing required keys: {missing}"
            raise ValidationError(msg)

        try:
            cutoff = float(entries["cutoff"])
            border_depth = int(entries.get("border_depth", "1"))
        except ValueError as exc:
            msg = f"Run log holds a non-numeric value: {exc}"
            raise ValidationError(msg) from exc

        return cls(
            input=entries["input"],
            pop_proxy=entries["pop_proxy"],
            prefix=entries["prefix"],
            folder=Path(entries["folder"]),
            cutoff=cutoff,
            border_depth=border_depth,
            distance_mode=entries.get("distance_mode", "cost"),
            costs=entries.get("costs") or None,
            keep_maps=entries.get("keep_maps", "0") in {"1", "true", "True"},
        )

    def updated(self, **changes: object) -> RunConfig:
        """Return a copy with ``changes`` applied, ignoring ``None`` values."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            msg = f"Unknown configuration fields: {sorted(unknown)}"
            raise ValidationError(msg)
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def write_run_log(config: RunConfig, path: str | Path) -> Path:
    """
    Write the ``key=value`` run log for ``config``.

    Parameters
    ----------
    config : RunConfig
        Configuration to record.
    path : str or pathlib.Path
        Destination file. Overwritten if it exists.

    Returns
    -------
    pathlib.Path
        The written path.
    """
    path = Path(path)
    lines = [f"{key}={value}" for key, value in config.to_log().items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.debug("Wrote run log to %s", path)
    return path


def read_run_log(path: str | Path) -> RunConfig:
    """
    Read a run log written by :func:`write_run_log`.

    Blank lines and lines starting with ``#`` are skipped.

    Parameters
    ----------
    path : str or pathlib.Path
        Run log file.

    Returns
    -------
    RunConfig
        The recorded configuration.

    Raises
    ------
    ValidationError
        If the file does not exist or holds a malformed line.
    """
    path = Path(path)
    if not path.is_file():
        msg = f"Run log not found: {path}"
        raise ValidationError(msg)

    entries: dict[str, str] = {}
    for lineno, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            msg = f"Malformed run log line {lineno} in {path}: {raw!r}"
            raise ValidationError(msg)
        entries[key.strip()] = value.strip()

    return RunConfig.from_log(entries)
