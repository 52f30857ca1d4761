"""Command-line entrypoint for patch2graph."""

# Future annotations for type hints
from __future__ import annotations

# Standard library imports
import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path

# Local imports
from .backend import GrassBackend
from .base import DISTANCE_MODES
from .base import BackendError
from .base import ValidationError
from .config import RunConfig
from .config import read_run_log
from .pipeline import connectivity_distance

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Exit statuses
EXIT_OK = 0
EXIT_BACKEND = 1
EXIT_VALIDATION = 2


def _package_version() -> str:
    try:
        return metadata.version("patch2graph")
    except metadata.PackageNotFoundError:
        return "0.1.0"


def _configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patch2graph",
        description=(
            "Compute cost or straight-line distances between habitat patches in a "
            "GRASS GIS location and write them as a directed edge list with vertex "
            "tables for graph analysis."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"patch2graph {_package_version()}")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default="INFO",
        help="Python logging level.",
    )
    parser.add_argument(
        "--from-log",
        type=Path,
        default=None,
        help="Run log of an earlier run to take the parameters from. Options given "
        "on the command line take precedence.",
    )

    inputs = parser.add_argument_group("inputs")
    inputs.add_argument("--input", default=None, help="Vector layer with the patch areas.")
    inputs.add_argument(
        "--pop-proxy",
        default=None,
        help="Attribute column with a population proxy (> 0) for every patch.",
    )
    inputs.add_argument(
        "--costs",
        default=None,
        help="Friction raster for cost-weighted distances.",
    )

    distances = parser.add_argument_group("distances")
    distances.add_argument(
        "--cutoff",
        type=float,
        default=None,
        help="Maximum distance (map units, metres in lat/lon locations, or cost units).",
    )
    distances.add_argument(
        "--border-depth",
        type=int,
        default=None,
        help="Use the N-th closest boundary cell of each neighbour as edge distance [1].",
    )
    mode = distances.add_mutually_exclusive_group()
    mode.add_argument(
        "--distance-mode",
        choices=DISTANCE_MODES,
        default=None,
        help="Cost-weighted or straight-line distances [cost].",
    )
    mode.add_argument(
        "--straight-line",
        dest="distance_mode",
        action="store_const",
        const="straight",
        help="Shorthand for --distance-mode straight.",
    )

    outputs = parser.add_argument_group("outputs")
    outputs.add_argument("--prefix", default=None, help="Prefix for output files and scratch maps.")
    outputs.add_argument("--folder", type=Path, default=None, help="Output folder.")
    outputs.add_argument(
        "--keep-maps",
        action="store_true",
        default=None,
        help="Keep the per-patch distance rasters and the patch rasters.",
    )

    grass = parser.add_argument_group("GRASS GIS")
    grass.add_argument(
        "--mapset",
        type=Path,
        default=None,
        help="Path to the GRASS mapset to work in. Without it an active GRASS session is used.",
    )
    grass.add_argument(
        "--grass-executable",
        default="grass",
        help="GRASS launcher used with --mapset.",
    )
    grass.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Timeout in seconds for each GRASS module call.",
    )
    return parser


def _config_from_args(args: argparse.Namespace) -> RunConfig:
    """Resolve the run configuration from the options and an optional run log."""
    options = {
        "input": args.input,
        "pop_proxy": args.pop_proxy,
        "prefix": args.prefix,
        "folder": args.folder,
        "cutoff": args.cutoff,
        "border_depth": args.border_depth,
        "distance_mode": args.distance_mode,
        "costs": args.costs,
        "keep_maps": args.keep_maps,
        "timeout": args.timeout,
    }
    if args.from_log is not None:
        return read_run_log(args.from_log).updated(**options)

    required = ("input", "pop_proxy", "prefix", "folder", "cutoff")
    missing = ["--" + key.replace("_", "-") for key in required if options[key] is None]
    if missing:
        msg = f"Missing required options: {', '.join(missing)}"
        raise ValidationError(msg)
    return RunConfig(**{key: value for key, value in options.items() if value is not None})


def main(argv: list[str] | None = None) -> int:
    """
    Run the command line interface.

    Returns
    -------
    int
        ``0`` on success (also when patches were skipped), ``2`` on invalid
        input and ``1`` when GRASS GIS fails outside the per-patch loop.
    """
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    try:
        config = _config_from_args(args).validate()
        backend = GrassBackend(args.mapset, executable=args.grass_executable, timeout=config.timeout)
        summary = connectivity_distance(config, backend)
    except ValidationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_VALIDATION
    except BackendError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if exc.command:
            logger.debug("Failed command: %s", " ".join(exc.command))
        return EXIT_BACKEND
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130

    print(
        f"{summary.patches_considered} patches considered, {summary.patches_skipped} skipped, "
        f"{summary.edges} edges, {summary.substitutions} zero-distance substitutions"
    )
    print(f"Edge list: {summary.outputs['edges']}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
