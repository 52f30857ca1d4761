"""Core fixtures for patch2graph testing."""

from pathlib import Path

import pandas as pd
import pytest

from patch2graph.config import RunConfig
from tests.helpers import FakeBackend
from tests.helpers import make_features


@pytest.fixture
def patch_features() -> pd.DataFrame:
    """Three patches on a line, ten map units apart."""
    return make_features(
        [
            (1, 4.0, 10.5, 50.5),
            (2, "2.5", 20.5, 50.5),
            (3, 1, 30.5, 50.5),
        ]
    )


@pytest.fixture
def patch_samples() -> dict[int, list[tuple[int, float]]]:
    """Boundary-cell distances per source patch, including the source itself."""
    return {
        1: [(1, 0.0), (2, 120.0), (2, 50.0), (2, 80.0), (3, 5.0)],
        2: [(1, 60.0), (3, 0.0), (3, 30.0)],
        3: [(1, 2000.0), (2, 40.0)],
    }


@pytest.fixture
def fake_backend(
    patch_features: pd.DataFrame,
    patch_samples: dict[int, list[tuple[int, float]]],
) -> FakeBackend:
    """Fake backend holding the three-patch layer and its distance samples."""
    return FakeBackend(patch_features, patch_samples)


@pytest.fixture
def run_config(tmp_path: Path) -> RunConfig:
    """Cost-mode configuration writing into a temporary folder."""
    return RunConfig(
        input="patches",
        pop_proxy="proxy",
        prefix="run",
        folder=tmp_path / "out",
        cutoff=1000.0,
        border_depth=2,
        costs="friction",
    )
