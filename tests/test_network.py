"""Tests for the edge-list accumulator, persisted tables and graph exports."""

import logging
from pathlib import Path

import geopandas as gpd
import networkx as nx
import pytest
from shapely.geometry import LineString
from shapely.geometry import Point

from patch2graph.base import ZERO_DISTANCE_EPSILON
from patch2graph.base import Edge
from patch2graph.base import Patch
from patch2graph.base import ValidationError
from patch2graph.config import RunConfig
from patch2graph.network import EdgeListAccumulator
from patch2graph.network import output_paths
from patch2graph.network import read_network


@pytest.fixture
def accumulator() -> EdgeListAccumulator:
    """Accumulator with three patches and three edges, one substituted."""
    acc = EdgeListAccumulator()
    for patch in (
        Patch(1, 4.0, 10.5, 50.5),
        Patch(2, 2.5, 20.5, 50.5),
        Patch(3, 1.0, 30.5, 50.5),
    ):
        acc.add_patch(patch)
    acc.add_edges([Edge(1, 2, 80.0), Edge(1, 3, 5.0)])
    acc.add_edges([Edge(2, 3, ZERO_DISTANCE_EPSILON, substituted=True)])
    return acc


def _prepared(config: RunConfig) -> RunConfig:
    config.folder.mkdir(parents=True, exist_ok=True)
    return config


class TestOutputPaths:
    """Tests for output_paths."""

    def test_names(self, tmp_path: Path) -> None:
        """Every output file is named after the prefix."""
        paths = output_paths(tmp_path, "run")
        assert {key: path.name for key, path in paths.items()} == {
            "edges": "run_edges.csv",
            "coordinates": "run_vertices_coordinates.csv",
            "population": "run_vertices_population.csv",
            "unconsidered": "run_unconsidered_patches.csv",
            "log": "run_log.txt",
        }
        assert all(path.parent == tmp_path for path in paths.values())


class TestEdgeListAccumulator:
    """Tests for EdgeListAccumulator."""

    def test_duplicate_edge_rejected(self, accumulator: EdgeListAccumulator) -> None:
        """A (from, to) pair is accepted once."""
        with pytest.raises(ValueError, match="Duplicate"):
            accumulator.add_edges([Edge(1, 2, 99.0)])
        assert len(accumulator) == 3

    def test_duplicate_in_batch_rejected_atomically(self) -> None:
        """A batch with a repeated pair adds nothing."""
        acc = EdgeListAccumulator()
        with pytest.raises(ValueError, match="Duplicate"):
            acc.add_edges([Edge(1, 2, 1.0), Edge(1, 2, 2.0)])
        assert len(acc) == 0

    def test_reverse_direction_is_independent(self, accumulator: EdgeListAccumulator) -> None:
        """B->A is a separate edge from A->B."""
        assert accumulator.add_edges([Edge(2, 1, 60.0)]) == 1
        assert len(accumulator) == 4

    def test_duplicate_patch_rejected(self, accumulator: EdgeListAccumulator) -> None:
        """Vertices are unique."""
        with pytest.raises(ValueError, match="already part"):
            accumulator.add_patch(Patch(1, 1.0, 0.0, 0.0))

    def test_summary_counts(self, accumulator: EdgeListAccumulator) -> None:
        """Patches failing in the loop are skipped, not considered."""
        accumulator.record_skip(3, "r.cost failed")
        accumulator.record_skip(9, "no centroid")
        summary = accumulator.summary()
        assert summary.patches_considered == 2
        assert summary.patches_skipped == 2
        assert summary.edges == 3
        assert summary.substitutions == 1

    def test_finalize_writes_tables(
        self, accumulator: EdgeListAccumulator, run_config: RunConfig
    ) -> None:
        """Every table is written with its header and rows."""
        accumulator.record_skip(9, "did not rasterize")
        summary = accumulator.finalize(_prepared(run_config))

        paths = summary.outputs
        assert paths["edges"].read_text().splitlines() == [
            "from_patch;to_patch;cost-distance",
            "1;2;80.0",
            "1;3;5.0",
            "2;3;1e-08",
        ]
        assert paths["coordinates"].read_text().splitlines() == [
            "patch_id;cetroid_x_coordinate;cetroid_y_coordinate",
            "1;10.5;50.5",
            "2;20.5;50.5",
            "3;30.5;50.5",
        ]
        assert paths["population"].read_text().splitlines() == [
            "patch_id;population_proxy",
            "1;4.0",
            "2;2.5",
            "3;1.0",
        ]
        assert paths["unconsidered"].read_text().splitlines() == [
            "patch_id;reason",
            "9;did not rasterize",
        ]
        assert paths["log"].read_text().startswith("prefix=run\n")

    def test_headers_without_rows(self, run_config: RunConfig) -> None:
        """Empty runs still write every header."""
        summary = EdgeListAccumulator().finalize(_prepared(run_config))
        headers = {key: path.read_text().splitlines() for key, path in summary.outputs.items()}
        assert headers["edges"] == ["from_patch;to_patch;cost-distance"]
        assert headers["coordinates"] == ["patch_id;cetroid_x_coordinate;cetroid_y_coordinate"]
        assert headers["population"] == ["patch_id;population_proxy"]
        assert headers["unconsidered"] == ["patch_id;reason"]

    def test_substitution_warned_once(
        self,
        accumulator: EdgeListAccumulator,
        run_config: RunConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Zero-distance substitutions are reported in a single warning."""
        accumulator.add_edges([Edge(3, 1, ZERO_DISTANCE_EPSILON, substituted=True)])
        with caplog.at_level(logging.WARNING, logger="patch2graph.network"):
            summary = accumulator.finalize(_prepared(run_config))
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "2 edges" in warnings[0].getMessage()
        assert summary.substitutions == 2

    def test_no_warning_without_substitution(
        self, run_config: RunConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Runs without substitution stay quiet."""
        acc = EdgeListAccumulator()
        acc.add_patch(Patch(1, 1.0, 0.0, 0.0))
        with caplog.at_level(logging.WARNING, logger="patch2graph.network"):
            acc.finalize(_prepared(run_config))
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_to_gdf(self, accumulator: EdgeListAccumulator) -> None:
        """Nodes are centroid points, edges are centroid-to-centroid lines."""
        nodes, edges = accumulator.to_gdf(crs="EPSG:32632")
        assert isinstance(nodes, gpd.GeoDataFrame)
        assert list(nodes.index) == [1, 2, 3]
        assert nodes.loc[2, "geometry"].equals(Point(20.5, 50.5))
        assert nodes.crs == "EPSG:32632"

        assert edges.index.names == ["from_patch", "to_patch"]
        assert list(edges.index) == [(1, 2), (1, 3), (2, 3)]
        assert edges.loc[(1, 2), "cost-distance"] == 80.0
        assert edges.loc[(1, 2), "geometry"].equals(LineString([(10.5, 50.5), (20.5, 50.5)]))
        assert bool(edges.loc[(2, 3), "substituted"])
        assert edges.crs == "EPSG:32632"

    def test_to_gdf_empty(self) -> None:
        """An empty network gives empty frames with the expected schema."""
        nodes, edges = EdgeListAccumulator().to_gdf()
        assert nodes.empty
        assert edges.empty
        assert "cost-distance" in edges.columns

    def test_to_nx(self, accumulator: EdgeListAccumulator) -> None:
        """The NetworkX export is directed and carries distances as weights."""
        graph = accumulator.to_nx()
        assert isinstance(graph, nx.DiGraph)
        assert graph.number_of_nodes() == 3
        assert graph.number_of_edges() == 3
        assert graph.nodes[1]["pos"] == (10.5, 50.5)
        assert graph.nodes[2]["population_proxy"] == 2.5
        assert graph.edges[1, 2]["weight"] == 80.0
        assert graph.edges[2, 3]["substituted"] is True
        assert not graph.has_edge(2, 1)


class TestReadNetwork:
    """Tests for read_network."""

    def test_reads_finalized_run(
        self, accumulator: EdgeListAccumulator, run_config: RunConfig
    ) -> None:
        """Written tables read back as the exported GeoDataFrames, without flags."""
        accumulator.finalize(_prepared(run_config))
        nodes, edges = read_network(run_config.folder, run_config.prefix, crs="EPSG:32632")

        assert list(nodes["patch_id"]) == [1, 2, 3]
        assert list(nodes["population_proxy"]) == [4.0, 2.5, 1.0]
        assert list(edges.index) == [(1, 2), (1, 3), (2, 3)]
        assert list(edges["cost-distance"]) == [80.0, 5.0, ZERO_DISTANCE_EPSILON]
        assert "substituted" not in edges.columns

    def test_unknown_patch_edges_dropped(self, run_config: RunConfig) -> None:
        """Edges to patches missing from the vertex table are dropped."""
        acc = EdgeListAccumulator()
        acc.add_patch(Patch(1, 1.0, 0.0, 0.0))
        acc.add_patch(Patch(2, 1.0, 5.0, 0.0))
        acc.add_edges([Edge(1, 2, 5.0), Edge(1, 7, 3.0)])
        acc.finalize(_prepared(run_config))

        _, edges = read_network(run_config.folder, run_config.prefix)
        assert list(edges.index) == [(1, 2)]

    def test_missing_table(self, tmp_path: Path) -> None:
        """Reading a folder without tables fails."""
        with pytest.raises(ValidationError, match="not found"):
            read_network(tmp_path, "run")

    def test_wrong_header(self, accumulator: EdgeListAccumulator, run_config: RunConfig) -> None:
        """Tables with an unexpected header are rejected."""
        summary = accumulator.finalize(_prepared(run_config))
        summary.outputs["edges"].write_text("a;b;c\n1;2;3\n")
        with pytest.raises(ValidationError, match="Unexpected header"):
            read_network(run_config.folder, run_config.prefix)
