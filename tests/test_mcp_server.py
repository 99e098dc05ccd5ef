"""Tests for the MCP server helpers (the tools themselves are thin wrappers)."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeSource, make_track
from tagtree.library_index import TrackCatalog
from tagtree.mcp_server import _find_track, _parse_json_str, _summarize_tree
from tagtree.service import TagTreeService


@pytest.fixture
def catalog(tmp_path: Path) -> TrackCatalog:
    cat = TrackCatalog(tmp_path / "catalog.jsonl")
    cat.build([
        make_track("Blue Monday", "mood:dark", artist="New Order"),
        make_track("Blue Skies", "mood:happy", artist="Ella"),
    ])
    return cat


class TestFindTrack:
    """Catalog lookups by id or title/artist substring."""

    @pytest.mark.unit
    def test_by_id(self, catalog: TrackCatalog) -> None:
        assert _find_track(catalog, track_id="2").title == "Blue Skies"

    @pytest.mark.unit
    def test_by_title_and_artist(self, catalog: TrackCatalog) -> None:
        assert _find_track(catalog, title="blue").title == "Blue Monday"
        assert _find_track(catalog, title="blue", artist="ella").title == "Blue Skies"

    @pytest.mark.unit
    def test_not_found(self, catalog: TrackCatalog) -> None:
        assert _find_track(catalog, title="red") is None
        assert _find_track(catalog) is None


class TestSummarizeTree:
    """Geometry-free view for MCP clients."""

    @pytest.mark.unit
    def test_summary(self, fast_config) -> None:
        service = TagTreeService(source=FakeSource(), config=fast_config)
        root_id = service.add_node(make_track("Root", "mood:happy"))
        child_id = service.add_node(make_track("Child"), parent_id=root_id, connection_tag="mood:happy")

        summary = _summarize_tree(service.snapshot())

        assert summary["root_id"] == root_id
        assert summary["node_count"] == 2
        assert summary["connection_count"] == 1
        assert summary["depth"] == 1
        child = summary["nodes"][1]
        assert child["id"] == child_id
        assert child["parent_id"] == root_id
        assert child["via"] == "mood:happy"
        assert "position" not in child


class TestParseJsonStr:
    """List arguments passed as JSON strings."""

    @pytest.mark.unit
    def test_parses_json_list(self) -> None:
        assert _parse_json_str('["mood:happy"]') == ["mood:happy"]

    @pytest.mark.unit
    def test_passes_lists_through(self) -> None:
        assert _parse_json_str(["energy:high"]) == ["energy:high"]

    @pytest.mark.unit
    def test_invalid_json_becomes_none(self) -> None:
        assert _parse_json_str("not json") is None
