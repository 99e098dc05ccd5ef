"""Tests for ConnectionRenderer: curve geometry, labels, colors, handles."""

from __future__ import annotations

import pytest

from conftest import make_track
from tagtree.connections import ConnectionRenderer
from tagtree.models import Position
from tagtree.registry import NodeRegistry


@pytest.fixture
def renderer() -> ConnectionRenderer:
    return ConnectionRenderer()


@pytest.fixture
def pair(registry: NodeRegistry):
    root = registry.add_node(make_track("Root"), position=Position(x=0, y=0))
    child = registry.add_node(
        make_track("Child"), parent_id=root.id, connection_tag="mood:happy", position=Position(x=100, y=0)
    )
    return root, child


class TestCurvedPath:
    """Quadratic curve bowed perpendicular to the chord."""

    @pytest.mark.unit
    def test_control_point_and_svg(self, renderer: ConnectionRenderer) -> None:
        path = renderer.curved_path(Position(x=0, y=0), Position(x=100, y=0))
        assert path.control.x == pytest.approx(50)
        assert path.control.y == pytest.approx(15)
        assert path.d == "M 0.00 0.00 Q 50.00 15.00 100.00 0.00"

    @pytest.mark.unit
    def test_midpoint_on_curve(self, renderer: ConnectionRenderer) -> None:
        mid = renderer.curved_path(Position(x=0, y=0), Position(x=100, y=0)).point_at(0.5)
        assert mid.x == pytest.approx(50)
        assert mid.y == pytest.approx(7.5)

    @pytest.mark.unit
    def test_zero_length(self, renderer: ConnectionRenderer) -> None:
        path = renderer.curved_path(Position(x=5, y=5), Position(x=5, y=5))
        assert path.control.x == pytest.approx(5)
        assert path.control.y == pytest.approx(5)


class TestRenderConnection:
    """Rendered connectors live behind opaque handles."""

    @pytest.mark.unit
    def test_render(self, renderer: ConnectionRenderer, pair) -> None:
        root, child = pair
        rendered = renderer.render_connection(root, child, "mood:happy")

        assert rendered.label == "happy"
        assert rendered.color == "#45b7d1"
        assert rendered.connection_id == f"{root.id}-{child.id}"
        assert rendered.label_position.y == pytest.approx(7.5)
        assert child.render_handle == rendered.handle
        assert renderer.resolve(child.render_handle) == rendered

    @pytest.mark.unit
    def test_handle_stable_across_redraws(self, renderer: ConnectionRenderer, pair) -> None:
        root, child = pair
        first = renderer.render_connection(root, child, "mood:happy")
        child.position = Position(x=0, y=100)
        second = renderer.render_connection(root, child, "mood:happy")

        assert second.handle == first.handle
        assert len(renderer.rendered()) == 1
        assert renderer.resolve(first.handle).path.end == Position(x=0, y=100)

    @pytest.mark.unit
    def test_unplaced_end_is_not_drawn(self, renderer: ConnectionRenderer, pair) -> None:
        root, child = pair
        child.position = None
        assert renderer.render_connection(root, child, "mood:happy") is None
        assert renderer.rendered() == []

    @pytest.mark.unit
    def test_redraw_all_drops_removed_nodes(self, renderer: ConnectionRenderer, registry: NodeRegistry, pair) -> None:
        root, child = pair
        renderer.redraw_all(registry)
        handle = child.render_handle
        assert renderer.resolve(handle) is not None

        registry.remove_subtree(child.id)
        assert renderer.redraw_all(registry) == []
        assert renderer.resolve(handle) is None

    @pytest.mark.unit
    def test_forget_and_clear(self, renderer: ConnectionRenderer, pair) -> None:
        root, child = pair
        rendered = renderer.render_connection(root, child, "mood:happy")
        renderer.forget([child.id])
        assert renderer.resolve(rendered.handle) is None

        renderer.render_connection(root, child, "mood:happy")
        renderer.clear()
        assert renderer.rendered() == []
