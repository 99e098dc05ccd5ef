"""Tests for CollisionResolver: collision test, position search, overlap repair."""

from __future__ import annotations

import math

import pytest

from conftest import make_track
from tagtree.collision import CollisionResolver, distance
from tagtree.config import TreeConfig
from tagtree.models import Position
from tagtree.registry import NodeRegistry


def _place(registry: NodeRegistry, title: str, x: float, y: float, parent_id=None):
    return registry.add_node(make_track(title), parent_id=parent_id, position=Position(x=x, y=y))


class TestHasCollision:
    """Minimum center distance is 2 × radius + padding."""

    @pytest.mark.unit
    def test_min_distance_default(self, registry: NodeRegistry) -> None:
        assert CollisionResolver(registry).min_distance == 110

    @pytest.mark.unit
    def test_close_and_far(self, registry: NodeRegistry) -> None:
        root = _place(registry, "Root", 0, 0)
        resolver = CollisionResolver(registry)
        assert resolver.has_collision(Position(x=50, y=0))
        assert not resolver.has_collision(Position(x=110, y=0))
        assert not resolver.has_collision(Position(x=50, y=0), exclude_id=root.id)

    @pytest.mark.unit
    def test_unplaced_nodes_ignored(self, registry: NodeRegistry) -> None:
        registry.add_node(make_track("Unplaced"))
        assert not CollisionResolver(registry).has_collision(Position(x=0, y=0))


class TestFindCollisionFreePosition:
    """Angle-then-distance search around a parent."""

    @pytest.mark.unit
    def test_free_preferred_spot(self, registry: NodeRegistry) -> None:
        resolver = CollisionResolver(registry)
        placed = resolver.find_collision_free_position(Position(x=0, y=0), math.pi / 2, 120)
        assert placed.angle == pytest.approx(math.pi / 2)
        assert placed.x == pytest.approx(0, abs=1e-9)
        assert placed.y == pytest.approx(120)

    @pytest.mark.unit
    def test_steps_sideways_around_blocker(self, registry: NodeRegistry) -> None:
        """Blocked along 0 and ±18°, the search lands on +36° at the longest distance."""
        _place(registry, "Root", 0, 0)
        root = registry.root
        _place(registry, "Blocker", 100, 0, parent_id=root.id)
        resolver = CollisionResolver(registry)

        placed = resolver.find_collision_free_position(Position(x=0, y=0), 0.0, 100)

        assert placed.angle == pytest.approx(math.radians(36))
        assert distance(placed, Position(x=0, y=0)) == pytest.approx(180)
        assert not resolver.has_collision(placed)

    @pytest.mark.unit
    def test_overflow_fallback(self, registry: NodeRegistry) -> None:
        config = TreeConfig(max_attempts=1, distance_steps=1)
        root = _place(registry, "Root", 0, 0)
        _place(registry, "Blocker", 100, 0, parent_id=root.id)
        resolver = CollisionResolver(registry, config)

        placed = resolver.find_collision_free_position(Position(x=0, y=0), 0.0, 100)

        assert placed.angle == 0.0
        assert placed.x == pytest.approx(200)
        assert placed.y == pytest.approx(0)


class TestValidateAndFixOverlaps:
    """Bounded relaxation of overlapping pairs."""

    @pytest.mark.unit
    def test_equal_depth_moves_later_node(self, registry: NodeRegistry) -> None:
        root = _place(registry, "Root", 0, 0)
        a = _place(registry, "A", 180, 0, parent_id=root.id)
        b = _place(registry, "B", 180, 50, parent_id=root.id)

        report = CollisionResolver(registry).validate_and_fix_overlaps()

        assert report.converged
        assert report.passes == 2
        assert report.moved == 1
        assert a.position == Position(x=180, y=0)
        assert b.position.x == pytest.approx(180)
        assert b.position.y == pytest.approx(120)
        assert b.angle == pytest.approx(math.atan2(120, 180))

    @pytest.mark.unit
    def test_explicit_registry_used_for_parent_angle(self, registry: NodeRegistry) -> None:
        root = _place(registry, "Root", 0, 0)
        _place(registry, "A", 180, 0, parent_id=root.id)
        b = _place(registry, "B", 180, 50, parent_id=root.id)

        report = CollisionResolver(NodeRegistry()).validate_and_fix_overlaps(registry)

        assert report.converged
        assert b.position.y == pytest.approx(120)
        assert b.angle == pytest.approx(math.atan2(120, 180))

    @pytest.mark.unit
    def test_deeper_node_moves(self, registry: NodeRegistry) -> None:
        root = _place(registry, "Root", 0, 0)
        a = _place(registry, "A", 180, 0, parent_id=root.id)
        b = _place(registry, "B", -180, 0, parent_id=root.id)
        c = _place(registry, "C", 180, 10, parent_id=b.id)

        report = CollisionResolver(registry).validate_and_fix_overlaps()

        assert report.converged
        assert a.position == Position(x=180, y=0)
        assert c.position.x == pytest.approx(180)
        assert c.position.y == pytest.approx(120)
        assert c.angle == pytest.approx(math.atan2(120, 360))

    @pytest.mark.unit
    def test_non_converged_reports_residual_pairs(self, registry: NodeRegistry) -> None:
        """A node trapped between two anchors oscillates; the bound stops it."""
        root = _place(registry, "Root", 0, 0)
        _place(registry, "A", 180, 0, parent_id=root.id)
        b = _place(registry, "B", -180, 0, parent_id=root.id)
        c = _place(registry, "C", 170, 0, parent_id=b.id)

        report = CollisionResolver(registry).validate_and_fix_overlaps()

        assert not report.converged
        assert report.passes == 5
        assert report.residual_pairs == [(root.id, c.id)]

    @pytest.mark.unit
    def test_no_overlap_is_single_pass(self, registry: NodeRegistry) -> None:
        root = _place(registry, "Root", 0, 0)
        _place(registry, "A", 200, 0, parent_id=root.id)
        report = CollisionResolver(registry).validate_and_fix_overlaps()
        assert report.converged
        assert report.passes == 1
        assert report.moved == 0
