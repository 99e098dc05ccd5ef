"""Tests for NodeRegistry: creation rules, subtree removal, change notification."""

from __future__ import annotations

import pytest

from conftest import make_track
from tagtree.errors import DuplicateError, NodeNotFoundError, RootExistsError, ValidationError
from tagtree.models import Position, Track
from tagtree.registry import NodeRegistry
from tagtree.tags import color_for_tag


class TestAddNode:
    """Root and child creation."""

    @pytest.mark.unit
    def test_root(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("Root", "mood:happy"), position=Position(x=10, y=20))
        assert root.id == "node-1"
        assert root.depth == 0
        assert root.is_root
        assert registry.root_id == root.id
        assert root.position == Position(x=10, y=20)
        assert registry.connection_count == 0

    @pytest.mark.unit
    def test_child_and_connection_created_together(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("Root"))
        child = registry.add_node(make_track("Child"), parent_id=root.id, connection_tag="mood:happy")

        assert child.depth == 1
        assert child.parent_id == root.id
        assert child.id in root.children
        conn = registry.connection_for_child(child.id)
        assert conn is not None
        assert conn.id == f"{root.id}-{child.id}"
        assert conn.tag == "mood:happy"
        assert conn.color == color_for_tag("mood:happy")

    @pytest.mark.unit
    def test_manual_child_uses_direct_tag(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("Root"))
        child = registry.add_node(make_track("Child"), parent_id=root.id)
        assert child.connection_tag == "direct"
        assert registry.connection_for_child(child.id).tag == "direct"

    @pytest.mark.unit
    def test_depth_follows_parent(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("A"))
        b = registry.add_node(make_track("B"), parent_id=root.id)
        c = registry.add_node(make_track("C"), parent_id=b.id)
        assert c.depth == b.depth + 1 == 2
        assert registry.depth == 2

    @pytest.mark.unit
    def test_track_is_copied(self, registry: NodeRegistry) -> None:
        track = make_track("Root", "mood:happy")
        node = registry.add_node(track)
        track.tags.append("energy:high")
        assert node.track.tags == ["mood:happy"]


class TestAddNodeErrors:
    """Every rejected add leaves the registry untouched."""

    @pytest.mark.unit
    def test_duplicate_of_parent(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("Same", album="LP"))
        with pytest.raises(DuplicateError):
            registry.add_node(make_track("Same", "mood:sad", album="LP"), parent_id=root.id)
        assert len(registry) == 1
        assert registry.connection_count == 0
        assert root.children == set()

    @pytest.mark.unit
    def test_same_title_other_album_is_allowed(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("Same", album="LP"))
        child = registry.add_node(make_track("Same", album="Live"), parent_id=root.id)
        assert child.depth == 1

    @pytest.mark.unit
    def test_unknown_parent(self, registry: NodeRegistry) -> None:
        with pytest.raises(NodeNotFoundError):
            registry.add_node(make_track("Orphan"), parent_id="node-99")
        assert len(registry) == 0

    @pytest.mark.unit
    def test_second_root(self, registry: NodeRegistry) -> None:
        registry.add_node(make_track("Root"))
        with pytest.raises(RootExistsError):
            registry.add_node(make_track("Other root"))
        assert len(registry) == 1

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "track",
        [
            Track(title="", artist="Artist"),
            Track(title="   ", artist="Artist"),
            Track(title="Title", artist=""),
        ],
    )
    def test_invalid_track(self, registry: NodeRegistry, track: Track) -> None:
        with pytest.raises(ValidationError):
            registry.add_node(track)
        assert len(registry) == 0
        assert registry.root is None


class TestRemoveSubtree:
    """Subtree removal and id lifecycle."""

    @pytest.fixture
    def tree(self, registry: NodeRegistry) -> dict:
        root = registry.add_node(make_track("Root"))
        a = registry.add_node(make_track("A"), parent_id=root.id, connection_tag="mood:happy")
        b = registry.add_node(make_track("B"), parent_id=root.id, connection_tag="energy:high")
        a1 = registry.add_node(make_track("A1"), parent_id=a.id, connection_tag="style:rock")
        a2 = registry.add_node(make_track("A2"), parent_id=a.id, connection_tag="vibe:warm")
        return {"root": root, "a": a, "b": b, "a1": a1, "a2": a2}

    @pytest.mark.unit
    def test_subtree_ids_preorder(self, registry: NodeRegistry, tree: dict) -> None:
        ids = registry.subtree_ids(tree["root"].id)
        assert ids == [tree[k].id for k in ("root", "a", "a1", "a2", "b")]

    @pytest.mark.unit
    def test_remove_branch(self, registry: NodeRegistry, tree: dict) -> None:
        removed = registry.remove_subtree(tree["a"].id)

        assert set(removed) == {tree["a"].id, tree["a1"].id, tree["a2"].id}
        assert len(registry) == 2
        assert registry.connection_count == 1
        assert tree["a"].id not in tree["root"].children
        assert registry.children_of(tree["root"].id) == [tree["b"]]

    @pytest.mark.unit
    def test_remove_root_empties_registry(self, registry: NodeRegistry, tree: dict) -> None:
        removed = registry.remove_subtree(tree["root"].id)
        assert len(removed) == 5
        assert len(registry) == 0
        assert registry.connections() == []
        assert registry.root is None

    @pytest.mark.unit
    def test_unknown_id(self, registry: NodeRegistry, tree: dict) -> None:
        assert registry.remove_subtree("node-404") == []
        assert len(registry) == 5

    @pytest.mark.unit
    def test_ids_not_reused_after_clear(self, registry: NodeRegistry) -> None:
        first = registry.add_node(make_track("Root"))
        registry.clear()
        second = registry.add_node(make_track("Root"))
        assert first.id == "node-1"
        assert second.id == "node-2"
        assert first.id not in registry


class TestQueries:
    """Lookups used by layout, exclusion and the service."""

    @pytest.mark.unit
    def test_contains_track(self, registry: NodeRegistry) -> None:
        registry.add_node(make_track("Root", album="LP"))
        assert registry.contains_track(make_track("Root", "mood:any", album="LP"))
        assert not registry.contains_track(make_track("Root", album="Single"))

    @pytest.mark.unit
    def test_outgoing_connections(self, registry: NodeRegistry) -> None:
        root = registry.add_node(make_track("Root"))
        registry.add_node(make_track("A"), parent_id=root.id, connection_tag="mood:happy")
        registry.add_node(make_track("B"), parent_id=root.id, connection_tag="energy:high")
        assert [c.tag for c in registry.outgoing_connections(root.id)] == ["mood:happy", "energy:high"]

    @pytest.mark.unit
    def test_require_unknown(self, registry: NodeRegistry) -> None:
        with pytest.raises(NodeNotFoundError):
            registry.require("node-1")


class TestSubscribers:
    """Change notification after successful mutations only."""

    @pytest.mark.unit
    def test_change_kinds(self, registry: NodeRegistry) -> None:
        changes = []
        registry.subscribe(changes.append)

        root = registry.add_node(make_track("Root"))
        child = registry.add_node(make_track("Child"), parent_id=root.id)
        registry.remove_subtree(child.id)
        registry.clear()

        assert [c.kind for c in changes] == ["added", "added", "removed", "cleared"]
        assert changes[2].node_ids == [child.id]
        assert changes[3].node_ids == [root.id]

    @pytest.mark.unit
    def test_failed_add_does_not_notify(self, registry: NodeRegistry) -> None:
        changes = []
        registry.subscribe(changes.append)
        with pytest.raises(ValidationError):
            registry.add_node(Track(title="", artist=""))
        assert changes == []

    @pytest.mark.unit
    def test_unsubscribe(self, registry: NodeRegistry) -> None:
        changes = []
        unsubscribe = registry.subscribe(changes.append)
        unsubscribe()
        registry.add_node(make_track("Root"))
        assert changes == []
