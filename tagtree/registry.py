"""
NodeRegistry — the owned node/connection graph of one tree.

The registry is the single mutable tree state.  It is mutated only from the
event-loop thread, so it carries no locks; consumers that cache derived data
(the layout engine) subscribe and are told after every successful mutation.
"""

from __future__ import annotations

import itertools
from typing import Callable, Iterator, Optional

from loguru import logger

from .errors import DuplicateError, NodeNotFoundError, RootExistsError, ValidationError
from .models import Connection, Node, Position, RegistryChange, Track
from .tags import DIRECT_TAG, color_for_tag

RegistryListener = Callable[[RegistryChange], None]


def validate_track(track: Track) -> None:
    """Raise ValidationError unless the track has a title, an artist and a tag list."""
    if not isinstance(track, Track):
        raise ValidationError(f"Expected a Track, got {type(track).__name__}")
    if not isinstance(track.title, str) or not track.title.strip():
        raise ValidationError("Track is missing a title")
    if not isinstance(track.artist, str) or not track.artist.strip():
        raise ValidationError(f"Track {track.title!r} is missing an artist")
    if not isinstance(track.tags, list) or not all(isinstance(t, str) for t in track.tags):
        raise ValidationError(f"Track {track.title!r} has a malformed tag list")


class NodeRegistry:
    """In-memory tree keyed by node id."""

    def __init__(self, tag_color: Callable[[str], str] = color_for_tag) -> None:
        self._nodes: dict[str, Node] = {}
        self._connections: dict[str, Connection] = {}
        self._root_id: Optional[str] = None
        # Never reset: ids stay unique across clear() so late callbacks can't hit a new node.
        self._ids = itertools.count(1)
        self._listeners: list[RegistryListener] = []
        self._tag_color = tag_color

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, change: RegistryChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_node(
        self,
        track: Track,
        parent_id: Optional[str] = None,
        connection_tag: Optional[str] = None,
        position: Optional[Position] = None,
    ) -> Node:
        """
        Create a node (and, for a child, its connection) in one step.

        Raises:
            ValidationError:   track is malformed.
            NodeNotFoundError: ``parent_id`` is not in the registry.
            RootExistsError:   parentless node while a root already exists.
            DuplicateError:    track is identical to the parent's track.
        """
        validate_track(track)

        parent: Optional[Node] = None
        if parent_id is not None:
            parent = self._nodes.get(parent_id)
            if parent is None:
                raise NodeNotFoundError(f"Parent node {parent_id} is not in the tree")
            if track.is_same_track(parent.track):
                raise DuplicateError(f"{track.label()!r} is identical to its parent")
        elif self._root_id is not None:
            raise RootExistsError(f"Tree already has root {self._root_id}")

        node_id = f"node-{next(self._ids)}"
        tag = (connection_tag or DIRECT_TAG) if parent is not None else connection_tag
        node = Node(
            id=node_id,
            track=track.model_copy(deep=True),
            parent_id=parent_id,
            depth=parent.depth + 1 if parent is not None else 0,
            position=position.model_copy() if position is not None else None,
            connection_tag=tag,
        )

        self._nodes[node_id] = node
        if parent is None:
            self._root_id = node_id
        else:
            parent.children.add(node_id)
            connection = Connection(
                id=f"{parent.id}-{node_id}",
                parent_id=parent.id,
                child_id=node_id,
                tag=tag,
                color=self._tag_color(tag),
            )
            self._connections[connection.id] = connection

        logger.debug(
            f"Registry: added {node_id} (depth {node.depth}) {track.label()!r}"
            + (f" via {tag!r}" if parent is not None else " as root")
        )
        self._notify(RegistryChange(kind="added", node_ids=[node_id]))
        return node

    def remove_subtree(self, node_id: str) -> list[str]:
        """Remove a node, all its descendants and every incident connection."""
        node = self._nodes.get(node_id)
        if node is None:
            logger.debug(f"Registry: remove_subtree ignored unknown node {node_id}")
            return []

        removed = self.subtree_ids(node_id)
        removed_set = set(removed)

        if node.parent_id is not None and node.parent_id in self._nodes:
            self._nodes[node.parent_id].children.discard(node_id)

        for nid in removed:
            del self._nodes[nid]
        self._connections = {
            cid: conn for cid, conn in self._connections.items()
            if conn.parent_id not in removed_set and conn.child_id not in removed_set
        }
        if self._root_id in removed_set:
            self._root_id = None

        logger.debug(f"Registry: removed subtree of {node_id} ({len(removed)} nodes)")
        self._notify(RegistryChange(kind="removed", node_ids=removed))
        return removed

    def clear(self) -> None:
        removed = list(self._nodes)
        self._nodes.clear()
        self._connections.clear()
        self._root_id = None
        self._notify(RegistryChange(kind="cleared", node_ids=removed))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def root(self) -> Optional[Node]:
        return self._nodes.get(self._root_id) if self._root_id else None

    @property
    def root_id(self) -> Optional[str]:
        return self._root_id

    def get(self, node_id: Optional[str]) -> Optional[Node]:
        return self._nodes.get(node_id) if node_id is not None else None

    def require(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(f"Node {node_id} is not in the tree")
        return node

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes.values()))

    def nodes(self) -> list[Node]:
        """Nodes in insertion order."""
        return list(self._nodes.values())

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def connection_for_child(self, child_id: str) -> Optional[Connection]:
        node = self._nodes.get(child_id)
        if node is None or node.parent_id is None:
            return None
        return self._connections.get(f"{node.parent_id}-{child_id}")

    def outgoing_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self._connections.values() if c.parent_id == node_id]

    def children_of(self, node_id: str) -> list[Node]:
        """Children in creation order (the order the layout distributes them)."""
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return [n for n in self._nodes.values() if n.id in node.children]

    def subtree_ids(self, node_id: str) -> list[str]:
        """``node_id`` followed by all of its descendants (pre-order)."""
        if node_id not in self._nodes:
            return []
        collected: list[str] = []
        stack = [node_id]
        while stack:
            current = stack.pop()
            collected.append(current)
            stack.extend(reversed([c.id for c in self.children_of(current)]))
        return collected

    def contains_track(self, track: Track) -> bool:
        return any(n.track.is_same_track(track) for n in self._nodes.values())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def depth(self) -> int:
        return max((n.depth for n in self._nodes.values()), default=0)

    def __repr__(self) -> str:
        return f"NodeRegistry({len(self._nodes)} nodes, {len(self._connections)} connections, root={self._root_id})"
