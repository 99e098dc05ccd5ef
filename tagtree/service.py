"""
TagTreeService — one owned tree and the operations the surfaces call.

The service builds every component around a single NodeRegistry and injects
them into each other; the FastAPI app and the MCP server each hold one
service instance.
"""

from __future__ import annotations

from typing import Iterable, Optional

from loguru import logger

from .collision import CollisionResolver
from .config import TreeConfig
from .connections import ConnectionRenderer
from .events import TreeEvents
from .growth import GrowthState, TreeGrowthOrchestrator
from .layout import LayoutEngine
from .models import (
    ConnectionCreatedEvent,
    LayoutUpdatedEvent,
    Node,
    NodeAddedEvent,
    Position,
    Track,
    TreeSnapshot,
)
from .registry import NodeRegistry
from .scheduler import GrowthScheduler
from .sources import ExclusionPolicy, TrackSource, TreeExclusionPolicy
from .tags import TagSelector


class TagTreeService:
    def __init__(
        self,
        source: TrackSource,
        config: Optional[TreeConfig] = None,
        exclusion: Optional[ExclusionPolicy] = None,
        selector: Optional[TagSelector] = None,
    ) -> None:
        self.config = config or TreeConfig()
        self.source = source
        self.registry = NodeRegistry()
        self.resolver = CollisionResolver(self.registry, self.config)
        self.layout = LayoutEngine(self.registry, self.config, self.resolver)
        self.renderer = ConnectionRenderer(self.config)
        self.scheduler = GrowthScheduler(time_scale=self.config.time_scale)
        self.events = TreeEvents()
        self.exclusion = exclusion or TreeExclusionPolicy(self.registry)
        self.orchestrator = TreeGrowthOrchestrator(
            registry=self.registry,
            layout=self.layout,
            renderer=self.renderer,
            source=source,
            selector=selector,
            exclusion=self.exclusion,
            scheduler=self.scheduler,
            events=self.events,
            config=self.config,
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: object) -> None:
        self.events.add_listener(listener)

    def remove_listener(self, listener: object) -> None:
        self.events.remove_listener(listener)

    @property
    def state(self) -> GrowthState:
        return self.orchestrator.state

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_node(
        self,
        track: Track,
        position: Optional[Position] = None,
        parent_id: Optional[str] = None,
        connection_tag: Optional[str] = None,
    ) -> str:
        """
        Add a single node by hand and lay the tree out again.

        A root is placed at ``position`` (clamped to the canvas); a child's
        position always comes from the layout.
        """
        if parent_id is None:
            position = self.layout.root_position(position)
        node = self.registry.add_node(
            track,
            parent_id=parent_id,
            connection_tag=connection_tag,
            position=position if parent_id is None else None,
        )
        self._relayout()
        totals = self._totals()
        self.events.node_added(NodeAddedEvent(node=node, is_root=node.is_root, **totals))
        connection = self.registry.connection_for_child(node.id)
        if connection is not None:
            self.events.connection_created(
                ConnectionCreatedEvent(
                    connection=connection,
                    rendered=self.renderer.resolve(node.render_handle),
                    **totals,
                )
            )
        return node.id

    async def generate_auto_tree(self, root_track: Track, drop_position: Optional[Position] = None) -> Node:
        return await self.orchestrator.generate_auto_tree(root_track, drop_position)

    async def grow_branches_for_tag(self, node_id: str, tag: str) -> list[Node]:
        return await self.orchestrator.grow_branches_for_tag(node_id, tag)

    def remove_subtree(self, node_id: str) -> list[str]:
        """Remove a node and its descendants; pending growth into them is cancelled."""
        scopes = self.registry.subtree_ids(node_id)
        self.scheduler.cancel_scope(scopes)
        removed = self.registry.remove_subtree(node_id)
        if removed:
            self.renderer.forget(removed)
            self._relayout()
            logger.info(f"Removed {len(removed)} nodes under {node_id}")
        return removed

    def clear_tree(self) -> None:
        cancelled = self.orchestrator.cancel()
        count = len(self.registry)
        self.registry.clear()
        self.renderer.clear()
        logger.info(f"Tree cleared ({count} nodes, {cancelled} pending steps cancelled)")
        self.events.layout_updated(LayoutUpdatedEvent(**self._totals()))

    async def recenter(self, node_id: str) -> Node:
        """Clear the tree and grow a new one from the track of ``node_id``."""
        node = self.registry.require(node_id)
        track = node.track.model_copy(deep=True)
        logger.info(f"Recentering tree on {track.label()!r}")
        return await self.orchestrator.generate_auto_tree(track)

    def set_playlist(self, tracks: Iterable[Track]) -> None:
        """Tracks in the active playlist are never grown into the tree."""
        if isinstance(self.exclusion, TreeExclusionPolicy):
            self.exclusion.set_playlist(tracks)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_suggested_tags(self, node_id: str) -> list[str]:
        """Tags of the node's track not yet used by its outgoing connections or its own link."""
        node = self.registry.require(node_id)
        used = {c.tag for c in self.registry.outgoing_connections(node_id)}
        if node.connection_tag is not None:
            used.add(node.connection_tag)
        return [t for t in dict.fromkeys(node.track.tags) if t not in used]

    def snapshot(self) -> TreeSnapshot:
        if self.layout.is_stale:
            self._relayout()
        return TreeSnapshot(
            root_id=self.registry.root_id,
            depth=self.registry.depth,
            nodes=[n.model_copy(deep=True) for n in self.registry.nodes()],
            connections=self.registry.connections(),
            rendered=self.renderer.rendered(),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _totals(self) -> dict[str, int]:
        return {"node_count": len(self.registry), "connection_count": self.registry.connection_count}

    def _relayout(self) -> None:
        self.layout.compute_positions()
        self.renderer.redraw_all(self.registry)
        self.events.layout_updated(LayoutUpdatedEvent(report=self.layout.last_report, **self._totals()))
