"""
TreeGrowthOrchestrator — staggered, recursive generation of a tag tree.

    generate_auto_tree(root)
        └── after animation_delay × 2: expand(root, level 1)
              ├── tag i  (after i × (animation_delay + tag_stagger))
              │     └── branch j  (after j × branch_delay)
              │           add node → layout → connector → events
              │           └── after animation_delay: expand(child, level 2)
              └── ...

Every step is a scheduler task scoped to the node it grows from, and every
step re-resolves that node from the registry first: if the subtree was
removed or the tree cleared in the meantime the step does nothing.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from loguru import logger

from .config import TreeConfig
from .connections import ConnectionRenderer
from .errors import DuplicateError, NodeNotFoundError, ValidationError
from .events import TreeEvents
from .layout import LayoutEngine
from .models import (
    ConnectionCreatedEvent,
    GenerationCompleteEvent,
    LayoutUpdatedEvent,
    Node,
    NodeAddedEvent,
    Position,
    Track,
)
from .registry import NodeRegistry, validate_track
from .scheduler import GrowthScheduler
from .sources import ExclusionPolicy, NoExclusion, TrackSource
from .tags import TagSelector, tag_category


class GrowthState(str, Enum):
    IDLE = "idle"
    EXPANDING = "expanding"


class TreeGrowthOrchestrator:
    def __init__(
        self,
        registry: NodeRegistry,
        layout: LayoutEngine,
        renderer: ConnectionRenderer,
        source: TrackSource,
        selector: Optional[TagSelector] = None,
        exclusion: Optional[ExclusionPolicy] = None,
        scheduler: Optional[GrowthScheduler] = None,
        events: Optional[TreeEvents] = None,
        config: Optional[TreeConfig] = None,
    ) -> None:
        self.registry = registry
        self.layout = layout
        self.renderer = renderer
        self.source = source
        self.config = config or layout.config
        self.selector = selector or TagSelector()
        self.exclusion = exclusion or NoExclusion()
        self.scheduler = scheduler or GrowthScheduler(time_scale=self.config.time_scale)
        self.events = events or TreeEvents()
        self._state = GrowthState.IDLE
        self._level = 0

    @property
    def state(self) -> GrowthState:
        return self._state

    @property
    def level(self) -> int:
        """Deepest level being expanded (0 while idle)."""
        return self._level if self._state is GrowthState.EXPANDING else 0

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate_auto_tree(self, root_track: Track, drop_position: Optional[Position] = None) -> Node:
        """
        Replace the current tree with one grown from ``root_track``.

        Returns the root node once every scheduled step has run (or the
        generation was cancelled by a clear).
        """
        validate_track(root_track)
        self.cancel()
        self.registry.clear()
        self.renderer.clear()

        started = time.monotonic()
        epoch = self.scheduler.epoch
        root = self.registry.add_node(root_track, position=self.layout.root_position(drop_position))
        self.layout.compute_positions()
        self._emit_node_added(root)
        self._emit_layout_updated()

        logger.info(
            f"Growing tree from {root_track.label()!r} "
            f"(max_levels={self.config.max_levels}, branches_per_tag={self.config.branches_per_tag})"
        )
        self._state = GrowthState.EXPANDING
        self._level = 0
        self.scheduler.schedule(
            self.config.animation_delay * 2,
            lambda: self._expand(root.id, 1),
            scope=root.id,
        )
        try:
            await self.scheduler.drain()
        finally:
            self._state = GrowthState.IDLE
            self._level = 0

        cancelled = self.scheduler.epoch != epoch
        duration = time.monotonic() - started
        logger.info(
            f"Tree generation {'cancelled' if cancelled else 'complete'}: "
            f"{len(self.registry)} nodes, depth {self.registry.depth} in {duration:.2f}s"
        )
        self.events.generation_complete(
            GenerationCompleteEvent(
                root_id=root.id,
                root_title=root_track.title,
                cancelled=cancelled,
                duration_seconds=duration,
                **self._totals(),
            )
        )
        return root

    async def grow_branches_for_tag(self, node_id: str, tag: str) -> list[Node]:
        """
        Grow up to ``branches_per_tag`` children of ``node_id`` through one tag.

        Manual growth does not recurse.  Raises NodeNotFoundError for an
        unknown node; returns [] when the children would exceed ``max_levels``
        or ``tag`` is the one that created the node.
        """
        node = self.registry.require(node_id)
        level = node.depth + 1
        if level > self.config.max_levels:
            logger.info(f"Not growing {node_id} via {tag!r}: level {level} exceeds max_levels")
            return []
        if node.connection_tag is not None and tag == node.connection_tag:
            logger.info(f"Not growing {node_id} via {tag!r}: it is the node's own connecting tag")
            return []

        before = set(node.children)
        # A running generation owns the state; only a standalone grow sets it.
        owns_state = self._state is GrowthState.IDLE
        if owns_state:
            self._state = GrowthState.EXPANDING
            self._level = level
        try:
            await self._grow_tag(node_id, tag, level, recurse=False)
            await self.scheduler.drain()
        finally:
            if owns_state:
                self._state = GrowthState.IDLE
                self._level = 0
        current = self.registry.get(node_id)
        if current is None:
            return []
        return [n for n in self.registry.children_of(node_id) if n.id not in before]

    def cancel(self) -> int:
        """Cancel all pending growth steps."""
        cancelled = self.scheduler.cancel_all()
        self._state = GrowthState.IDLE
        self._level = 0
        return cancelled

    # ------------------------------------------------------------------
    # Tag selection & candidate fetching
    # ------------------------------------------------------------------

    def tags_for(self, node: Node, level: int) -> list[str]:
        """Tags that drive the expansion of ``node`` into ``level``."""
        count = self.config.tags_per_level(level)
        if count <= 0:
            return []
        tags = self.selector.select_representative_tags(
            node.track.tags,
            exclude_tag=node.connection_tag,
            max_categories=count + 1,
        )
        return tags[:count]

    def _usable(self, candidates: list[Track], parent: Node) -> list[Track]:
        return [
            t for t in candidates
            if not t.is_same_track(parent.track) and not self.exclusion.should_exclude(t)
        ]

    async def fetch_candidates(self, tag: str, parent: Node) -> list[Track]:
        """
        Related tracks for ``tag`` with fallback.

        Tiers: exact tag, same category, random.  A tier that raises is
        logged and counts as empty; [] after the last tier skips the branch.
        """
        category = tag_category(tag)
        tiers = (
            ("tag", lambda: self.source.fetch_related_tracks(tag, parent.track)),
            ("category", lambda: self.source.fetch_category_tracks(category, parent.track)),
            ("random", lambda: self.source.fetch_random_tracks(parent.track)),
        )
        for name, fetch in tiers:
            try:
                candidates = await fetch()
            except Exception as exc:
                logger.warning(f"Track source failed on {name} tier for {tag!r}: {exc}")
                continue
            usable = self._usable(list(candidates or []), parent)
            if usable:
                if name != "tag":
                    logger.debug(f"Using {name} fallback for {tag!r} ({len(usable)} candidates)")
                return usable
        logger.warning(f"No usable tracks for {tag!r} under {parent.id}; skipping branch")
        return []

    # ------------------------------------------------------------------
    # Scheduled steps
    # ------------------------------------------------------------------

    async def _expand(self, parent_id: str, level: int) -> None:
        try:
            parent = self.registry.get(parent_id)
            if parent is None:
                return
            if level > self.config.max_levels:
                return
            tags = self.tags_for(parent, level)
            if not tags:
                logger.debug(f"No tags left to expand {parent_id} at level {level}")
                return

            self._level = max(self._level, level)
            logger.debug(f"Expanding {parent_id} at level {level} via {tags}")
            step = self.config.animation_delay + self.config.tag_stagger
            for i, tag in enumerate(tags):
                self.scheduler.schedule(
                    i * step,
                    lambda tag=tag: self._grow_tag(parent_id, tag, level),
                    scope=parent_id,
                )
        except Exception as exc:
            logger.error(f"Expanding {parent_id} at level {level} failed: {exc}")

    async def _grow_tag(self, parent_id: str, tag: str, level: int, recurse: bool = True) -> None:
        try:
            parent = self.registry.get(parent_id)
            if parent is None:
                return
            candidates = await self.fetch_candidates(tag, parent)
            for j, track in enumerate(candidates[: self.config.branches_per_tag]):
                self.scheduler.schedule(
                    j * self.config.branch_delay,
                    lambda track=track: self._grow_branch(parent_id, track, tag, level, recurse),
                    scope=parent_id,
                )
        except Exception as exc:
            logger.error(f"Growing {parent_id} via {tag!r} failed: {exc}")

    async def _grow_branch(self, parent_id: str, track: Track, tag: str, level: int, recurse: bool) -> None:
        try:
            parent = self.registry.get(parent_id)
            if parent is None:
                return
            # Re-checked here: the tree may have gained this track since the fetch.
            if track.is_same_track(parent.track) or self.exclusion.should_exclude(track):
                logger.debug(f"Skipping {track.label()!r} under {parent_id}: excluded")
                return
            try:
                child = self.registry.add_node(track, parent_id=parent_id, connection_tag=tag)
            except (ValidationError, DuplicateError, NodeNotFoundError) as exc:
                logger.debug(f"Skipping {track.label()!r} under {parent_id}: {exc}")
                return

            self.layout.compute_positions()
            self._emit_node_added(child)
            self._emit_layout_updated()
            self._redraw_connections(child.id)

            if recurse and level < self.config.max_levels:
                self.scheduler.schedule(
                    self.config.animation_delay,
                    lambda: self._expand(child.id, level + 1),
                    scope=child.id,
                )
        except Exception as exc:
            logger.error(f"Adding branch {track.label()!r} under {parent_id} failed: {exc}")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _totals(self) -> dict[str, int]:
        return {"node_count": len(self.registry), "connection_count": self.registry.connection_count}

    def _emit_node_added(self, node: Node) -> None:
        self.events.node_added(NodeAddedEvent(node=node, is_root=node.is_root, **self._totals()))

    def _emit_layout_updated(self) -> None:
        self.events.layout_updated(LayoutUpdatedEvent(report=self.layout.last_report, **self._totals()))

    def _redraw_connections(self, new_child_id: str) -> None:
        """Redraw every connector (the layout may have moved any node); announce the new one."""
        self.renderer.redraw_all(self.registry)
        connection = self.registry.connection_for_child(new_child_id)
        if connection is None:
            return
        child = self.registry.get(new_child_id)
        rendered = self.renderer.resolve(child.render_handle if child else None)
        self.events.connection_created(
            ConnectionCreatedEvent(connection=connection, rendered=rendered, **self._totals())
        )
