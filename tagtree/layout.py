"""
LayoutEngine — radial / concentric positions for every node.

Structure of the layout:

* the root sits at its drop point (first node) or the canvas center;
* level 1 is an exact full ring around the root, starting at 12 o'clock;
* each deeper node fans its children over a spread centered on its own
  outward angle, and every fanned child goes through collision search
  because fans of unrelated parents share canvas space;
* a bounded overlap repair pass runs last.

The ring stays exact only while neighbouring ring nodes clear
``min_distance``: with the defaults (R1 = 180, min distance 110) that holds
for up to 10 level-1 nodes.  From 11 on, the repair pass pushes ring nodes
off R1 like any other overlapping pair.

The registry tells the engine when the tree changed; positions are then
recomputed on the next pull (``refresh``), not eagerly on every mutation.
"""

from __future__ import annotations

import math
from typing import Optional

from loguru import logger

from .collision import CollisionResolver, point_at
from .config import TreeConfig
from .models import Node, OverlapReport, PlacedPosition, Position, RegistryChange
from .registry import NodeRegistry

TOP_ANGLE = -math.pi / 2


class LayoutEngine:
    def __init__(
        self,
        registry: NodeRegistry,
        config: Optional[TreeConfig] = None,
        resolver: Optional[CollisionResolver] = None,
    ) -> None:
        self.registry = registry
        self.config = config or TreeConfig()
        self.resolver = resolver or CollisionResolver(registry, self.config)
        self._stale = True
        self.last_report = OverlapReport()
        self._unsubscribe = registry.subscribe(self._on_registry_change)

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def _on_registry_change(self, change: RegistryChange) -> None:
        self.mark_stale()

    def mark_stale(self) -> None:
        self._stale = True

    @property
    def is_stale(self) -> bool:
        return self._stale

    def refresh(self, registry: Optional[NodeRegistry] = None) -> bool:
        """Recompute positions if the tree changed since the last layout."""
        if not self._stale:
            return False
        self.compute_positions(registry)
        return True

    def detach(self) -> None:
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def root_position(self, requested: Optional[Position]) -> Position:
        """Requested point (or canvas center) clamped inside the canvas margins."""
        cfg = self.config
        cx, cy = cfg.canvas_center
        x, y = (requested.x, requested.y) if requested is not None else (cx, cy)
        margin = cfg.root_margin
        if cfg.canvas_width > 2 * margin:
            x = max(margin, min(cfg.canvas_width - margin, x))
        if cfg.canvas_height > 2 * margin:
            y = max(margin, min(cfg.canvas_height - margin, y))
        return Position(x=x, y=y)

    def compute_positions(self, registry: Optional[NodeRegistry] = None) -> None:
        """Place every node in the tree (mutates positions and angles in place)."""
        registry = self.registry if registry is None else registry
        root = registry.root
        if root is None:
            self._stale = False
            self.last_report = OverlapReport()
            return

        root.position = self.root_position(root.position)
        root.angle = 0.0
        self._position_children(registry, root)

        if self.config.validate_positions:
            self.last_report = self.resolver.validate_and_fix_overlaps(registry)
        else:
            self.last_report = OverlapReport()

        self._stale = False
        logger.debug(
            f"Layout computed: {len(registry)} nodes, depth {registry.depth}, "
            f"repair passes {self.last_report.passes}"
        )

    def ring_angles(self, count: int) -> list[float]:
        """Level-1 angles: ``-π/2 + i·2π/count``."""
        if count <= 0:
            return []
        step = 2 * math.pi / count
        return [TOP_ANGLE + i * step for i in range(count)]

    def fan_angles(self, axis: float, count: int, spread: float) -> list[float]:
        """``count`` angles spread evenly over ``spread`` radians centered on ``axis``."""
        if count <= 0:
            return []
        if count == 1:
            return [axis]
        start = axis - spread / 2
        step = spread / (count - 1)
        return [start + i * step for i in range(count)]

    def _position_children(self, registry: NodeRegistry, node: Node) -> None:
        children = registry.children_of(node.id)
        if not children or node.position is None:
            return

        base_distance = self.config.distance_for_depth(node.depth)

        if node.depth == 0:
            # Exact ring: no collision search at level 1.
            for child, angle in zip(children, self.ring_angles(len(children))):
                pos = point_at(node.position, angle, base_distance)
                child.position = pos
                child.angle = angle
        else:
            angles = self.fan_angles(node.angle, len(children), self.config.spread_for_depth(node.depth))
            for child, angle in zip(children, angles):
                placed: PlacedPosition = self.resolver.find_collision_free_position(
                    node.position, angle, base_distance, child.id
                )
                child.position = Position(x=placed.x, y=placed.y)
                child.angle = placed.angle

        for child in children:
            self._position_children(registry, child)
