"""
CollisionResolver — pure geometry over the registry's node positions.

Repair is a bounded, best-effort relaxation: under pathological density
(many levels × many tags) it can stop with residual overlaps, which the
returned OverlapReport lists instead of raising.
"""

from __future__ import annotations

import math
from typing import Optional

from loguru import logger

from .config import TreeConfig
from .models import Node, OverlapReport, PlacedPosition, Position
from .registry import NodeRegistry


def distance(a: Position, b: Position) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def point_at(origin: Position, angle: float, length: float) -> Position:
    return Position(x=origin.x + math.cos(angle) * length, y=origin.y + math.sin(angle) * length)


class CollisionResolver:
    def __init__(self, registry: NodeRegistry, config: Optional[TreeConfig] = None) -> None:
        self.registry = registry
        self.config = config or TreeConfig()

    @property
    def min_distance(self) -> float:
        return self.config.min_distance

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    def has_collision(self, pos: Position, exclude_id: Optional[str] = None) -> bool:
        """True iff another placed node is closer than the minimum distance."""
        limit = self.min_distance
        for node in self.registry:
            if node.id == exclude_id or node.position is None:
                continue
            if distance(pos, node.position) < limit:
                return True
        return False

    def _search_angles(self, preferred_angle: float) -> list[float]:
        """preferred, +step, -step, +2·step, -2·step, … (``max_attempts`` angles)."""
        step = math.radians(self.config.search_angle_step)
        angles: list[float] = []
        for attempt in range(max(1, self.config.max_attempts)):
            k = (attempt + 1) // 2
            angles.append(preferred_angle + k * step if attempt % 2 else preferred_angle - k * step)
        return angles

    def find_collision_free_position(
        self,
        parent_pos: Position,
        preferred_angle: float,
        base_distance: float,
        exclude_id: Optional[str] = None,
    ) -> PlacedPosition:
        """
        Search outward, then sideways, for a free spot around ``parent_pos``.

        Each candidate angle is tried at ``distance_steps`` increasing distances.
        When every attempt collides, the preferred angle at
        ``base_distance + overflow_offset`` is returned unconditionally so the
        search always terminates.
        """
        cfg = self.config
        for angle in self._search_angles(preferred_angle):
            for k in range(cfg.distance_steps):
                candidate = point_at(parent_pos, angle, base_distance + k * cfg.distance_step)
                if not self.has_collision(candidate, exclude_id):
                    return PlacedPosition(x=candidate.x, y=candidate.y, angle=angle)

        fallback = point_at(parent_pos, preferred_angle, base_distance + cfg.overflow_offset)
        logger.debug(
            f"No collision-free spot for {exclude_id}; "
            f"using overflow distance {base_distance + cfg.overflow_offset:.0f}"
        )
        return PlacedPosition(x=fallback.x, y=fallback.y, angle=preferred_angle)

    # ------------------------------------------------------------------
    # Global repair
    # ------------------------------------------------------------------

    def _violations(self, nodes: list[Node]) -> list[tuple[Node, Node]]:
        limit = self.min_distance
        pairs = []
        for i, a in enumerate(nodes):
            if a.position is None:
                continue
            for b in nodes[i + 1:]:
                if b.position is not None and distance(a.position, b.position) < limit:
                    pairs.append((a, b))
        return pairs

    def _push_apart(self, registry: NodeRegistry, first: Node, second: Node) -> None:
        # Move the deeper node; on equal depth the later-inserted one.
        mover, anchor = (first, second) if first.depth > second.depth else (second, first)
        if mover.position is None or anchor.position is None:
            return

        separation = math.atan2(
            mover.position.y - anchor.position.y,
            mover.position.x - anchor.position.x,
        )
        safe = self.min_distance + self.config.repair_buffer
        mover.position = point_at(anchor.position, separation, safe)

        parent = registry.get(mover.parent_id)
        if parent is not None and parent.position is not None:
            mover.angle = math.atan2(
                mover.position.y - parent.position.y,
                mover.position.x - parent.position.x,
            )

    def validate_and_fix_overlaps(self, registry: Optional[NodeRegistry] = None) -> OverlapReport:
        """Relax overlapping pairs for at most ``max_repair_passes`` passes."""
        registry = self.registry if registry is None else registry
        nodes = registry.nodes()
        report = OverlapReport()

        for _ in range(self.config.max_repair_passes):
            found = 0
            for i, a in enumerate(nodes):
                for b in nodes[i + 1:]:
                    if a.position is None or b.position is None:
                        continue
                    if distance(a.position, b.position) < self.min_distance:
                        self._push_apart(registry, a, b)
                        found += 1
            report.passes += 1
            report.moved += found
            if found == 0:
                report.converged = True
                return report

        residual = self._violations(nodes)
        report.converged = not residual
        report.residual_pairs = [(a.id, b.id) for a, b in residual]
        if residual:
            logger.warning(
                f"Overlap repair stopped after {report.passes} passes "
                f"with {len(residual)} overlapping pairs"
            )
        return report
