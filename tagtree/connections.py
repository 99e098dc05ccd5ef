"""
ConnectionRenderer — curved, color-coded, labelled connectors.

Rendered connectors live here under opaque handles; nodes only carry the
handle id, and a drawing layer (the HTML visualizer, a websocket client)
resolves handles to geometry.
"""

from __future__ import annotations

import itertools
import math
from typing import Optional

from loguru import logger

from .config import TreeConfig
from .models import CurvedPath, Node, Position, RenderedConnection
from .registry import NodeRegistry
from .tags import color_for_tag, tag_value


class ConnectionRenderer:
    def __init__(self, config: Optional[TreeConfig] = None) -> None:
        self.config = config or TreeConfig()
        self._rendered: dict[str, RenderedConnection] = {}
        self._handle_by_child: dict[str, str] = {}
        self._handles = itertools.count(1)

    # ------------------------------------------------------------------
    # Geometry & color
    # ------------------------------------------------------------------

    def curved_path(self, start: Position, end: Position) -> CurvedPath:
        """
        Quadratic curve bowed to one side of the chord.

        The control point sits on the chord's perpendicular through its
        midpoint, ``chord length × curve_factor`` away from it.
        """
        dx = end.x - start.x
        dy = end.y - start.y
        length = math.hypot(dx, dy)
        perpendicular = math.atan2(dy, dx) + math.pi / 2
        offset = length * self.config.curve_factor
        control = Position(
            x=start.x + dx * 0.5 + math.cos(perpendicular) * offset,
            y=start.y + dy * 0.5 + math.sin(perpendicular) * offset,
        )
        return CurvedPath(start=start.model_copy(), control=control, end=end.model_copy())

    def color_for_tag(self, tag: str) -> str:
        return color_for_tag(tag)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_connection(self, parent: Node, child: Node, tag: str) -> Optional[RenderedConnection]:
        """
        Draw (or redraw) the connector parent → child.

        The child keeps its handle across redraws.  Returns None while either
        end is still unplaced.
        """
        if parent.position is None or child.position is None:
            return None

        path = self.curved_path(parent.position, child.position)
        handle = self._handle_by_child.get(child.id) or child.render_handle or f"conn-{next(self._handles)}"
        rendered = RenderedConnection(
            handle=handle,
            connection_id=f"{parent.id}-{child.id}",
            path=path,
            d=path.d,
            color=self.color_for_tag(tag),
            label=tag_value(tag),
            label_position=path.point_at(0.5),
        )
        self._rendered[handle] = rendered
        self._handle_by_child[child.id] = handle
        child.render_handle = handle
        return rendered

    def redraw_all(self, registry: NodeRegistry) -> list[RenderedConnection]:
        """Re-render every connection from current positions, dropping stale handles."""
        live_children = set()
        drawn: list[RenderedConnection] = []
        for conn in registry.connections():
            parent = registry.get(conn.parent_id)
            child = registry.get(conn.child_id)
            if parent is None or child is None:
                continue
            live_children.add(child.id)
            rendered = self.render_connection(parent, child, conn.tag)
            if rendered is not None:
                drawn.append(rendered)
        self.forget([cid for cid in self._handle_by_child if cid not in live_children])
        return drawn

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def resolve(self, handle: Optional[str]) -> Optional[RenderedConnection]:
        return self._rendered.get(handle) if handle else None

    def rendered(self) -> list[RenderedConnection]:
        return list(self._rendered.values())

    def forget(self, node_ids: list[str]) -> None:
        """Drop the connectors drawn to the given (removed) nodes."""
        for node_id in node_ids:
            handle = self._handle_by_child.pop(node_id, None)
            if handle is not None:
                self._rendered.pop(handle, None)
        if node_ids:
            logger.debug(f"Renderer: forgot connectors of {len(node_ids)} nodes")

    def clear(self) -> None:
        self._rendered.clear()
        self._handle_by_child.clear()
