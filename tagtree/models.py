"""
Data models shared by the tree core, the renderer and the outer surfaces.

All records are pydantic models so they serialise straight into HTTP/MCP
responses and the visualizer's JSON snapshot.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Library data
# ---------------------------------------------------------------------------

class Track(BaseModel):
    """A library track as seen by the tree: identity fields plus its tags."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: str = ""
    artist: str = ""
    album: str = ""
    tags: list[str] = Field(default_factory=list)

    @property
    def identity(self) -> tuple[str, str, str]:
        """(title, artist, album) — two tracks with the same identity are identical."""
        return (self.title, self.artist, self.album)

    def is_same_track(self, other: Optional["Track"]) -> bool:
        return other is not None and self.identity == other.identity

    def label(self) -> str:
        return f"{self.artist} — {self.title}" if self.artist else self.title


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

class Position(BaseModel):
    x: float
    y: float


class PlacedPosition(Position):
    """A position together with the outward angle (radians) it was placed at."""

    angle: float


class CurvedPath(BaseModel):
    """Quadratic connector curve: start, one control point, end."""

    start: Position
    control: Position
    end: Position

    @property
    def d(self) -> str:
        """SVG path data for the curve."""
        return (
            f"M {self.start.x:.2f} {self.start.y:.2f} "
            f"Q {self.control.x:.2f} {self.control.y:.2f} "
            f"{self.end.x:.2f} {self.end.y:.2f}"
        )

    def point_at(self, t: float) -> Position:
        """Point on the curve at parameter ``t`` in [0, 1]."""
        u = 1.0 - t
        return Position(
            x=u * u * self.start.x + 2 * u * t * self.control.x + t * t * self.end.x,
            y=u * u * self.start.y + 2 * u * t * self.control.y + t * t * self.end.y,
        )


class OverlapReport(BaseModel):
    """Outcome of one bounded overlap-repair run."""

    passes: int = 0
    moved: int = 0
    converged: bool = True
    residual_pairs: list[tuple[str, str]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Tree graph
# ---------------------------------------------------------------------------

class Node(BaseModel):
    """One track placed in the tree."""

    id: str
    track: Track
    parent_id: Optional[str] = None
    children: set[str] = Field(default_factory=set)
    depth: int = Field(default=0, ge=0)
    angle: float = 0.0
    position: Optional[Position] = None
    connection_tag: Optional[str] = None
    # Opaque id resolved by the renderer; the core never holds UI objects.
    render_handle: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class Connection(BaseModel):
    """Parent → child edge, labelled with the tag that produced the child."""

    id: str
    parent_id: str
    child_id: str
    tag: str
    color: str


class RenderedConnection(BaseModel):
    """Drawable connector: curve, label at the curve midpoint, tag color."""

    handle: str
    connection_id: str
    path: CurvedPath
    d: str
    color: str
    label: str
    label_position: Position


class RegistryChange(BaseModel):
    """Passed to registry subscribers after every successful mutation."""

    kind: Literal["added", "removed", "cleared"]
    node_ids: list[str] = Field(default_factory=list)


class TreeSnapshot(BaseModel):
    root_id: Optional[str] = None
    depth: int = 0
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    rendered: list[RenderedConnection] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Events emitted to a rendering layer
# ---------------------------------------------------------------------------

class TreeTotals(BaseModel):
    node_count: int = 0
    connection_count: int = 0


class NodeAddedEvent(TreeTotals):
    node: Node
    is_root: bool = False


class ConnectionCreatedEvent(TreeTotals):
    connection: Connection
    rendered: Optional[RenderedConnection] = None


class LayoutUpdatedEvent(TreeTotals):
    report: OverlapReport = Field(default_factory=OverlapReport)


class GenerationCompleteEvent(TreeTotals):
    root_id: Optional[str] = None
    root_title: str = ""
    cancelled: bool = False
    duration_seconds: float = 0.0
