"""
Shared fixtures for the tag tree test suite.

Growth tests run with ``time_scale=0`` so every staggered step fires on the
next loop iteration; ordering is still decided by the scheduled delays.
"""

from __future__ import annotations

from typing import Optional

import pytest

from tagtree.config import LevelConfig, TreeConfig
from tagtree.connections import ConnectionRenderer
from tagtree.events import EventRecorder, TreeEvents
from tagtree.growth import TreeGrowthOrchestrator
from tagtree.layout import LayoutEngine
from tagtree.models import Track
from tagtree.registry import NodeRegistry
from tagtree.scheduler import GrowthScheduler
from tagtree.sources import TreeExclusionPolicy
from tagtree.tags import tag_category


def make_track(title: str, *tags: str, artist: str = "Artist", album: str = "") -> Track:
    return Track(title=title, artist=artist, album=album, tags=list(tags))


class FakeSource:
    """In-memory TrackSource with per-tier answers and a call log."""

    def __init__(
        self,
        related: Optional[dict[str, list[Track]]] = None,
        random_tracks: Optional[list[Track]] = None,
        by_category: Optional[dict[str, list[Track]]] = None,
        fail_related: bool = False,
    ) -> None:
        self.related = related or {}
        self.by_category = by_category
        self.random_tracks = random_tracks or []
        self.fail_related = fail_related
        self.calls: list[tuple[str, str]] = []

    async def fetch_related_tracks(self, tag, exclude_track):
        self.calls.append(("related", tag))
        if self.fail_related:
            raise RuntimeError("source offline")
        return [t for t in self.related.get(tag, []) if not t.is_same_track(exclude_track)]

    async def fetch_category_tracks(self, category, exclude_track):
        self.calls.append(("category", category))
        if self.by_category is not None:
            tracks = self.by_category.get(category, [])
        else:
            tracks = [
                t for tracks in self.related.values() for t in tracks
                if any(tag_category(tag) == category for tag in t.tags)
            ]
        return [t for t in tracks if not t.is_same_track(exclude_track)]

    async def fetch_random_tracks(self, exclude_track):
        self.calls.append(("random", ""))
        return [t for t in self.random_tracks if not t.is_same_track(exclude_track)]


class GrowthHarness:
    """Orchestrator wired the way TagTreeService wires it, with an event recorder."""

    def __init__(self, source, config: TreeConfig) -> None:
        self.config = config
        self.registry = NodeRegistry()
        self.layout = LayoutEngine(self.registry, config)
        self.renderer = ConnectionRenderer(config)
        self.scheduler = GrowthScheduler(time_scale=config.time_scale)
        self.events = TreeEvents()
        self.recorder = EventRecorder()
        self.events.add_listener(self.recorder)
        self.orchestrator = TreeGrowthOrchestrator(
            registry=self.registry,
            layout=self.layout,
            renderer=self.renderer,
            source=source,
            exclusion=TreeExclusionPolicy(self.registry),
            scheduler=self.scheduler,
            events=self.events,
            config=config,
        )


@pytest.fixture
def fast_config() -> TreeConfig:
    """Two levels, 2 tags on the ring and 1 per fan, no pacing."""
    return TreeConfig(
        time_scale=0,
        levels={1: LevelConfig(tags_per_level=2), 2: LevelConfig(tags_per_level=1)},
    )


@pytest.fixture
def registry() -> NodeRegistry:
    return NodeRegistry()
