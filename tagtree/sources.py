"""
Collaborators the growth core consumes: a track source and an exclusion rule.

``TrackCatalog`` (library_index.py) is the bundled TrackSource; any object
with the same async methods works.
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol, runtime_checkable

from .models import Track
from .registry import NodeRegistry


@runtime_checkable
class TrackSource(Protocol):
    async def fetch_related_tracks(self, tag: str, exclude_track: Optional[Track]) -> list[Track]:
        """Tracks carrying ``tag``; an empty list is valid and triggers fallback."""
        ...

    async def fetch_category_tracks(self, category: str, exclude_track: Optional[Track]) -> list[Track]:
        """Tracks with any tag in ``category`` (first fallback tier)."""
        ...

    async def fetch_random_tracks(self, exclude_track: Optional[Track]) -> list[Track]:
        """Random tracks from the whole catalog (last fallback tier)."""
        ...


@runtime_checkable
class ExclusionPolicy(Protocol):
    def should_exclude(self, track: Track) -> bool:
        ...


class NoExclusion:
    def should_exclude(self, track: Track) -> bool:
        return False


class TreeExclusionPolicy:
    """Excludes tracks already in the tree or in the active playlist."""

    def __init__(self, registry: NodeRegistry, playlist: Optional[Iterable[Track]] = None) -> None:
        self.registry = registry
        self._playlist: set[tuple[str, str, str]] = {t.identity for t in playlist or []}

    def set_playlist(self, tracks: Iterable[Track]) -> None:
        self._playlist = {t.identity for t in tracks}

    def should_exclude(self, track: Track) -> bool:
        return track.identity in self._playlist or self.registry.contains_track(track)
