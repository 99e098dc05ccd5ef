"""
Track Catalog — JSONL track database feeding tree growth.

One JSON object per line, one line per track, at .data/track_catalog.jsonl.
Each record carries the track's identity fields, its ``category:value`` tags,
the set of tag categories, and a ``_text`` field that is a grep-optimized
summary string.

The catalog is the bundled ``TrackSource``: the three fetch methods implement
the growth fallback tiers (exact tag, same category, whole catalog) and each
returns at most ``count`` shuffled tracks, never the excluded one.

Usage:
    catalog = TrackCatalog()
    stats   = catalog.build(tracks)
    results = catalog.search("melancholic", category="mood")
    tracks  = await catalog.fetch_related_tracks("mood:happy", exclude_track=root)
"""

from __future__ import annotations

import json
import random
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from loguru import logger

from .models import Track
from .tags import group_tags_by_category, tag_category

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_REPO_ROOT = Path(__file__).resolve().parent.parent
INDEX_PATH = _REPO_ROOT / ".data" / "track_catalog.jsonl"
_SCHEMA_VERSION = 1
DEFAULT_FETCH_COUNT = 3


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

def _build_record(track: Track, indexed_at: str = "") -> dict:
    """
    Build the catalog record for a single track.

    Pure function (no I/O).  Called by TrackCatalog.build() for every track.
    """
    record: dict[str, Any] = {
        "_schema_version": _SCHEMA_VERSION,
        "id":         track.id,
        "title":      track.title,
        "artist":     track.artist,
        "album":      track.album,
        "tags":       list(track.tags),
        "categories": sorted(group_tags_by_category(track.tags)),
        "indexed_at": indexed_at,
    }
    record["_text"] = _build_text_field(record)
    return record


def _build_text_field(record: dict) -> str:
    """
    Build the grep-optimized ``_text`` summary for a record.

    Tags keep their ``category:value`` form so a search for ``mood:`` hits
    every track with a mood tag; the bare value is added for free-text search.
    """
    parts: list[str] = []

    for key in ("artist", "title", "album"):
        if record.get(key):
            parts.append(record[key])

    for tag in record.get("tags", []):
        parts.append(tag)
        value = tag.partition(":")[2]
        if value:
            parts.append(value)

    return " ".join(p for p in parts if p)


def _as_track(item: Union[Track, dict]) -> Track:
    return item if isinstance(item, Track) else Track.model_validate(item)


# ---------------------------------------------------------------------------
# TrackCatalog
# ---------------------------------------------------------------------------

class TrackCatalog:
    """
    Builds and queries a JSONL catalog of tagged tracks.

    * **LLM grep** — the ``_text`` field is searchable with plain grep.
    * **Programmatic lookup** — ``get_by_id()`` uses an in-memory dict.
    * **Tree growth** — the ``fetch_*`` coroutines make it a TrackSource.
    """

    def __init__(
        self,
        index_path: Path = INDEX_PATH,
        count: int = DEFAULT_FETCH_COUNT,
        seed: Optional[int] = None,
    ) -> None:
        self._record_path: Path = Path(index_path)
        self.count = count
        self._rng = random.Random(seed)
        # In-memory id → record dict, populated after build() or load_from_disk()
        self._by_id: dict[str, dict] = {}
        self._built = False

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, tracks: Iterable[Union[Track, dict]]) -> dict[str, Any]:
        """
        Build (or rebuild) the JSONL catalog file from scratch.

        Tracks without an id get their 1-based position as id.  Malformed
        entries are logged and skipped.

        Returns:
            Stats dict::

                {
                    "total":      int,   # tracks written
                    "skipped":    int,
                    "categories": int,   # distinct tag categories
                    "index_path": str,
                    "built_at":   str,   # ISO-8601 UTC
                }
        """
        self._record_path.parent.mkdir(parents=True, exist_ok=True)
        self._by_id = {}

        indexed_at = datetime.now(timezone.utc).isoformat()
        total = 0
        skipped = 0
        categories: set[str] = set()

        with self._record_path.open("w", encoding="utf-8") as fh:
            for position, item in enumerate(tracks, start=1):
                try:
                    track = _as_track(item)
                    if not track.id:
                        track = track.model_copy(update={"id": str(position)})
                    record = _build_record(track, indexed_at=indexed_at)
                    fh.write(json.dumps(record, ensure_ascii=False) + "\n")
                    self._by_id[record["id"]] = record
                    categories.update(record["categories"])
                    total += 1
                except Exception as exc:
                    skipped += 1
                    logger.warning(f"TrackCatalog: skipped entry {position}: {exc}")

        self._built = True

        stats = {
            "total":      total,
            "skipped":    skipped,
            "categories": len(categories),
            "index_path": str(self._record_path),
            "built_at":   indexed_at,
        }
        logger.info(f"Track catalog built: {total} tracks, {len(categories)} tag categories → {self._record_path}")
        return stats

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str = "",
        tag: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 20,
    ) -> list[dict]:
        """
        Search the JSONL catalog using grep-style matching against ``_text``.

        Reads the file line-by-line (streaming — never loads the whole file).

        Args:
            query:     Free-text search against ``_text`` (case-insensitive).
            tag:       Exact tag the track must carry (case-insensitive).
            category:  Tag category the track must have at least one tag in.
            limit:     Maximum results to return.
        """
        if not self._record_path.exists():
            return []

        q_lower = query.lower() if query else ""
        tag_lower = tag.lower() if tag else ""
        cat_lower = category.lower() if category else ""

        results: list[dict] = []

        with self._record_path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if q_lower and q_lower not in record.get("_text", "").lower():
                    continue
                if tag_lower and tag_lower not in [t.lower() for t in record.get("tags", [])]:
                    continue
                if cat_lower and cat_lower not in [c.lower() for c in record.get("categories", [])]:
                    continue

                results.append(record)
                if len(results) >= limit:
                    break

        return results

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_by_id(self, track_id: str) -> Optional[dict]:
        """
        Return the record for a track id.

        Uses the in-memory dict when available; otherwise falls back to a
        file scan.
        """
        if self._built:
            return self._by_id.get(str(track_id))

        if not self._record_path.exists():
            return None
        with self._record_path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if record.get("id") == str(track_id):
                    return record
        return None

    def get_track(self, track_id: str) -> Optional[Track]:
        record = self.get_by_id(track_id)
        return Track.model_validate(record) if record is not None else None

    def tracks(self) -> list[Track]:
        self._ensure_loaded()
        return [Track.model_validate(r) for r in self._by_id.values()]

    def stats(self) -> dict[str, Any]:
        """Track count plus how many tracks carry each tag category."""
        self._ensure_loaded()
        per_category: Counter[str] = Counter()
        tag_count = 0
        for record in self._by_id.values():
            per_category.update(record.get("categories", []))
            tag_count += len(record.get("tags", []))
        return {
            "total":        len(self._by_id),
            "tags":         tag_count,
            "categories":   dict(per_category.most_common()),
            "index_path":   str(self._record_path),
            "fresh":        self.is_fresh(),
        }

    # ------------------------------------------------------------------
    # TrackSource
    # ------------------------------------------------------------------

    def _pick(self, records: list[dict], exclude_track: Optional[Track]) -> list[Track]:
        candidates = [Track.model_validate(r) for r in records]
        if exclude_track is not None:
            candidates = [t for t in candidates if not t.is_same_track(exclude_track)]
        self._rng.shuffle(candidates)
        return candidates[: self.count]

    async def fetch_related_tracks(self, tag: str, exclude_track: Optional[Track]) -> list[Track]:
        self._ensure_loaded()
        matches = [r for r in self._by_id.values() if tag in r.get("tags", [])]
        return self._pick(matches, exclude_track)

    async def fetch_category_tracks(self, category: str, exclude_track: Optional[Track]) -> list[Track]:
        self._ensure_loaded()
        matches = [
            r for r in self._by_id.values()
            if any(tag_category(t) == category for t in r.get("tags", []))
        ]
        return self._pick(matches, exclude_track)

    async def fetch_random_tracks(self, exclude_track: Optional[Track]) -> list[Track]:
        self._ensure_loaded()
        return self._pick(list(self._by_id.values()), exclude_track)

    # ------------------------------------------------------------------
    # Freshness & loading
    # ------------------------------------------------------------------

    def is_fresh(self, max_age_seconds: int = 3600) -> bool:
        """True if the catalog file exists and was written within ``max_age_seconds``."""
        if not self._record_path.exists():
            return False
        mtime = self._record_path.stat().st_mtime
        age = datetime.now(timezone.utc).timestamp() - mtime
        return age < max_age_seconds

    def _ensure_loaded(self) -> None:
        if not self._built:
            self.load_from_disk()

    def load_from_disk(self) -> int:
        """
        Load the existing JSONL file into memory without rebuilding it.

        Returns:
            Number of records loaded, or 0 if the file does not exist.
        """
        if not self._record_path.exists():
            return 0

        count = 0
        self._by_id = {}
        with self._record_path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    self._by_id[str(record["id"])] = record
                    count += 1
                except (json.JSONDecodeError, KeyError):
                    continue

        self._built = True
        logger.debug(f"TrackCatalog: loaded {count} records from {self._record_path}")
        return count

    def __len__(self) -> int:
        return len(self._by_id)

    def __repr__(self) -> str:
        status = f"{len(self._by_id)} records" if self._built else "not loaded"
        return f"TrackCatalog({status}, path={self._record_path})"
