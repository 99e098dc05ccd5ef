"""
Tag parsing, category priorities, tag colors and representative-tag selection.

Tags are ``category:value`` strings (``mood:happy``, ``energy:high``).  A tag
without a colon is filed under the ``other`` category.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from loguru import logger

DEFAULT_CATEGORY = "other"
DIRECT_TAG = "direct"

# ---------------------------------------------------------------------------
# Category tables  (display constants, not user data)
# ---------------------------------------------------------------------------

# Expansion priority: higher categories drive tree growth first.
CATEGORY_PRIORITY: dict[str, int] = {
    "mood":      3,
    "energy":    3,
    "emotion":   2,
    "style":     2,
    "vibe":      2,
    "occasion":  1,
    "tempo":     1,
    "weather":   1,
    "intensity": 1,
    "rating":    0,
}

TAG_COLORS: dict[str, str] = {
    "emotion":   "#ff6b6b",
    "energy":    "#4ecdc4",
    "mood":      "#45b7d1",
    "style":     "#96ceb4",
    "occasion":  "#feca57",
    "weather":   "#ff9ff3",
    "intensity": "#54a0ff",
    "rating":    "#5f27cd",
    "tempo":     "#00d2d3",
    "vibe":      "#ff6348",
    "genre":     "#2ed573",
    "era":       "#ffa502",
    "source":    "#747d8c",
    "format":    "#a4b0be",
    "quality":   "#57606f",
    "bitrate":   "#2f3542",
}

# Fixed saturation/lightness band for hash-derived colors.
HASH_SATURATION = 65
HASH_LIGHTNESS = 58

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class ParsedTag(NamedTuple):
    category: str
    value: str
    is_valid: bool


def parse_tag(tag: str) -> ParsedTag:
    """Split ``category:value``; everything after the first colon is the value."""
    if not tag or not isinstance(tag, str):
        return ParsedTag("", tag or "", False)
    category, sep, value = tag.partition(":")
    if not sep:
        return ParsedTag(DEFAULT_CATEGORY, tag.strip(), False)
    return ParsedTag(category.strip(), value.strip(), True)


def tag_category(tag: str) -> str:
    return parse_tag(tag).category


def tag_value(tag: str) -> str:
    return parse_tag(tag).value


def group_tags_by_category(tags: list[str]) -> dict[str, list[str]]:
    """Group full tags by category, preserving first-seen order of both."""
    grouped: dict[str, list[str]] = {}
    for tag in tags:
        grouped.setdefault(tag_category(tag), []).append(tag)
    return grouped


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------

def _fnv1a(text: str) -> int:
    h = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def hash_color(text: str) -> str:
    """Stable HSL color for ``text``: same input, same color, on every run."""
    hue = _fnv1a(text) % 360
    return f"hsl({hue}, {HASH_SATURATION}%, {HASH_LIGHTNESS}%)"


def color_for_tag(tag: str) -> str:
    """Palette color for known categories, hash-derived color for the rest."""
    category = tag_category(tag) or DEFAULT_CATEGORY
    return TAG_COLORS.get(category) or hash_color(category)


# ---------------------------------------------------------------------------
# TagSelector
# ---------------------------------------------------------------------------

class TagSelector:
    """Picks the tags a track expands through."""

    def __init__(self, priorities: Optional[dict[str, int]] = None) -> None:
        self.priorities = dict(CATEGORY_PRIORITY if priorities is None else priorities)

    def score(self, category: str) -> int:
        return self.priorities.get(category, 0)

    def select_representative_tags(
        self,
        tags: list[str],
        exclude_tag: Optional[str] = None,
        max_categories: int = 3,
    ) -> list[str]:
        """
        One tag per top-scoring category.

        Categories are ranked by priority (ties keep first-seen order), the top
        ``max_categories`` contribute their first tag, and ``exclude_tag`` (the
        tag that created the node being expanded) is dropped so a node never
        re-expands through its own connection.

        Returns an empty list when nothing is left; that ends the branch.
        """
        if not tags or max_categories <= 0:
            return []

        grouped = group_tags_by_category(tags)
        ranked = sorted(grouped.items(), key=lambda item: -self.score(item[0]))
        selected = [category_tags[0] for _, category_tags in ranked[:max_categories]]

        if exclude_tag is not None and exclude_tag in selected:
            selected = [t for t in selected if t != exclude_tag]

        logger.debug(f"Representative tags (max {max_categories}, exclude {exclude_tag!r}): {selected}")
        return selected
