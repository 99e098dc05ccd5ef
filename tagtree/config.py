"""
Tree growth and layout configuration.

Defaults reproduce the tuned values of the desktop app: a 2-level tree with
5 tags on the first ring and 3 per fan on the second, 80px nodes with 30px
clearance, and 400/150 ms reveal pacing.

Angles are configured in degrees; everything downstream works in radians.
"""

from __future__ import annotations

import math
import os
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field


class LevelConfig(BaseModel):
    tags_per_level: int = Field(default=3, ge=0)


DEFAULT_LEVELS: dict[int, LevelConfig] = {
    1: LevelConfig(tags_per_level=5),   # full ring around the root
    2: LevelConfig(tags_per_level=3),   # one semi-circle fan per level-1 node
}


class TreeConfig(BaseModel):
    # ------------------------------------------------------------------
    # Growth
    # ------------------------------------------------------------------
    max_levels: int = Field(default=2, ge=0)
    branches_per_tag: int = Field(default=1, ge=0)
    default_tags_per_level: int = Field(default=5, ge=0)
    levels: dict[int, LevelConfig] = Field(
        default_factory=lambda: {k: v.model_copy() for k, v in DEFAULT_LEVELS.items()}
    )

    # Pacing (milliseconds). time_scale multiplies every delay; 0 disables pacing.
    animation_delay: float = Field(default=400.0, ge=0)
    branch_delay: float = Field(default=150.0, ge=0)
    tag_stagger: float = Field(default=200.0, ge=0)
    time_scale: float = Field(default=1.0, ge=0)

    # ------------------------------------------------------------------
    # Canvas & layout
    # ------------------------------------------------------------------
    canvas_width: float = 1200.0
    canvas_height: float = 900.0
    root_margin: float = 150.0

    node_radius: float = 40.0
    collision_padding: float = 30.0
    # Parent → child distance by parent depth; the last entry covers deeper levels.
    level_distances: list[float] = Field(default_factory=lambda: [180.0, 120.0, 100.0])
    angle_spread: float = 180.0          # degrees, fan of a level-1 node
    deep_angle_spread: float = 30.0      # degrees, fan of deeper nodes
    validate_positions: bool = True

    # ------------------------------------------------------------------
    # Collision search & repair
    # ------------------------------------------------------------------
    max_attempts: int = 20
    search_angle_step: float = 18.0      # degrees
    distance_steps: int = 5
    distance_step: float = 20.0
    overflow_offset: float = 100.0
    max_repair_passes: int = 5
    repair_buffer: float = 10.0

    # ------------------------------------------------------------------
    # Connectors
    # ------------------------------------------------------------------
    curve_factor: float = 0.15

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def min_distance(self) -> float:
        """Minimum center-to-center distance between any two nodes."""
        return self.node_radius * 2 + self.collision_padding

    @property
    def canvas_center(self) -> tuple[float, float]:
        return self.canvas_width / 2, self.canvas_height / 2

    def tags_per_level(self, level: int) -> int:
        cfg = self.levels.get(level)
        return cfg.tags_per_level if cfg is not None else self.default_tags_per_level

    def distance_for_depth(self, parent_depth: int) -> float:
        if not self.level_distances:
            return 100.0
        return self.level_distances[min(parent_depth, len(self.level_distances) - 1)]

    def spread_for_depth(self, parent_depth: int) -> float:
        """Fan width in radians for the children of a node at ``parent_depth`` (≥ 1)."""
        degrees = self.angle_spread if parent_depth <= 1 else self.deep_angle_spread
        return math.radians(degrees)

    def delay_seconds(self, milliseconds: float) -> float:
        return max(0.0, milliseconds) / 1000.0 * self.time_scale

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, prefix: str = "TAGTREE_") -> "TreeConfig":
        """
        Build a config from ``TAGTREE_*`` environment variables.

        Unset variables keep their defaults; unparsable values are logged and ignored.
        """
        fields = {
            "MAX_LEVELS": ("max_levels", int),
            "BRANCHES_PER_TAG": ("branches_per_tag", int),
            "ANIMATION_DELAY": ("animation_delay", float),
            "BRANCH_DELAY": ("branch_delay", float),
            "TIME_SCALE": ("time_scale", float),
            "CANVAS_WIDTH": ("canvas_width", float),
            "CANVAS_HEIGHT": ("canvas_height", float),
        }
        values: dict[str, object] = {}
        for suffix, (name, cast) in fields.items():
            raw: Optional[str] = os.environ.get(prefix + suffix)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[name] = cast(raw)
            except ValueError:
                logger.warning(f"Ignoring {prefix}{suffix}={raw!r}: not a valid {cast.__name__}")
        return cls(**values)
