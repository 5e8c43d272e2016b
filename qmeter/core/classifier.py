"""
Noise categories.

classify() maps a display level and a ThresholdSet onto one of five categories:

    level <= 5                    -> SILENT
    5 < level < moderate          -> QUIET
    moderate <= level < loud      -> MODERATE
    loud <= level < excessive     -> LOUD
    level >= excessive            -> EXCESSIVE

The silence floor is fixed and independent of the configurable thresholds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

__all__ = [
    "SILENCE_FLOOR",
    "NoiseCategory",
    "ThresholdSet",
    "DEFAULT_THRESHOLDS",
    "THRESHOLD_RANGES",
    "slider_range",
    "classify",
    "category_label",
]

SILENCE_FLOOR: float = 5.0


class NoiseCategory(str, Enum):
    SILENT = "silent"
    QUIET = "quiet"
    MODERATE = "moderate"
    LOUD = "loud"
    EXCESSIVE = "excessive"


@dataclass(frozen=True, slots=True)
class ThresholdSet:
    """Three ordered boundaries on the 0..100 scale."""

    moderate: float = 30
    loud: float = 60
    excessive: float = 85

    def validate(self) -> ThresholdSet:
        if not 0 <= self.moderate < self.loud < self.excessive <= 100:
            raise ValueError(
                "thresholds must satisfy 0 <= moderate < loud < excessive <= 100 "
                f"(got {self.moderate}, {self.loud}, {self.excessive})"
            )
        return self

    def replace(self, name: str, value: float) -> ThresholdSet:
        """Return a validated copy with one boundary changed."""
        if name not in ("moderate", "loud", "excessive"):
            raise KeyError(name)
        values = {"moderate": self.moderate, "loud": self.loud, "excessive": self.excessive}
        values[name] = value
        return ThresholdSet(**values).validate()


DEFAULT_THRESHOLDS = ThresholdSet()

# Slider bounds offered by the threshold controls
THRESHOLD_RANGES: dict[str, tuple[int, int]] = {
    "moderate": (10, 40),
    "loud": (40, 70),
    "excessive": (70, 95),
}


def slider_range(name: str, value: float) -> tuple[int, int]:
    """Slider bounds for `name`, widened to include a configured `value` outside them."""
    low, high = THRESHOLD_RANGES[name]
    return min(low, math.floor(value)), max(high, math.ceil(value))


_LABELS = {
    NoiseCategory.SILENT: "Silent",
    NoiseCategory.QUIET: "Quiet",
    NoiseCategory.MODERATE: "Moderate",
    NoiseCategory.LOUD: "Very Noisy",
    NoiseCategory.EXCESSIVE: "Too Loud!",
}


def classify(level: float, thresholds: ThresholdSet = DEFAULT_THRESHOLDS) -> NoiseCategory:
    if level >= thresholds.excessive:
        return NoiseCategory.EXCESSIVE
    if level >= thresholds.loud:
        return NoiseCategory.LOUD
    if level >= thresholds.moderate:
        return NoiseCategory.MODERATE
    if level > SILENCE_FLOOR:
        return NoiseCategory.QUIET
    return NoiseCategory.SILENT


def category_label(category: NoiseCategory) -> str:
    """Human-readable label shown next to the meter."""
    return _LABELS[category]
