"""Level thresholds and computation.

``level(points) = 1 + max{i : t_i <= points}`` over a strictly increasing
threshold table starting at 0, so every user is at least level 1.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass

LEVEL_THRESHOLDS: tuple[int, ...] = (
    0,  # Level 1
    100,  # Level 2
    250,  # Level 3
    500,  # Level 4
    1000,  # Level 5
    2000,  # Level 6
    3500,  # Level 7
    5000,  # Level 8
    7500,  # Level 9
    10000,  # Level 10
)


@dataclass(frozen=True)
class LevelInfo:
    """Level position for a point total."""

    level: int
    progress: float
    current_threshold: int
    next_threshold: int | None
    points_into_level: int
    points_for_level: int

    @property
    def is_max_level(self) -> bool:
        return self.next_threshold is None


def validate_thresholds(thresholds: Sequence[int]) -> None:
    """Raise ValueError unless thresholds start at 0 and strictly increase."""
    if not thresholds or thresholds[0] != 0:
        msg = "Level thresholds must start at 0"
        raise ValueError(msg)
    for lower, upper in zip(thresholds, thresholds[1:]):
        if upper <= lower:
            msg = f"Level thresholds must be strictly increasing ({lower} >= {upper})"
            raise ValueError(msg)


def calculate_level(points: int, thresholds: Sequence[int] = LEVEL_THRESHOLDS) -> int:
    """1-indexed level for a point total. Negative totals stay at level 1."""
    return max(bisect_right(thresholds, points), 1)


def next_level_threshold(level: int, thresholds: Sequence[int] = LEVEL_THRESHOLDS) -> int | None:
    """Points needed for the level after ``level``, None at max level."""
    if level >= len(thresholds):
        return None
    return thresholds[level]


def level_progress(points: int, thresholds: Sequence[int] = LEVEL_THRESHOLDS) -> float:
    """Percent progress from the current threshold to the next; 0 at max level."""
    level = calculate_level(points, thresholds)
    upper = next_level_threshold(level, thresholds)
    if upper is None:
        return 0.0
    lower = thresholds[level - 1]
    progress = (points - lower) / (upper - lower) * 100
    return min(max(progress, 0.0), 100.0)


def compute_level(points: int, thresholds: Sequence[int] = LEVEL_THRESHOLDS) -> LevelInfo:
    """Compute full level info from a point total."""
    level = calculate_level(points, thresholds)
    current = thresholds[level - 1]
    upper = next_level_threshold(level, thresholds)

    return LevelInfo(
        level=level,
        progress=level_progress(points, thresholds),
        current_threshold=current,
        next_threshold=upper,
        points_into_level=max(points - current, 0),
        points_for_level=(upper - current) if upper is not None else 0,
    )
