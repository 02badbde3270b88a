"""Gamification engine: points ledger, levels, badges and leaderboard."""

from nexus.gamification.engine import GamificationEngine, build_engine
from nexus.gamification.events import PointEvent, parse_event
from nexus.gamification.exceptions import (
    GamificationError,
    InvalidAwardError,
    InvalidEventError,
    StorageError,
    UserNotFoundError,
)
from nexus.gamification.point_values import EventType, PointRules, get_point_rules
from nexus.gamification.types import AwardResult, AwardStatus

__all__ = [
    "AwardResult",
    "AwardStatus",
    "EventType",
    "GamificationEngine",
    "GamificationError",
    "InvalidAwardError",
    "InvalidEventError",
    "PointEvent",
    "PointRules",
    "StorageError",
    "UserNotFoundError",
    "build_engine",
    "get_point_rules",
    "parse_event",
]
