"""Point values, event types and the rules object shared by every read and write path.

The ledger (including the cached ``level`` on the summary row), the SQL level
expression and the read-side recomputation all consult the same
``PointRules`` instance, so a cached level is always reproducible from the
total alone.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType

from nexus.config import Settings, get_settings
from nexus.gamification.level_thresholds import LEVEL_THRESHOLDS, validate_thresholds


class EventType(str, enum.Enum):
    """Closed set of point-earning events."""

    COURSE_ENROLLED = "course_enrolled"
    FIRST_ENROLLMENT = "first_enrollment"
    LESSON_COMPLETED = "lesson_completed"
    COURSE_COMPLETED = "course_completed"
    DISCUSSION_CREATED = "discussion_created"
    COMMENT_ADDED = "comment_added"
    PROJECT_SUBMITTED = "project_submitted"
    PROJECT_APPROVED = "project_approved"
    PROJECT_FEATURED = "project_featured"
    FIRST_PROJECT = "first_project"
    TOOL_PUBLISHED = "tool_published"
    TOOL_APPROVED = "tool_approved"
    REVIEW_ADDED = "review_added"
    DAILY_LOGIN = "daily_login"
    STREAK_BONUS = "streak_bonus"
    BADGE_BONUS = "badge_bonus"
    ADMIN_BONUS = "admin_bonus"


class ResourceType(str, enum.Enum):
    """Entity kinds a transaction can point back to."""

    COURSE = "course"
    LESSON = "lesson"
    DISCUSSION = "discussion"
    COMMENT = "comment"
    PROJECT = "project"
    TOOL = "tool"
    REVIEW = "review"
    BADGE = "badge"


class ResourceCountKind(str, enum.Enum):
    """Per-user counts owned by the community subsystems, used by badge requirements."""

    ENROLLMENTS = "enrollments"
    LESSONS_COMPLETED = "lessons_completed"
    COURSES_COMPLETED = "courses_completed"
    DISCUSSIONS = "discussions"
    COMMENTS = "comments"
    PROJECTS = "projects"
    PROJECTS_APPROVED = "projects_approved"
    PROJECTS_FEATURED = "projects_featured"
    TOOLS = "tools"
    TOOLS_APPROVED = "tools_approved"
    REVIEWS = "reviews"


POINT_VALUES: dict[EventType, int] = {
    EventType.COURSE_ENROLLED: 10,
    EventType.LESSON_COMPLETED: 5,
    EventType.COURSE_COMPLETED: 50,
    EventType.DISCUSSION_CREATED: 15,
    EventType.COMMENT_ADDED: 5,
    EventType.PROJECT_SUBMITTED: 20,
    EventType.PROJECT_APPROVED: 30,
    EventType.PROJECT_FEATURED: 50,
    EventType.TOOL_PUBLISHED: 20,
    EventType.TOOL_APPROVED: 30,
    EventType.REVIEW_ADDED: 10,
    EventType.DAILY_LOGIN: 5,
    EventType.FIRST_ENROLLMENT: 25,
    EventType.FIRST_PROJECT: 25,
    EventType.STREAK_BONUS: 10,
}

# Bonus types may carry an explicit point amount; badge and admin bonuses must.
BONUS_EVENT_TYPES: frozenset[EventType] = frozenset({
    EventType.FIRST_ENROLLMENT,
    EventType.FIRST_PROJECT,
    EventType.STREAK_BONUS,
    EventType.BADGE_BONUS,
    EventType.ADMIN_BONUS,
})

# At most one transaction per (user, event type, resource type, resource id).
DEDUPLICATED_EVENT_TYPES: frozenset[EventType] = frozenset({
    EventType.COURSE_ENROLLED,
    EventType.FIRST_ENROLLMENT,
    EventType.LESSON_COMPLETED,
    EventType.COURSE_COMPLETED,
    EventType.PROJECT_APPROVED,
    EventType.PROJECT_FEATURED,
    EventType.FIRST_PROJECT,
    EventType.TOOL_APPROVED,
    EventType.BADGE_BONUS,
})

DEFAULT_DESCRIPTIONS: dict[EventType, str] = {
    EventType.COURSE_ENROLLED: "Enrolled in a course",
    EventType.LESSON_COMPLETED: "Completed a lesson",
    EventType.COURSE_COMPLETED: "Completed a course",
    EventType.DISCUSSION_CREATED: "Started a discussion",
    EventType.COMMENT_ADDED: "Added a comment",
    EventType.PROJECT_SUBMITTED: "Submitted a project",
    EventType.PROJECT_APPROVED: "Project was approved",
    EventType.PROJECT_FEATURED: "Project was featured",
    EventType.TOOL_PUBLISHED: "Published a tool",
    EventType.TOOL_APPROVED: "Tool was approved",
    EventType.REVIEW_ADDED: "Added a review",
    EventType.DAILY_LOGIN: "Daily login bonus",
    EventType.FIRST_ENROLLMENT: "First course enrollment bonus",
    EventType.FIRST_PROJECT: "First project submission bonus",
    EventType.STREAK_BONUS: "Login streak bonus",
    EventType.BADGE_BONUS: "Badge earned",
    EventType.ADMIN_BONUS: "Bonus points",
}


def build_dedup_key(
    user_id: str,
    event_type: EventType,
    resource_type: ResourceType | None,
    resource_id: str | None,
) -> str:
    """Idempotency key stored in the UNIQUE ``point_transactions.dedup_key`` column."""
    rtype = resource_type.value if resource_type is not None else "-"
    return f"{user_id}:{event_type.value}:{rtype}:{resource_id or '-'}"


@dataclass(frozen=True)
class PointRules:
    """Point table plus level curve; one instance per process."""

    point_values: Mapping[EventType, int] = field(default_factory=lambda: MappingProxyType(dict(POINT_VALUES)))
    level_thresholds: tuple[int, ...] = LEVEL_THRESHOLDS
    deduplicated: frozenset[EventType] = DEDUPLICATED_EVENT_TYPES

    def __post_init__(self) -> None:
        validate_thresholds(self.level_thresholds)

    def standard_points(self, event_type: EventType) -> int | None:
        """Configured value for an event type, None for explicit-only bonuses."""
        return self.point_values.get(event_type)

    def is_deduplicated(self, event_type: EventType) -> bool:
        return event_type in self.deduplicated

    @classmethod
    def from_settings(cls, settings: Settings) -> PointRules:
        """Merge settings overrides over the built-in table and curve."""
        values = dict(POINT_VALUES)
        for name, points in settings.point_value_overrides.items():
            try:
                event_type = EventType(name)
            except ValueError:
                msg = f"Unknown event type in point_value_overrides: {name!r}"
                raise ValueError(msg) from None
            values[event_type] = points

        thresholds: Sequence[int] = settings.level_thresholds or LEVEL_THRESHOLDS
        return cls(
            point_values=MappingProxyType(values),
            level_thresholds=tuple(thresholds),
        )


@lru_cache
def get_point_rules() -> PointRules:
    """Get the cached rules built from application settings."""
    return PointRules.from_settings(get_settings())
