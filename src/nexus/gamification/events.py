"""Point-earning event descriptors.

One model per event type, discriminated on ``event_type``. Each variant
carries exactly the payload its event has, and knows which entity it points
back to for deduplication.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from nexus.gamification.exceptions import InvalidEventError
from nexus.gamification.point_values import EventType, ResourceType


class PointEvent(BaseModel):
    """Common envelope: who earned the points, optional free-text description."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_type: str
    user_id: str = Field(min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=256)

    @property
    def kind(self) -> EventType:
        return EventType(self.event_type)

    @property
    def points_override(self) -> int | None:
        """Explicit amount, only ever set on bonus variants."""
        return None

    def resource(self) -> tuple[ResourceType | None, str | None]:
        """The triggering entity, used for the dedup key and the audit trail."""
        return None, None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe form accepted by ``parse_event``."""
        return self.model_dump(mode="json", exclude_none=True)


# --- Learning ---


class CourseEnrolled(PointEvent):
    event_type: Literal["course_enrolled"] = "course_enrolled"
    course_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.COURSE, self.course_id


class FirstEnrollment(PointEvent):
    """One-time bonus; the caller checks the enrollment count before sending it."""

    event_type: Literal["first_enrollment"] = "first_enrollment"
    points: int | None = None

    @property
    def points_override(self) -> int | None:
        return self.points


class LessonCompleted(PointEvent):
    event_type: Literal["lesson_completed"] = "lesson_completed"
    lesson_id: str
    course_id: str | None = None

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.LESSON, self.lesson_id


class CourseCompleted(PointEvent):
    event_type: Literal["course_completed"] = "course_completed"
    course_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.COURSE, self.course_id


# --- Community ---


class DiscussionCreated(PointEvent):
    event_type: Literal["discussion_created"] = "discussion_created"
    discussion_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.DISCUSSION, self.discussion_id


class CommentAdded(PointEvent):
    event_type: Literal["comment_added"] = "comment_added"
    comment_id: str | None = None
    discussion_id: str | None = None

    def resource(self) -> tuple[ResourceType | None, str | None]:
        if self.comment_id is None:
            return None, None
        return ResourceType.COMMENT, self.comment_id


# --- Showcase ---


class ProjectSubmitted(PointEvent):
    event_type: Literal["project_submitted"] = "project_submitted"
    project_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.PROJECT, self.project_id


class ProjectApproved(PointEvent):
    event_type: Literal["project_approved"] = "project_approved"
    project_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.PROJECT, self.project_id


class ProjectFeatured(PointEvent):
    event_type: Literal["project_featured"] = "project_featured"
    project_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.PROJECT, self.project_id


class FirstProject(PointEvent):
    """One-time bonus; the caller checks the project count before sending it."""

    event_type: Literal["first_project"] = "first_project"
    points: int | None = None

    @property
    def points_override(self) -> int | None:
        return self.points


# --- Shared tools ---


class ToolPublished(PointEvent):
    event_type: Literal["tool_published"] = "tool_published"
    tool_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.TOOL, self.tool_id


class ToolApproved(PointEvent):
    event_type: Literal["tool_approved"] = "tool_approved"
    tool_id: str

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.TOOL, self.tool_id


class ReviewAdded(PointEvent):
    event_type: Literal["review_added"] = "review_added"
    review_id: str
    tool_id: str | None = None

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.REVIEW, self.review_id


# --- Engagement and bonuses ---


class DailyLogin(PointEvent):
    event_type: Literal["daily_login"] = "daily_login"


class StreakBonus(PointEvent):
    event_type: Literal["streak_bonus"] = "streak_bonus"
    streak_days: int = Field(ge=1)
    points: int | None = None

    @property
    def points_override(self) -> int | None:
        return self.points


class BadgeBonus(PointEvent):
    """Bonus appended by the badge evaluator when a badge unlocks."""

    event_type: Literal["badge_bonus"] = "badge_bonus"
    badge_id: int
    badge_slug: str
    points: int

    @property
    def points_override(self) -> int | None:
        return self.points

    def resource(self) -> tuple[ResourceType | None, str | None]:
        return ResourceType.BADGE, str(self.badge_id)


class AdminBonus(PointEvent):
    """Ad-hoc grant by an administrator; always explicit and always described."""

    event_type: Literal["admin_bonus"] = "admin_bonus"
    points: int
    description: str = Field(min_length=1, max_length=256)

    @property
    def points_override(self) -> int | None:
        return self.points


AnyPointEvent = Annotated[
    Union[
        CourseEnrolled,
        FirstEnrollment,
        LessonCompleted,
        CourseCompleted,
        DiscussionCreated,
        CommentAdded,
        ProjectSubmitted,
        ProjectApproved,
        ProjectFeatured,
        FirstProject,
        ToolPublished,
        ToolApproved,
        ReviewAdded,
        DailyLogin,
        StreakBonus,
        BadgeBonus,
        AdminBonus,
    ],
    Field(discriminator="event_type"),
]

_event_adapter: TypeAdapter[PointEvent] = TypeAdapter(AnyPointEvent)


def parse_event(data: Mapping[str, Any]) -> PointEvent:
    """Validate an untyped payload into its event variant.

    Raises:
        InvalidEventError: unknown ``event_type`` or a payload that does not fit it.
    """
    try:
        return _event_adapter.validate_python(dict(data))
    except PydanticValidationError as e:
        raise InvalidEventError(f"Invalid point event: {e}") from e
