"""Immutable records passed across the storage interface."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from nexus.gamification.point_values import EventType, ResourceCountKind, ResourceType


class RequirementKind(str, enum.Enum):
    """What a badge threshold is measured against."""

    POINTS = "points"
    LEVEL = "level"
    RESOURCE_COUNT = "resource_count"
    EVENT_COUNT = "event_count"


class AwardStatus(str, enum.Enum):
    AWARDED = "awarded"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class NewTransaction:
    """A transaction about to be appended; ``dedup_key`` is None for repeatable events."""

    user_id: str
    event_type: EventType
    points: int
    created_at: datetime
    resource_type: ResourceType | None = None
    resource_id: str | None = None
    description: str | None = None
    dedup_key: str | None = None


@dataclass(frozen=True)
class PointTransaction:
    id: int
    user_id: str
    event_type: EventType
    points: int
    created_at: datetime
    resource_type: ResourceType | None = None
    resource_id: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class UserPointsSummary:
    user_id: str
    total_points: int
    level: int
    updated_at: datetime


@dataclass(frozen=True)
class PointsAndLevel:
    """Read-side view: level and progress recomputed from the total."""

    user_id: str
    total_points: int
    level: int
    level_progress: float
    next_level_threshold: int | None


@dataclass(frozen=True)
class AppendOutcome:
    """Result of appending a transaction together with the summary increment it caused."""

    transaction: PointTransaction
    summary: UserPointsSummary


@dataclass(frozen=True)
class BadgeRequirement:
    kind: RequirementKind
    threshold: int
    target: ResourceCountKind | EventType | None = None


@dataclass(frozen=True)
class BadgeDefinition:
    id: int
    slug: str
    name: str
    description: str
    icon: str
    category: str
    requirement: BadgeRequirement
    points: int = 0
    sort_order: int = 0


@dataclass(frozen=True)
class BadgeGrant:
    """A badge newly inserted for a user, with its bonus transaction when it carries points."""

    earned_at: datetime
    bonus: AppendOutcome | None = None


@dataclass(frozen=True)
class EarnedBadge:
    badge: BadgeDefinition
    earned_at: datetime


@dataclass(frozen=True)
class BadgeCatalogEntry:
    badge: BadgeDefinition
    earned_count: int


@dataclass(frozen=True)
class LeaderboardEntry:
    """Projection of a summary row plus the user's display fields; rank is 1-based."""

    rank: int
    user_id: str
    total_points: int
    level: int
    updated_at: datetime
    user_name: str | None = None
    user_image: str | None = None


@dataclass(frozen=True)
class SummaryAudit:
    user_id: str
    summary_total: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.summary_total == self.ledger_total


@dataclass(frozen=True)
class AwardResult:
    """Outcome of an award, kept separate from the outcome of the action that triggered it."""

    status: AwardStatus
    user_id: str
    event_type: EventType | None = None
    transaction: PointTransaction | None = None
    total_points: int | None = None
    level: int | None = None
    previous_level: int | None = None
    new_badges: list[EarnedBadge] = field(default_factory=list)
    error: Exception | None = None
    retryable: bool = False
    retry_enqueued: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not AwardStatus.FAILED

    @property
    def leveled_up(self) -> bool:
        if self.level is None or self.previous_level is None:
            return False
        return self.level > self.previous_level

    @classmethod
    def failed(
        cls,
        user_id: str,
        error: Exception,
        event_type: EventType | None = None,
        retryable: bool = False,
    ) -> AwardResult:
        return cls(
            status=AwardStatus.FAILED,
            user_id=user_id,
            event_type=event_type,
            error=error,
            retryable=retryable,
        )
