"""Points ledger: validated, deduplicated, atomically summarized awards.

An award appends one transaction and increments the user's summary in a
single storage operation, then hands the user to the badge evaluator.
Everything after the ledger write is best-effort: a failed level-up publish
or badge evaluation is logged, and the award still counts.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from nexus.gamification.events import PointEvent, parse_event
from nexus.gamification.exceptions import InvalidEventError, UserNotFoundError
from nexus.gamification.level_thresholds import calculate_level, level_progress, next_level_threshold
from nexus.gamification.notifications import GamificationPublisher
from nexus.gamification.point_values import (
    BONUS_EVENT_TYPES,
    DEFAULT_DESCRIPTIONS,
    PointRules,
    build_dedup_key,
    get_point_rules,
)
from nexus.gamification.repository import GamificationRepository
from nexus.gamification.types import (
    AwardResult,
    AwardStatus,
    EarnedBadge,
    NewTransaction,
    PointsAndLevel,
    PointTransaction,
    SummaryAudit,
)

logger = logging.getLogger(__name__)


class BadgeEvaluator(Protocol):
    async def evaluate_badges(self, user_id: str) -> list[EarnedBadge]: ...


def build_transaction(event: PointEvent, rules: PointRules, now: datetime) -> NewTransaction:
    """Resolve points, dedup key and description for an event.

    Raises:
        InvalidEventError: unknown type, an override on a standard type, or a
            bonus type with no configured value and no explicit amount.
    """
    try:
        kind = event.kind
    except ValueError:
        msg = f"Unknown event type: {event.event_type!r}"
        raise InvalidEventError(msg) from None

    override = event.points_override
    if override is not None and kind not in BONUS_EVENT_TYPES:
        msg = f"Explicit points are only accepted for bonus events, not {kind.value}"
        raise InvalidEventError(msg)

    points = override if override is not None else rules.standard_points(kind)
    if points is None:
        msg = f"{kind.value} requires an explicit point amount"
        raise InvalidEventError(msg)

    resource_type, resource_id = event.resource()
    dedup_key = None
    if rules.is_deduplicated(kind):
        dedup_key = build_dedup_key(event.user_id, kind, resource_type, resource_id)

    return NewTransaction(
        user_id=event.user_id,
        event_type=kind,
        points=points,
        created_at=now,
        resource_type=resource_type,
        resource_id=resource_id,
        description=event.description or DEFAULT_DESCRIPTIONS[kind],
        dedup_key=dedup_key,
    )


class PointsLedger:
    """Append-only point awards plus the read paths over the summary and history."""

    def __init__(
        self,
        repository: GamificationRepository,
        rules: PointRules | None = None,
        publisher: GamificationPublisher | None = None,
        evaluator: BadgeEvaluator | None = None,
    ) -> None:
        self.repository = repository
        self.rules = rules or get_point_rules()
        self.publisher = publisher or GamificationPublisher(None)
        self.evaluator = evaluator

    async def award_points(self, event: PointEvent | Mapping[str, Any]) -> AwardResult:
        """Record one point-earning event.

        Returns an AWARDED result, or DUPLICATE when the event's dedup key was
        already recorded (a no-op success).

        Raises:
            InvalidEventError: the event is malformed or not awardable.
            UserNotFoundError: ``event.user_id`` does not exist.
            StorageError: the ledger write failed; nothing was applied.
        """
        if isinstance(event, Mapping):
            event = parse_event(event)
        if not isinstance(event, PointEvent):
            msg = f"Expected a point event, got {type(event).__name__}"
            raise InvalidEventError(msg)

        new = build_transaction(event, self.rules, datetime.now(timezone.utc))
        user_id = new.user_id

        if not await self.repository.user_exists(user_id):
            raise UserNotFoundError(user_id)

        outcome = await self.repository.append_transaction(new)
        if outcome is None:
            logger.info("Duplicate %s award for user %s ignored", new.event_type.value, user_id)
            summary = await self.repository.get_summary(user_id)
            return AwardResult(
                status=AwardStatus.DUPLICATE,
                user_id=user_id,
                event_type=new.event_type,
                total_points=summary.total_points if summary else 0,
                level=summary.level if summary else 1,
            )

        thresholds = self.rules.level_thresholds
        total = outcome.summary.total_points
        level = outcome.summary.level
        previous_level = calculate_level(total - new.points, thresholds)
        logger.info(
            "Awarded %d points to user %s for %s (total %d)",
            new.points, user_id, new.event_type.value, total,
        )

        if level > previous_level:
            logger.info("User %s leveled up: %d -> %d", user_id, previous_level, level)
            await self.publisher.publish_level_up(user_id, previous_level, level, total)

        new_badges: list[EarnedBadge] = []
        if self.evaluator is not None:
            try:
                new_badges = await self.evaluator.evaluate_badges(user_id)
                if new_badges:
                    latest = await self.repository.get_summary(user_id)
                    if latest is not None:
                        total, level = latest.total_points, latest.level
            except Exception:
                logger.warning("Badge evaluation failed for user %s", user_id, exc_info=True)

        return AwardResult(
            status=AwardStatus.AWARDED,
            user_id=user_id,
            event_type=new.event_type,
            transaction=outcome.transaction,
            total_points=total,
            level=level,
            previous_level=previous_level,
            new_badges=new_badges,
        )

    async def get_user_points_and_level(self, user_id: str) -> PointsAndLevel:
        """Current total with level and progress recomputed from it. Read-only."""
        summary = await self.repository.get_summary(user_id)
        total = summary.total_points if summary else 0
        thresholds = self.rules.level_thresholds
        level = calculate_level(total, thresholds)
        return PointsAndLevel(
            user_id=user_id,
            total_points=total,
            level=level,
            level_progress=level_progress(total, thresholds),
            next_level_threshold=next_level_threshold(level, thresholds),
        )

    async def get_recent_point_transactions(self, user_id: str, limit: int = 20) -> list[PointTransaction]:
        """Most recent ``limit`` transactions, newest first."""
        if limit <= 0:
            return []
        return await self.repository.list_transactions(user_id, limit)

    async def audit_summary(self, user_id: str) -> SummaryAudit:
        """Compare the cached total with the ledger sum. Never rewrites the summary."""
        summary = await self.repository.get_summary(user_id)
        ledger_total = await self.repository.ledger_total(user_id)
        audit = SummaryAudit(
            user_id=user_id,
            summary_total=summary.total_points if summary else 0,
            ledger_total=ledger_total,
        )
        if not audit.consistent:
            logger.error(
                "Summary drift for user %s: summary=%d ledger=%d",
                user_id, audit.summary_total, audit.ledger_total,
            )
        return audit
