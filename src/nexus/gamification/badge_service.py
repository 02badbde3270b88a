"""Badge evaluation, reads and catalog seeding.

Evaluation re-checks every unearned badge against the user's current stats
and grants the satisfied ones. Badge bonuses add points, which can satisfy
further point or level badges, so passes repeat until one grants no bonus.
The ``(user_id, badge_id)`` unique constraint is the only guard against
double-awarding; losing a race to a concurrent evaluation is not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from nexus.config import get_settings
from nexus.gamification.events import BadgeBonus
from nexus.gamification.exceptions import GamificationError
from nexus.gamification.ledger import build_transaction
from nexus.gamification.level_thresholds import calculate_level
from nexus.gamification.notifications import GamificationPublisher
from nexus.gamification.point_values import EventType, PointRules, ResourceCountKind, get_point_rules
from nexus.gamification.repository import GamificationRepository
from nexus.gamification.seed import BADGE_SEED_DATA
from nexus.gamification.types import (
    BadgeCatalogEntry,
    BadgeDefinition,
    BadgeGrant,
    BadgeRequirement,
    EarnedBadge,
    RequirementKind,
)

logger = logging.getLogger(__name__)


class _UserStats:
    """Lazily resolved, per-pass cache of the values badge requirements check."""

    def __init__(self, repository: GamificationRepository, user_id: str, rules: PointRules) -> None:
        self.repository = repository
        self.user_id = user_id
        self.rules = rules
        self._total: int | None = None
        self._counts: dict[tuple[RequirementKind, Any], int] = {}

    async def total_points(self) -> int:
        if self._total is None:
            summary = await self.repository.get_summary(self.user_id)
            self._total = summary.total_points if summary else 0
        return self._total

    async def value_for(self, requirement: BadgeRequirement) -> int:
        kind = requirement.kind
        if kind is RequirementKind.POINTS:
            return await self.total_points()
        if kind is RequirementKind.LEVEL:
            return calculate_level(await self.total_points(), self.rules.level_thresholds)

        key = (kind, requirement.target)
        if key not in self._counts:
            if kind is RequirementKind.RESOURCE_COUNT and isinstance(requirement.target, ResourceCountKind):
                self._counts[key] = await self.repository.count_resources(self.user_id, requirement.target)
            elif kind is RequirementKind.EVENT_COUNT and isinstance(requirement.target, EventType):
                self._counts[key] = await self.repository.count_events(self.user_id, requirement.target)
            else:
                msg = f"Unsupported badge requirement: {kind.value} / {requirement.target!r}"
                raise GamificationError(msg)
        return self._counts[key]


class BadgeService:
    """Badge Evaluator plus the badge read paths."""

    def __init__(
        self,
        repository: GamificationRepository,
        rules: PointRules | None = None,
        publisher: GamificationPublisher | None = None,
        max_passes: int | None = None,
    ) -> None:
        self.repository = repository
        self.rules = rules or get_point_rules()
        self.publisher = publisher or GamificationPublisher(None)
        self.max_passes = max_passes if max_passes is not None else get_settings().badge_evaluation_max_passes

    async def evaluate_badges(self, user_id: str) -> list[EarnedBadge]:
        """Grant every badge the user now qualifies for. Idempotent.

        Returns the badges granted by this call, in grant order. A badge that
        fails to evaluate is logged and skipped; the rest are still checked.
        """
        badges = await self.repository.list_badges()
        earned_ids = await self.repository.earned_badge_ids(user_id)
        granted: list[EarnedBadge] = []

        for pass_no in range(1, self.max_passes + 1):
            stats = _UserStats(self.repository, user_id, self.rules)
            bonus_granted = False

            for badge in badges:
                if badge.id in earned_ids:
                    continue
                try:
                    value = await stats.value_for(badge.requirement)
                    if value < badge.requirement.threshold:
                        continue
                    grant = await self._grant(user_id, badge)
                except Exception:
                    logger.warning(
                        "Failed to evaluate badge %s for user %s", badge.slug, user_id, exc_info=True,
                    )
                    continue

                earned_ids.add(badge.id)
                if grant is None:
                    # Another evaluation got there first.
                    continue
                granted.append(EarnedBadge(badge=badge, earned_at=grant.earned_at))
                if grant.bonus is not None:
                    bonus_granted = True

            if not bonus_granted:
                break
            logger.debug("Badge bonus granted to user %s in pass %d, re-evaluating", user_id, pass_no)
        else:
            logger.warning("Badge evaluation for user %s stopped after %d passes", user_id, self.max_passes)

        return granted

    async def _grant(self, user_id: str, badge: BadgeDefinition) -> BadgeGrant | None:
        now = datetime.now(timezone.utc)
        bonus = None
        if badge.points > 0:
            event = BadgeBonus(
                user_id=user_id,
                badge_id=badge.id,
                badge_slug=badge.slug,
                points=badge.points,
                description=f"Earned badge: {badge.name}",
            )
            bonus = build_transaction(event, self.rules, now)

        grant = await self.repository.grant_badge(user_id, badge, bonus, now)
        if grant is None:
            return None

        logger.info("Awarded badge %s to user %s", badge.slug, user_id)
        await self.publisher.publish_badge_earned(user_id, badge, grant.earned_at)

        if grant.bonus is not None:
            total = grant.bonus.summary.total_points
            old_level = calculate_level(total - badge.points, self.rules.level_thresholds)
            if grant.bonus.summary.level > old_level:
                await self.publisher.publish_level_up(user_id, old_level, grant.bonus.summary.level, total)
        return grant

    async def get_user_badges(self, user_id: str) -> list[EarnedBadge]:
        return await self.repository.list_user_badges(user_id)

    async def get_badge_catalog(self) -> list[BadgeCatalogEntry]:
        """All definitions with how many users earned each."""
        return await self.repository.badge_catalog()

    async def seed_badges(self, definitions: Sequence[Mapping[str, Any]] | None = None) -> int:
        """Upsert the badge catalog by slug. Returns number of badges seeded."""
        return await self.repository.upsert_badges(list(definitions or BADGE_SEED_DATA))
