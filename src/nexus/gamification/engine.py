"""Gamification engine facade.

Action handlers call ``record_action`` after their own write succeeded. It
never raises: the award outcome comes back as an ``AwardResult``, kept apart
from the handler's own success, and retryable failures are queued on the
arq worker when a retry queue is configured.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nexus.config import Settings, get_settings
from nexus.gamification.badge_service import BadgeService
from nexus.gamification.events import PointEvent
from nexus.gamification.exceptions import GamificationError
from nexus.gamification.leaderboard import LeaderboardRanker, clamp_limit
from nexus.gamification.ledger import PointsLedger
from nexus.gamification.notifications import GamificationPublisher
from nexus.gamification.point_values import EventType, PointRules, get_point_rules
from nexus.gamification.repository import GamificationRepository
from nexus.gamification.schemas import (
    BadgeCatalogEntryResponse,
    BadgeCatalogResponse,
    EarnedBadgeResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    PointsOverviewResponse,
    TransactionResponse,
)
from nexus.gamification.sql_repository import SqlGamificationRepository
from nexus.gamification.types import AwardResult, EarnedBadge

logger = structlog.get_logger()

AWARD_RETRY_JOB = "award_points_job"


def _event_fields(event: PointEvent | Mapping[str, Any]) -> tuple[str, EventType | None, dict[str, Any]]:
    """User id, event type (when known) and queue payload of an event or raw mapping."""
    if isinstance(event, PointEvent):
        try:
            kind: EventType | None = event.kind
        except ValueError:
            kind = None
        return event.user_id, kind, event.to_payload()

    if not isinstance(event, Mapping):
        return "", None, {}
    payload = dict(event)
    try:
        kind = EventType(payload.get("event_type"))
    except ValueError:
        kind = None
    return str(payload.get("user_id", "")), kind, payload


class GamificationEngine:
    """Ledger, badge evaluator and leaderboard over one repository."""

    def __init__(
        self,
        repository: GamificationRepository,
        rules: PointRules | None = None,
        publisher: GamificationPublisher | None = None,
        retry_queue: Any | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.rules = rules or get_point_rules()
        self.repository = repository
        self.publisher = publisher or GamificationPublisher(None)
        self.retry_queue = retry_queue

        self.badges = BadgeService(
            repository,
            rules=self.rules,
            publisher=self.publisher,
            max_passes=self.settings.badge_evaluation_max_passes,
        )
        self.ledger = PointsLedger(
            repository,
            rules=self.rules,
            publisher=self.publisher,
            evaluator=self.badges,
        )
        self.leaderboard = LeaderboardRanker(
            repository,
            max_limit=self.settings.leaderboard_max_limit,
            default_limit=self.settings.leaderboard_default_limit,
        )

    # --- Write path ---

    async def award_points(self, event: PointEvent | Mapping[str, Any]) -> AwardResult:
        """Strict award: raises validation and storage errors to the caller."""
        return await self.ledger.award_points(event)

    async def record_action(self, event: PointEvent | Mapping[str, Any]) -> AwardResult:
        """Best-effort award for action handlers. Never raises."""
        user_id, kind, payload = _event_fields(event)
        try:
            return await self.ledger.award_points(event)
        except GamificationError as e:
            result = AwardResult.failed(user_id, e, event_type=kind, retryable=e.retryable)
            logger.warning(
                "award_failed",
                user_id=user_id,
                event_type=kind.value if kind else payload.get("event_type"),
                error=str(e),
                retryable=e.retryable,
            )
        except Exception as e:
            result = AwardResult.failed(user_id, e, event_type=kind)
            logger.exception("award_failed_unexpectedly", user_id=user_id)

        if result.retryable and self.retry_queue is not None:
            result = await self._enqueue_retry(result, payload)
        return result

    async def _enqueue_retry(self, result: AwardResult, payload: dict[str, Any]) -> AwardResult:
        delay = timedelta(seconds=self.settings.award_retry_delay_seconds)
        try:
            await self.retry_queue.enqueue_job(AWARD_RETRY_JOB, payload, _defer_by=delay)  # type: ignore[union-attr]
        except Exception:
            logger.warning("award_retry_enqueue_failed", user_id=result.user_id, exc_info=True)
            return result
        logger.info("award_retry_enqueued", user_id=result.user_id, defer_seconds=delay.total_seconds())
        return replace(result, retry_enqueued=True)

    async def evaluate_badges(self, user_id: str) -> list[EarnedBadge]:
        return await self.badges.evaluate_badges(user_id)

    async def seed_badges(self) -> int:
        """Administrative: upsert the badge catalog."""
        return await self.badges.seed_badges()

    # --- Read path ---

    async def get_points_overview(
        self,
        user_id: str,
        include_history: bool = False,
        include_badges: bool = False,
        history_limit: int | None = None,
    ) -> PointsOverviewResponse:
        """Points, level and progress, optionally with recent history and earned badges."""
        status = await self.ledger.get_user_points_and_level(user_id)
        response = PointsOverviewResponse(
            points=status.total_points,
            level=status.level,
            next_level_threshold=status.next_level_threshold,
            level_progress=status.level_progress,
            level_thresholds=list(self.rules.level_thresholds),
        )

        if include_history:
            limit = history_limit if history_limit is not None else self.settings.points_history_limit
            transactions = await self.ledger.get_recent_point_transactions(user_id, limit)
            response.transactions = [TransactionResponse.from_transaction(tx) for tx in transactions]

        if include_badges:
            earned = await self.badges.get_user_badges(user_id)
            response.badges = [EarnedBadgeResponse.from_earned(e) for e in earned]

        return response

    async def get_badge_catalog(self) -> BadgeCatalogResponse:
        entries = await self.badges.get_badge_catalog()
        return BadgeCatalogResponse(badges=[BadgeCatalogEntryResponse.from_entry(e) for e in entries])

    async def get_leaderboard(self, limit: int | None = None) -> LeaderboardResponse:
        entries = await self.leaderboard.get_leaderboard(limit)
        return LeaderboardResponse(
            entries=[LeaderboardEntryResponse.from_entry(e) for e in entries],
            limit=clamp_limit(limit, self.leaderboard.max_limit, self.leaderboard.default_limit),
        )

    async def get_user_rank(self, user_id: str) -> int | None:
        return await self.leaderboard.get_user_rank(user_id)


def build_engine(
    session_factory: async_sessionmaker[AsyncSession],
    redis: object | None = None,
    retry_queue: Any | None = None,
    settings: Settings | None = None,
) -> GamificationEngine:
    """Engine over PostgreSQL, publishing on ``redis`` and retrying via ``retry_queue``."""
    rules = get_point_rules()
    return GamificationEngine(
        SqlGamificationRepository(session_factory, rules=rules),
        rules=rules,
        publisher=GamificationPublisher(redis),
        retry_queue=retry_queue,
        settings=settings,
    )
