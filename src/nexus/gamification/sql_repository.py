"""PostgreSQL ``GamificationRepository`` on async SQLAlchemy.

Every operation runs in its own session and transaction. Ledger appends use
``INSERT ... ON CONFLICT DO NOTHING`` on the dedup key, and the summary is an
``INSERT ... ON CONFLICT DO UPDATE`` that adds to the stored total inside the
database, so concurrent awards for one user never lose an increment.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nexus.db.models import (
    Badge,
    Comment,
    Discussion,
    Enrollment,
    LessonProgress,
    PointTransactionRow,
    Project,
    SharedTool,
    ToolReview,
    User,
    UserBadge,
    UserPoints,
)
from nexus.gamification.exceptions import StorageError
from nexus.gamification.level_thresholds import calculate_level
from nexus.gamification.point_values import EventType, PointRules, ResourceCountKind, ResourceType, get_point_rules
from nexus.gamification.repository import GamificationRepository
from nexus.gamification.seed import definition_from_row
from nexus.gamification.types import (
    AppendOutcome,
    BadgeCatalogEntry,
    BadgeDefinition,
    BadgeGrant,
    EarnedBadge,
    LeaderboardEntry,
    NewTransaction,
    PointTransaction,
    UserPointsSummary,
)

logger = logging.getLogger(__name__)

# (model, extra filters) per resource kind; every model has a user_id column.
_RESOURCE_COUNTS: dict[ResourceCountKind, tuple[Any, tuple[Any, ...]]] = {
    ResourceCountKind.ENROLLMENTS: (Enrollment, ()),
    ResourceCountKind.LESSONS_COMPLETED: (LessonProgress, (LessonProgress.completed.is_(True),)),
    ResourceCountKind.COURSES_COMPLETED: (Enrollment, (Enrollment.completed_at.is_not(None),)),
    ResourceCountKind.DISCUSSIONS: (Discussion, ()),
    ResourceCountKind.COMMENTS: (Comment, ()),
    ResourceCountKind.PROJECTS: (Project, ()),
    ResourceCountKind.PROJECTS_APPROVED: (Project, (Project.status.in_(("approved", "featured")),)),
    ResourceCountKind.PROJECTS_FEATURED: (Project, (Project.status == "featured",)),
    ResourceCountKind.TOOLS: (SharedTool, ()),
    ResourceCountKind.TOOLS_APPROVED: (SharedTool, (SharedTool.status == "approved",)),
    ResourceCountKind.REVIEWS: (ToolReview, ()),
}

_BADGE_COLUMNS = (
    "slug",
    "name",
    "description",
    "icon",
    "category",
    "requirement_kind",
    "requirement_target",
    "threshold",
    "points",
    "sort_order",
)


def _to_transaction(row: PointTransactionRow) -> PointTransaction:
    return PointTransaction(
        id=row.id,
        user_id=row.user_id,
        event_type=EventType(row.event_type),
        points=row.points,
        created_at=row.created_at,
        resource_type=ResourceType(row.resource_type) if row.resource_type else None,
        resource_id=row.resource_id,
        description=row.description,
    )


def _to_definition(row: Badge) -> BadgeDefinition | None:
    """Definition for a badge row, None when its requirement columns do not parse."""
    try:
        return definition_from_row(row.id, {col: getattr(row, col) for col in _BADGE_COLUMNS})
    except ValueError:
        logger.warning(
            "Skipping badge %s: unusable requirement %s/%s",
            row.slug,
            row.requirement_kind,
            row.requirement_target,
            exc_info=True,
        )
        return None


class SqlGamificationRepository(GamificationRepository):
    """Storage backed by the ``point_transactions``, ``user_points``, ``badges`` and ``user_badges`` tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rules: PointRules | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._rules = rules or get_point_rules()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """One session and one transaction; driver failures become ``StorageError``."""
        try:
            async with self._session_factory() as db, db.begin():
                yield db
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Gamification storage failed: {e}") from e

    def _level_expr(self, total: Any) -> Any:
        """SQL CASE mapping a total to its level under the configured thresholds."""
        thresholds = self._rules.level_thresholds
        whens = [(total >= threshold, level) for level, threshold in reversed(list(enumerate(thresholds, start=1)))]
        return case(*whens, else_=1)

    # --- Users ---

    async def user_exists(self, user_id: str) -> bool:
        async with self._transaction() as db:
            result = await db.execute(select(User.id).where(User.id == user_id))
            return result.scalar_one_or_none() is not None

    # --- Ledger ---

    async def _append(self, db: AsyncSession, new: NewTransaction) -> AppendOutcome | None:
        """Insert the transaction and increment the summary inside ``db``'s transaction."""
        tx_stmt = (
            pg_insert(PointTransactionRow)
            .values(
                user_id=new.user_id,
                event_type=new.event_type.value,
                points=new.points,
                resource_type=new.resource_type.value if new.resource_type else None,
                resource_id=new.resource_id,
                description=new.description,
                dedup_key=new.dedup_key,
                created_at=new.created_at,
            )
            .on_conflict_do_nothing(index_elements=["dedup_key"])
            .returning(PointTransactionRow.id)
        )
        tx_id = (await db.execute(tx_stmt)).scalar_one_or_none()
        if tx_id is None:
            return None

        summary_stmt = pg_insert(UserPoints).values(
            user_id=new.user_id,
            total_points=new.points,
            level=calculate_level(new.points, self._rules.level_thresholds),
            updated_at=new.created_at,
        )
        new_total = UserPoints.total_points + summary_stmt.excluded.total_points
        summary_stmt = summary_stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "total_points": new_total,
                "level": self._level_expr(new_total),
                "updated_at": summary_stmt.excluded.updated_at,
            },
        ).returning(UserPoints.total_points, UserPoints.level, UserPoints.updated_at)
        total, level, updated_at = (await db.execute(summary_stmt)).one()

        transaction = PointTransaction(
            id=tx_id,
            user_id=new.user_id,
            event_type=new.event_type,
            points=new.points,
            created_at=new.created_at,
            resource_type=new.resource_type,
            resource_id=new.resource_id,
            description=new.description,
        )
        summary = UserPointsSummary(
            user_id=new.user_id,
            total_points=total,
            level=level,
            updated_at=updated_at,
        )
        return AppendOutcome(transaction=transaction, summary=summary)

    async def append_transaction(self, new: NewTransaction) -> AppendOutcome | None:
        async with self._transaction() as db:
            return await self._append(db, new)

    async def get_summary(self, user_id: str) -> UserPointsSummary | None:
        async with self._transaction() as db:
            result = await db.execute(
                select(UserPoints.total_points, UserPoints.level, UserPoints.updated_at)
                .where(UserPoints.user_id == user_id)
            )
            row = result.one_or_none()
        if row is None:
            return None
        return UserPointsSummary(
            user_id=user_id,
            total_points=row.total_points,
            level=row.level,
            updated_at=row.updated_at,
        )

    async def list_transactions(self, user_id: str, limit: int) -> list[PointTransaction]:
        async with self._transaction() as db:
            result = await db.execute(
                select(PointTransactionRow)
                .where(PointTransactionRow.user_id == user_id)
                .order_by(PointTransactionRow.created_at.desc(), PointTransactionRow.id.desc())
                .limit(limit)
            )
            return [_to_transaction(row) for row in result.scalars()]

    async def ledger_total(self, user_id: str) -> int:
        async with self._transaction() as db:
            result = await db.execute(
                select(func.coalesce(func.sum(PointTransactionRow.points), 0))
                .where(PointTransactionRow.user_id == user_id)
            )
            return int(result.scalar_one())

    async def count_events(self, user_id: str, event_type: EventType) -> int:
        async with self._transaction() as db:
            result = await db.execute(
                select(func.count())
                .select_from(PointTransactionRow)
                .where(
                    PointTransactionRow.user_id == user_id,
                    PointTransactionRow.event_type == event_type.value,
                )
            )
            return int(result.scalar_one())

    # --- Community data ---

    async def count_resources(self, user_id: str, kind: ResourceCountKind) -> int:
        model, filters = _RESOURCE_COUNTS[kind]
        async with self._transaction() as db:
            result = await db.execute(
                select(func.count()).select_from(model).where(model.user_id == user_id, *filters)
            )
            return int(result.scalar_one())

    # --- Badges ---

    async def list_badges(self) -> list[BadgeDefinition]:
        async with self._transaction() as db:
            result = await db.execute(select(Badge).order_by(Badge.sort_order, Badge.id))
            definitions = [_to_definition(row) for row in result.scalars()]
        return [d for d in definitions if d is not None]

    async def earned_badge_ids(self, user_id: str) -> set[int]:
        async with self._transaction() as db:
            result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
            return set(result.scalars())

    async def grant_badge(
        self,
        user_id: str,
        badge: BadgeDefinition,
        bonus: NewTransaction | None,
        earned_at: datetime,
    ) -> BadgeGrant | None:
        async with self._transaction() as db:
            stmt = (
                pg_insert(UserBadge)
                .values(user_id=user_id, badge_id=badge.id, earned_at=earned_at)
                .on_conflict_do_nothing(constraint="user_badges_user_id_badge_id_key")
                .returning(UserBadge.id)
            )
            if (await db.execute(stmt)).scalar_one_or_none() is None:
                return None
            outcome = await self._append(db, bonus) if bonus is not None else None
            return BadgeGrant(earned_at=earned_at, bonus=outcome)

    async def list_user_badges(self, user_id: str) -> list[EarnedBadge]:
        async with self._transaction() as db:
            result = await db.execute(
                select(UserBadge)
                .where(UserBadge.user_id == user_id)
                .order_by(UserBadge.earned_at, UserBadge.badge_id)
            )
            earned = [(_to_definition(ub.badge), ub.earned_at) for ub in result.scalars()]
        return [EarnedBadge(badge=badge, earned_at=at) for badge, at in earned if badge is not None]

    async def badge_catalog(self) -> list[BadgeCatalogEntry]:
        async with self._transaction() as db:
            result = await db.execute(
                select(Badge, func.count(UserBadge.id))
                .outerjoin(UserBadge, UserBadge.badge_id == Badge.id)
                .group_by(Badge.id)
                .order_by(Badge.sort_order, Badge.id)
            )
            rows = [(_to_definition(badge), count) for badge, count in result.all()]
        return [BadgeCatalogEntry(badge=badge, earned_count=count) for badge, count in rows if badge is not None]

    async def upsert_badges(self, definitions: Sequence[Mapping[str, Any]]) -> int:
        seeded = 0
        async with self._transaction() as db:
            for badge_data in definitions:
                stmt = pg_insert(Badge).values(**badge_data)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["slug"],
                    set_={col: stmt.excluded[col] for col in _BADGE_COLUMNS if col != "slug"},
                )
                await db.execute(stmt)
                seeded += 1
        logger.info("Seeded %d badge definitions", seeded)
        return seeded

    # --- Leaderboard ---

    async def top_summaries(self, limit: int) -> list[LeaderboardEntry]:
        async with self._transaction() as db:
            result = await db.execute(
                select(
                    UserPoints.user_id,
                    UserPoints.total_points,
                    UserPoints.level,
                    UserPoints.updated_at,
                    User.name,
                    User.image,
                )
                .join(User, User.id == UserPoints.user_id)
                .order_by(UserPoints.total_points.desc(), UserPoints.updated_at.asc(), UserPoints.user_id.asc())
                .limit(limit)
            )
            rows = result.all()

        return [
            LeaderboardEntry(
                rank=idx + 1,
                user_id=row.user_id,
                total_points=row.total_points,
                level=row.level,
                updated_at=row.updated_at,
                user_name=row.name,
                user_image=row.image,
            )
            for idx, row in enumerate(rows)
        ]

    async def count_ranked_ahead(self, summary: UserPointsSummary) -> int:
        total, updated_at = summary.total_points, summary.updated_at
        async with self._transaction() as db:
            result = await db.execute(
                select(func.count())
                .select_from(UserPoints)
                .where(
                    or_(
                        UserPoints.total_points > total,
                        and_(UserPoints.total_points == total, UserPoints.updated_at < updated_at),
                        and_(
                            UserPoints.total_points == total,
                            UserPoints.updated_at == updated_at,
                            UserPoints.user_id < summary.user_id,
                        ),
                    )
                )
            )
            return int(result.scalar_one())
