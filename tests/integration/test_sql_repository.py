"""PostgreSQL repository against a real database.

Set NEXUS_TEST_DATABASE_URL (postgresql+asyncpg://...) to run these; the
tables are created and dropped around every test.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from nexus.database import create_session_factory
from nexus.db.base import Base
from nexus.db.models import Badge, Discussion, Enrollment, PointTransactionRow, Project, User
from nexus.gamification.engine import GamificationEngine
from nexus.gamification.events import CommentAdded, FirstEnrollment
from nexus.gamification.point_values import EventType, PointRules, ResourceCountKind
from nexus.gamification.seed import BADGE_SEED_DATA
from nexus.gamification.sql_repository import SqlGamificationRepository
from nexus.gamification.types import AwardStatus, NewTransaction

pytestmark = pytest.mark.integration

TEST_DATABASE_URL = os.environ.get("NEXUS_TEST_DATABASE_URL")
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    if not TEST_DATABASE_URL:
        pytest.skip("NEXUS_TEST_DATABASE_URL not set")
    engine = create_async_engine(TEST_DATABASE_URL)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError):
        await engine.dispose()
        pytest.skip("PostgreSQL not available")

    factory = create_session_factory(engine)
    async with factory() as db, db.begin():
        db.add_all([User(id="alice", name="Alice"), User(id="bob", name="Bob"), User(id="carol", name="Carol")])

    yield factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def sql_repo(session_factory) -> SqlGamificationRepository:
    return SqlGamificationRepository(session_factory, rules=PointRules())


def _tx(user_id: str, points: int, at: datetime | None = None, dedup_key: str | None = None) -> NewTransaction:
    return NewTransaction(
        user_id=user_id,
        event_type=EventType.ADMIN_BONUS,
        points=points,
        created_at=at or datetime.now(timezone.utc),
        description="test grant",
        dedup_key=dedup_key,
    )


class TestLedger:
    @pytest.mark.asyncio
    async def test_append_creates_and_increments_summary(self, sql_repo):
        first = await sql_repo.append_transaction(_tx("alice", 80))
        second = await sql_repo.append_transaction(_tx("alice", 40))

        assert first.summary.total_points == 80
        assert first.summary.level == 1
        assert second.summary.total_points == 120
        assert second.summary.level == 2
        assert await sql_repo.ledger_total("alice") == 120

    @pytest.mark.asyncio
    async def test_dedup_key_conflict_is_noop(self, sql_repo):
        assert await sql_repo.append_transaction(_tx("alice", 25, dedup_key="alice:first_enrollment:-:-"))
        assert await sql_repo.append_transaction(_tx("alice", 25, dedup_key="alice:first_enrollment:-:-")) is None
        assert (await sql_repo.get_summary("alice")).total_points == 25

    @pytest.mark.asyncio
    async def test_concurrent_appends_never_lose_increments(self, sql_repo):
        await asyncio.gather(*[sql_repo.append_transaction(_tx("bob", 5)) for _ in range(10)])

        summary = await sql_repo.get_summary("bob")
        assert summary.total_points == 50
        assert summary.total_points == await sql_repo.ledger_total("bob")

    @pytest.mark.asyncio
    async def test_list_transactions_newest_first(self, sql_repo):
        await sql_repo.append_transaction(_tx("carol", 1, at=T0))
        await sql_repo.append_transaction(_tx("carol", 2, at=T0 + timedelta(minutes=1)))

        txs = await sql_repo.list_transactions("carol", 10)
        assert [tx.points for tx in txs] == [2, 1]

    @pytest.mark.asyncio
    async def test_ledger_rows_block_user_deletion(self, sql_repo, session_factory):
        await sql_repo.append_transaction(_tx("alice", 10))

        with pytest.raises(IntegrityError):
            async with session_factory() as db, db.begin():
                await db.execute(delete(User).where(User.id == "alice"))

        assert await sql_repo.ledger_total("alice") == 10

    def test_ledger_foreign_key_restricts(self):
        (fk,) = PointTransactionRow.__table__.c.user_id.foreign_keys
        assert fk.ondelete == "RESTRICT"

    @pytest.mark.asyncio
    async def test_user_exists(self, sql_repo):
        assert await sql_repo.user_exists("alice")
        assert not await sql_repo.user_exists("nobody")


class TestCounts:
    @pytest.mark.asyncio
    async def test_resource_counts(self, sql_repo, session_factory):
        async with session_factory() as db, db.begin():
            db.add_all([
                Enrollment(user_id="alice", course_id="c1", completed_at=T0),
                Enrollment(user_id="alice", course_id="c2"),
                Discussion(user_id="alice", title="Hello"),
                Project(user_id="alice", title="Bot", status="featured"),
                Project(user_id="alice", title="Site", status="pending"),
            ])

        assert await sql_repo.count_resources("alice", ResourceCountKind.ENROLLMENTS) == 2
        assert await sql_repo.count_resources("alice", ResourceCountKind.COURSES_COMPLETED) == 1
        assert await sql_repo.count_resources("alice", ResourceCountKind.DISCUSSIONS) == 1
        assert await sql_repo.count_resources("alice", ResourceCountKind.PROJECTS_APPROVED) == 1
        assert await sql_repo.count_resources("alice", ResourceCountKind.PROJECTS_FEATURED) == 1
        assert await sql_repo.count_resources("bob", ResourceCountKind.ENROLLMENTS) == 0

    @pytest.mark.asyncio
    async def test_event_counts(self, sql_repo):
        await sql_repo.append_transaction(_tx("alice", 5))
        await sql_repo.append_transaction(_tx("alice", 5))
        assert await sql_repo.count_events("alice", EventType.ADMIN_BONUS) == 2
        assert await sql_repo.count_events("alice", EventType.DAILY_LOGIN) == 0


class TestBadges:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, sql_repo):
        await sql_repo.upsert_badges(BADGE_SEED_DATA)
        await sql_repo.upsert_badges(BADGE_SEED_DATA)
        badges = await sql_repo.list_badges()
        assert [b.slug for b in badges][:3] == ["first-steps", "dedicated-learner", "course-completer"]
        assert len(badges) == 17

    @pytest.mark.asyncio
    async def test_grant_once_with_bonus(self, sql_repo):
        await sql_repo.upsert_badges(BADGE_SEED_DATA)
        badge = (await sql_repo.list_badges())[0]

        grant = await sql_repo.grant_badge("alice", badge, _tx("alice", badge.points), T0)
        again = await sql_repo.grant_badge("alice", badge, _tx("alice", badge.points), T0)

        assert grant.bonus.summary.total_points == badge.points
        assert again is None
        assert await sql_repo.ledger_total("alice") == badge.points
        assert [e.badge.slug for e in await sql_repo.list_user_badges("alice")] == [badge.slug]
        counts = {e.badge.slug: e.earned_count for e in await sql_repo.badge_catalog()}
        assert counts[badge.slug] == 1
        assert counts["centurion"] == 0


class TestLeaderboard:
    @pytest.mark.asyncio
    async def test_ordering_and_rank(self, sql_repo):
        await sql_repo.append_transaction(_tx("alice", 100, at=T0 + timedelta(seconds=1)))
        await sql_repo.append_transaction(_tx("carol", 100, at=T0))
        await sql_repo.append_transaction(_tx("bob", 300, at=T0))

        top = await sql_repo.top_summaries(10)

        assert [(e.rank, e.user_id) for e in top] == [(1, "bob"), (2, "carol"), (3, "alice")]
        assert top[0].user_name == "Bob"
        alice = await sql_repo.get_summary("alice")
        assert await sql_repo.count_ranked_ahead(alice) == 2


class TestEngineOnPostgres:
    @pytest.mark.asyncio
    async def test_end_to_end(self, sql_repo, session_factory, settings):
        engine = GamificationEngine(sql_repo, rules=PointRules(), settings=settings)
        await engine.seed_badges()
        async with session_factory() as db, db.begin():
            db.add(Enrollment(user_id="alice", course_id="c1"))

        first = await engine.award_points(FirstEnrollment(user_id="alice"))
        repeat = await engine.award_points(FirstEnrollment(user_id="alice"))
        await asyncio.gather(
            engine.award_points(CommentAdded(user_id="alice")),
            engine.award_points(CommentAdded(user_id="alice")),
        )

        assert first.status is AwardStatus.AWARDED
        assert [e.badge.slug for e in first.new_badges] == ["first-steps"]
        assert repeat.status is AwardStatus.DUPLICATE
        audit = await engine.ledger.audit_summary("alice")
        assert audit.consistent
        assert audit.ledger_total == 25 + 10 + 5 + 5

    @pytest.mark.asyncio
    async def test_unparseable_badge_does_not_block_others(self, sql_repo, session_factory, settings):
        engine = GamificationEngine(sql_repo, rules=PointRules(), settings=settings)
        await engine.seed_badges()
        async with session_factory() as db, db.begin():
            db.add(Badge(
                slug="streak-master",
                name="Streak Master",
                description="Log in 30 days in a row",
                icon="Flame",
                category="special",
                requirement_kind="streak",
                threshold=30,
                points=40,
                sort_order=0,
            ))
            db.add(Enrollment(user_id="bob", course_id="c1"))

        earned = await engine.evaluate_badges("bob")

        assert [e.badge.slug for e in earned] == ["first-steps"]
        assert "streak-master" not in {b.slug for b in await sql_repo.list_badges()}
        assert len((await engine.get_badge_catalog()).badges) == 17
