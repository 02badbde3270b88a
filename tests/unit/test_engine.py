"""Engine facade: best-effort recording, retries, and the read operations."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from nexus.gamification.engine import AWARD_RETRY_JOB, GamificationEngine
from nexus.gamification.events import AdminBonus, CourseEnrolled, DailyLogin, LessonCompleted
from nexus.gamification.exceptions import InvalidEventError, StorageError, UserNotFoundError
from nexus.gamification.point_values import EventType, ResourceCountKind
from nexus.gamification.types import AwardStatus


@pytest.fixture
def retry_queue() -> AsyncMock:
    queue = AsyncMock()
    queue.enqueue_job = AsyncMock(return_value=None)
    return queue


@pytest.fixture
def retrying_engine(seeded_repo, rules, publisher, settings, retry_queue) -> GamificationEngine:
    return GamificationEngine(seeded_repo, rules=rules, publisher=publisher, retry_queue=retry_queue, settings=settings)


class TestAwardPoints:
    @pytest.mark.asyncio
    async def test_award_evaluates_badges(self, engine, seeded_repo):
        seeded_repo.set_resource_count("alice", ResourceCountKind.ENROLLMENTS, 1)

        result = await engine.award_points(CourseEnrolled(user_id="alice", course_id="c1"))

        assert result.status is AwardStatus.AWARDED
        assert [b.badge.slug for b in result.new_badges] == ["first-steps"]
        assert result.total_points == 20

    @pytest.mark.asyncio
    async def test_strict_award_raises(self, engine):
        with pytest.raises(UserNotFoundError):
            await engine.award_points(DailyLogin(user_id="nobody"))

    @pytest.mark.asyncio
    async def test_large_grant_unlocks_point_and_level_badges(self, engine):
        result = await engine.award_points(AdminBonus(user_id="bob", points=1000, description="Hackathon"))

        assert [b.badge.slug for b in result.new_badges] == ["centurion", "high-achiever"]
        assert result.total_points == 1050
        assert result.level == 5


class TestRecordAction:
    """Never raises; failures come back as results."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, engine):
        result = await engine.record_action(DailyLogin(user_id="alice"))
        assert result.ok
        assert result.total_points == 5

    @pytest.mark.asyncio
    async def test_unknown_user_is_final(self, retrying_engine, retry_queue):
        result = await retrying_engine.record_action(DailyLogin(user_id="nobody"))

        assert result.status is AwardStatus.FAILED
        assert isinstance(result.error, UserNotFoundError)
        assert result.event_type is EventType.DAILY_LOGIN
        assert not result.retryable
        retry_queue.enqueue_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_payload_is_final(self, retrying_engine, retry_queue):
        result = await retrying_engine.record_action({"event_type": "teleported", "user_id": "alice"})

        assert result.status is AwardStatus.FAILED
        assert result.event_type is None
        assert not result.retryable
        retry_queue.enqueue_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_storage_failure_enqueues_retry(self, retrying_engine, seeded_repo, retry_queue):
        seeded_repo.append_transaction = AsyncMock(side_effect=StorageError("connection reset"))

        result = await retrying_engine.record_action(DailyLogin(user_id="alice"))

        assert result.status is AwardStatus.FAILED
        assert result.retryable
        assert result.retry_enqueued
        retry_queue.enqueue_job.assert_awaited_once_with(
            AWARD_RETRY_JOB,
            {"event_type": "daily_login", "user_id": "alice"},
            _defer_by=timedelta(seconds=30),
        )

    @pytest.mark.asyncio
    async def test_storage_failure_without_queue(self, engine, seeded_repo):
        seeded_repo.append_transaction = AsyncMock(side_effect=StorageError("connection reset"))

        result = await engine.record_action(DailyLogin(user_id="alice"))

        assert result.retryable
        assert not result.retry_enqueued

    @pytest.mark.asyncio
    async def test_enqueue_failure_reported(self, retrying_engine, seeded_repo, retry_queue):
        seeded_repo.append_transaction = AsyncMock(side_effect=StorageError("connection reset"))
        retry_queue.enqueue_job.side_effect = ConnectionError("queue down")

        result = await retrying_engine.record_action(DailyLogin(user_id="alice"))

        assert result.retryable
        assert not result.retry_enqueued

    @pytest.mark.asyncio
    async def test_unexpected_error_not_retried(self, retrying_engine, seeded_repo, retry_queue):
        seeded_repo.append_transaction = AsyncMock(side_effect=RuntimeError("bug"))

        result = await retrying_engine.record_action(DailyLogin(user_id="alice"))

        assert result.status is AwardStatus.FAILED
        assert isinstance(result.error, RuntimeError)
        retry_queue.enqueue_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_mapping_argument_is_final(self, retrying_engine, retry_queue):
        result = await retrying_engine.record_action(None)

        assert result.status is AwardStatus.FAILED
        assert isinstance(result.error, InvalidEventError)
        assert result.user_id == ""
        assert result.event_type is None
        assert not result.retryable
        retry_queue.enqueue_job.assert_not_awaited()


class TestPointsOverview:
    @pytest.mark.asyncio
    async def test_overview_defaults(self, engine):
        overview = await engine.get_points_overview("carol")

        assert overview.points == 0
        assert overview.level == 1
        assert overview.next_level_threshold == 100
        assert overview.level_thresholds[:3] == [0, 100, 250]
        assert overview.transactions is None
        assert overview.badges is None

    @pytest.mark.asyncio
    async def test_overview_with_history_and_badges(self, engine, seeded_repo):
        seeded_repo.set_resource_count("alice", ResourceCountKind.ENROLLMENTS, 1)
        await engine.award_points(CourseEnrolled(user_id="alice", course_id="c1"))
        await engine.award_points(LessonCompleted(user_id="alice", lesson_id="l1"))

        overview = await engine.get_points_overview("alice", include_history=True, include_badges=True)

        assert overview.points == 25
        assert len(overview.transactions) == 3
        assert overview.transactions[0].event_type == "lesson_completed"
        assert {tx.event_type for tx in overview.transactions} == {
            "course_enrolled", "badge_bonus", "lesson_completed",
        }
        assert [b.slug for b in overview.badges] == ["first-steps"]

    @pytest.mark.asyncio
    async def test_history_limit(self, engine):
        for _ in range(5):
            await engine.award_points(DailyLogin(user_id="carol"))

        overview = await engine.get_points_overview("carol", include_history=True, history_limit=2)

        assert len(overview.transactions) == 2


class TestCatalogAndLeaderboard:
    @pytest.mark.asyncio
    async def test_badge_catalog(self, engine, seeded_repo):
        seeded_repo.set_resource_count("alice", ResourceCountKind.ENROLLMENTS, 1)
        await engine.evaluate_badges("alice")

        catalog = await engine.get_badge_catalog()

        assert len(catalog.badges) == 17
        first = catalog.badges[0]
        assert first.slug == "first-steps"
        assert first.requirement_kind == "resource_count"
        assert first.requirement_target == "enrollments"
        assert first.earned_count == 1

    @pytest.mark.asyncio
    async def test_leaderboard_response(self, engine):
        await engine.award_points(DailyLogin(user_id="alice"))
        await engine.award_points(CourseEnrolled(user_id="bob", course_id="c1"))

        board = await engine.get_leaderboard()

        assert board.limit == 10
        assert [(e.rank, e.user_id, e.name) for e in board.entries] == [(1, "bob", "Bob"), (2, "alice", "Alice")]
        assert await engine.get_user_rank("alice") == 2

    @pytest.mark.asyncio
    async def test_leaderboard_limit_clamped(self, engine):
        assert (await engine.get_leaderboard(limit=1000)).limit == 100
        empty = await engine.get_leaderboard(limit=0)
        assert empty.limit == 0
        assert empty.entries == []

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing_with_ranked_users(self, engine):
        await engine.award_points(DailyLogin(user_id="alice"))

        board = await engine.get_leaderboard(limit=0)

        assert board.entries == []
        assert board.limit == 0

    @pytest.mark.asyncio
    async def test_seed_badges(self, engine):
        assert await engine.seed_badges() == 17
