"""Shared test fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from nexus.config import Settings
from nexus.gamification.badge_service import BadgeService
from nexus.gamification.engine import GamificationEngine
from nexus.gamification.ledger import PointsLedger
from nexus.gamification.memory_repository import MemoryGamificationRepository
from nexus.gamification.notifications import GamificationPublisher
from nexus.gamification.point_values import PointRules
from nexus.gamification.seed import BADGE_SEED_DATA


@pytest.fixture
def rules() -> PointRules:
    """Built-in point table and level curve, independent of the environment."""
    return PointRules()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        leaderboard_max_limit=100,
        leaderboard_default_limit=10,
        points_history_limit=20,
        badge_evaluation_max_passes=10,
        award_retry_delay_seconds=30,
    )


@pytest.fixture
def repo(rules: PointRules) -> MemoryGamificationRepository:
    """In-memory repository with three users and no badges."""
    repository = MemoryGamificationRepository(rules)
    repository.add_user("alice", name="Alice", image="https://img.example/alice.png")
    repository.add_user("bob", name="Bob")
    repository.add_user("carol", name="Carol")
    return repository


@pytest_asyncio.fixture
async def seeded_repo(repo: MemoryGamificationRepository) -> MemoryGamificationRepository:
    """Repository with the platform badge catalog seeded."""
    await repo.upsert_badges(BADGE_SEED_DATA)
    return repo


@pytest.fixture
def fake_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def publisher(fake_redis: AsyncMock) -> GamificationPublisher:
    return GamificationPublisher(fake_redis)


@pytest.fixture
def ledger(repo: MemoryGamificationRepository, rules: PointRules, publisher: GamificationPublisher) -> PointsLedger:
    """Ledger without a badge evaluator."""
    return PointsLedger(repo, rules=rules, publisher=publisher)


@pytest.fixture
def badge_service(
    seeded_repo: MemoryGamificationRepository,
    rules: PointRules,
    publisher: GamificationPublisher,
) -> BadgeService:
    return BadgeService(seeded_repo, rules=rules, publisher=publisher, max_passes=10)


@pytest.fixture
def engine(
    seeded_repo: MemoryGamificationRepository,
    rules: PointRules,
    publisher: GamificationPublisher,
    settings: Settings,
) -> GamificationEngine:
    return GamificationEngine(seeded_repo, rules=rules, publisher=publisher, settings=settings)
