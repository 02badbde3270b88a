"""Badge rows read by the SQL repository, with the session mocked out."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from nexus.db.models import Badge
from nexus.gamification.badge_service import BadgeService
from nexus.gamification.point_values import ResourceCountKind
from nexus.gamification.seed import BADGE_SEED_DATA
from nexus.gamification.sql_repository import SqlGamificationRepository


def _malformed_badge() -> Badge:
    return Badge(
        id=99,
        slug="streak-master",
        name="Streak Master",
        description="Log in 30 days in a row",
        icon="Flame",
        category="special",
        requirement_kind="streak",
        requirement_target=None,
        threshold=30,
        points=40,
        sort_order=0,
    )


def _session_factory(rows: list[Badge]) -> MagicMock:
    """Factory whose sessions answer every query with ``rows``."""
    result = MagicMock()
    result.scalars.return_value = rows

    db = MagicMock()
    db.__aenter__.return_value = db
    db.execute = AsyncMock(return_value=result)
    return MagicMock(return_value=db)


@pytest.fixture
def badge_rows() -> list[Badge]:
    # Ids follow seeding order, matching the in-memory repository.
    rows = [Badge(id=idx, **data) for idx, data in enumerate(BADGE_SEED_DATA, start=1)]
    return [_malformed_badge(), *rows]


class TestListBadges:
    @pytest.mark.asyncio
    async def test_unparseable_row_skipped(self, badge_rows, rules, caplog):
        sql_repo = SqlGamificationRepository(_session_factory(badge_rows), rules=rules)

        with caplog.at_level(logging.WARNING, logger="nexus.gamification.sql_repository"):
            badges = await sql_repo.list_badges()

        assert len(badges) == 17
        assert "streak-master" not in {b.slug for b in badges}
        assert "streak-master" in caplog.text

    @pytest.mark.asyncio
    async def test_other_badges_still_granted(self, badge_rows, seeded_repo, rules, publisher):
        sql_repo = SqlGamificationRepository(_session_factory(badge_rows), rules=rules)
        seeded_repo.list_badges = sql_repo.list_badges
        seeded_repo.set_resource_count("alice", ResourceCountKind.ENROLLMENTS, 1)
        service = BadgeService(seeded_repo, rules=rules, publisher=publisher)

        earned = await service.evaluate_badges("alice")

        assert [e.badge.slug for e in earned] == ["first-steps"]
