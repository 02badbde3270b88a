"""Leaderboard ranking. Deterministic, no ties left unresolved.

Users are ranked by total points DESC, then by the summary's ``updated_at``
ASC (whoever reached the total first wins), then by ``user_id`` ASC as the
final tiebreaker.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from nexus.config import get_settings
from nexus.gamification.repository import GamificationRepository
from nexus.gamification.types import LeaderboardEntry, UserPointsSummary

logger = logging.getLogger(__name__)


def ranking_key(total_points: int, updated_at: datetime, user_id: str) -> tuple[int, datetime, str]:
    return (-total_points, updated_at, user_id)


def rank_entries(entries: Iterable[LeaderboardEntry]) -> list[LeaderboardEntry]:
    """Sort entries by the ranking rule and assign 1-indexed ranks."""
    ordered = sorted(entries, key=lambda e: ranking_key(e.total_points, e.updated_at, e.user_id))
    return [replace(entry, rank=idx + 1) for idx, entry in enumerate(ordered)]


def clamp_limit(limit: int | None, max_limit: int, default: int = 10) -> int:
    """Clamp a caller-supplied limit to ``[0, max_limit]``; None means the default."""
    if limit is None:
        limit = default
    return max(0, min(limit, max_limit))


class LeaderboardRanker:
    """Reads summary rows independently of the write path."""

    def __init__(
        self,
        repository: GamificationRepository,
        max_limit: int | None = None,
        default_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self.repository = repository
        self.max_limit = max_limit if max_limit is not None else settings.leaderboard_max_limit
        self.default_limit = default_limit if default_limit is not None else settings.leaderboard_default_limit

    async def get_leaderboard(self, limit: int | None = None) -> list[LeaderboardEntry]:
        """Top users by points, at most ``max_limit`` rows regardless of ``limit``."""
        effective = clamp_limit(limit, self.max_limit, self.default_limit)
        if effective == 0:
            return []
        rows = await self.repository.top_summaries(effective)
        # Storage already orders; re-ranking keeps the rule in one place.
        return rank_entries(rows)

    async def get_user_rank(self, user_id: str) -> int | None:
        """1-based position under the leaderboard ordering, None without a summary."""
        summary: UserPointsSummary | None = await self.repository.get_summary(user_id)
        if summary is None:
            return None
        ahead = await self.repository.count_ranked_ahead(summary)
        return ahead + 1
