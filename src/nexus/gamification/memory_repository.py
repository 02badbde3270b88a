"""In-memory ``GamificationRepository`` for tests and local development.

Every mutating call runs under one ``asyncio.Lock``, which gives the same
atomicity the SQL implementation gets from a database transaction.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from nexus.gamification.leaderboard import ranking_key
from nexus.gamification.level_thresholds import calculate_level
from nexus.gamification.point_values import EventType, PointRules, ResourceCountKind, get_point_rules
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


@dataclass
class _UserRecord:
    name: str | None = None
    image: str | None = None


class MemoryGamificationRepository(GamificationRepository):
    """Dict-backed storage. Resource counts are set directly by the test or caller."""

    def __init__(self, rules: PointRules | None = None) -> None:
        self._rules = rules or get_point_rules()
        self._lock = asyncio.Lock()
        self._users: dict[str, _UserRecord] = {}
        self._transactions: list[PointTransaction] = []
        self._dedup_keys: set[str] = set()
        self._summaries: dict[str, UserPointsSummary] = {}
        self._badges: dict[int, BadgeDefinition] = {}
        self._user_badges: dict[str, dict[int, datetime]] = defaultdict(dict)
        self._resource_counts: dict[tuple[str, ResourceCountKind], int] = {}
        self._tx_ids = itertools.count(1)
        self._badge_ids = itertools.count(1)

    # --- Test helpers ---

    def add_user(self, user_id: str, name: str | None = None, image: str | None = None) -> None:
        self._users[user_id] = _UserRecord(name=name, image=image)

    def set_resource_count(self, user_id: str, kind: ResourceCountKind, count: int) -> None:
        self._resource_counts[(user_id, kind)] = count

    # --- Users ---

    async def user_exists(self, user_id: str) -> bool:
        return user_id in self._users

    # --- Ledger ---

    def _append_locked(self, new: NewTransaction) -> AppendOutcome | None:
        if new.dedup_key is not None:
            if new.dedup_key in self._dedup_keys:
                return None
            self._dedup_keys.add(new.dedup_key)

        tx = PointTransaction(
            id=next(self._tx_ids),
            user_id=new.user_id,
            event_type=new.event_type,
            points=new.points,
            created_at=new.created_at,
            resource_type=new.resource_type,
            resource_id=new.resource_id,
            description=new.description,
        )
        self._transactions.append(tx)

        current = self._summaries.get(new.user_id)
        total = (current.total_points if current else 0) + new.points
        summary = UserPointsSummary(
            user_id=new.user_id,
            total_points=total,
            level=calculate_level(total, self._rules.level_thresholds),
            updated_at=new.created_at,
        )
        self._summaries[new.user_id] = summary
        return AppendOutcome(transaction=tx, summary=summary)

    async def append_transaction(self, new: NewTransaction) -> AppendOutcome | None:
        async with self._lock:
            return self._append_locked(new)

    async def get_summary(self, user_id: str) -> UserPointsSummary | None:
        return self._summaries.get(user_id)

    async def list_transactions(self, user_id: str, limit: int) -> list[PointTransaction]:
        rows = [tx for tx in self._transactions if tx.user_id == user_id]
        rows.sort(key=lambda tx: (tx.created_at, tx.id), reverse=True)
        return rows[:limit]

    async def ledger_total(self, user_id: str) -> int:
        return sum(tx.points for tx in self._transactions if tx.user_id == user_id)

    async def count_events(self, user_id: str, event_type: EventType) -> int:
        return sum(1 for tx in self._transactions if tx.user_id == user_id and tx.event_type is event_type)

    # --- Community data ---

    async def count_resources(self, user_id: str, kind: ResourceCountKind) -> int:
        return self._resource_counts.get((user_id, kind), 0)

    # --- Badges ---

    async def list_badges(self) -> list[BadgeDefinition]:
        return sorted(self._badges.values(), key=lambda b: (b.sort_order, b.id))

    async def earned_badge_ids(self, user_id: str) -> set[int]:
        return set(self._user_badges.get(user_id, {}))

    async def grant_badge(
        self,
        user_id: str,
        badge: BadgeDefinition,
        bonus: NewTransaction | None,
        earned_at: datetime,
    ) -> BadgeGrant | None:
        async with self._lock:
            earned = self._user_badges[user_id]
            if badge.id in earned:
                return None
            earned[badge.id] = earned_at
            outcome = self._append_locked(bonus) if bonus is not None else None
            return BadgeGrant(earned_at=earned_at, bonus=outcome)

    async def list_user_badges(self, user_id: str) -> list[EarnedBadge]:
        earned = self._user_badges.get(user_id, {})
        rows = [EarnedBadge(badge=self._badges[badge_id], earned_at=at) for badge_id, at in earned.items()]
        rows.sort(key=lambda e: (e.earned_at, e.badge.id))
        return rows

    async def badge_catalog(self) -> list[BadgeCatalogEntry]:
        counts: dict[int, int] = defaultdict(int)
        for earned in self._user_badges.values():
            for badge_id in earned:
                counts[badge_id] += 1
        return [BadgeCatalogEntry(badge=b, earned_count=counts[b.id]) for b in await self.list_badges()]

    async def upsert_badges(self, definitions: Sequence[Mapping[str, Any]]) -> int:
        async with self._lock:
            by_slug = {b.slug: b.id for b in self._badges.values()}
            for data in definitions:
                badge_id = by_slug.get(data["slug"])
                if badge_id is None:
                    badge_id = next(self._badge_ids)
                    by_slug[data["slug"]] = badge_id
                self._badges[badge_id] = definition_from_row(badge_id, data)
        logger.info("Seeded %d badge definitions", len(definitions))
        return len(definitions)

    # --- Leaderboard ---

    async def top_summaries(self, limit: int) -> list[LeaderboardEntry]:
        ordered = sorted(
            self._summaries.values(),
            key=lambda s: ranking_key(s.total_points, s.updated_at, s.user_id),
        )
        entries = []
        for rank, summary in enumerate(ordered[:limit], start=1):
            user = self._users.get(summary.user_id, _UserRecord())
            entries.append(LeaderboardEntry(
                rank=rank,
                user_id=summary.user_id,
                total_points=summary.total_points,
                level=summary.level,
                updated_at=summary.updated_at,
                user_name=user.name,
                user_image=user.image,
            ))
        return entries

    async def count_ranked_ahead(self, summary: UserPointsSummary) -> int:
        key = ranking_key(summary.total_points, summary.updated_at, summary.user_id)
        return sum(
            1
            for s in self._summaries.values()
            if ranking_key(s.total_points, s.updated_at, s.user_id) < key
        )
