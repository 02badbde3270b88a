"""Storage interface the ledger, badge evaluator and leaderboard call through.

Implementations must keep two guarantees at the storage boundary:

1. ``append_transaction`` and the bonus inside ``grant_badge`` append the
   transaction and increment the summary in one atomic unit, with the
   increment done by the store itself (never read-then-write in Python).
2. Uniqueness conflicts (dedup key, ``(user_id, badge_id)``) are reported as
   "already present" by returning None, not raised.

Storage failures are raised as ``StorageError``.
"""

from __future__ import annotations

import abc
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from nexus.gamification.point_values import EventType, ResourceCountKind
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


class GamificationRepository(abc.ABC):
    """Abstract storage for the gamification engine."""

    # --- Users (owned by the auth subsystem) ---

    @abc.abstractmethod
    async def user_exists(self, user_id: str) -> bool:
        """Return True if the user exists."""

    # --- Ledger ---

    @abc.abstractmethod
    async def append_transaction(self, new: NewTransaction) -> AppendOutcome | None:
        """Append a transaction and atomically add its points to the user's summary.

        Creates the summary row on the user's first award. Returns None when
        ``new.dedup_key`` is already recorded (nothing is written).
        """

    @abc.abstractmethod
    async def get_summary(self, user_id: str) -> UserPointsSummary | None:
        """Return the user's summary row, None before the first award."""

    @abc.abstractmethod
    async def list_transactions(self, user_id: str, limit: int) -> list[PointTransaction]:
        """Most recent transactions first."""

    @abc.abstractmethod
    async def ledger_total(self, user_id: str) -> int:
        """Sum of all the user's transaction points."""

    @abc.abstractmethod
    async def count_events(self, user_id: str, event_type: EventType) -> int:
        """Number of ledger transactions of one type for the user."""

    # --- Community data (owned by other subsystems, read without locking) ---

    @abc.abstractmethod
    async def count_resources(self, user_id: str, kind: ResourceCountKind) -> int:
        """Per-user count of a community resource kind."""

    # --- Badges ---

    @abc.abstractmethod
    async def list_badges(self) -> list[BadgeDefinition]:
        """All badge definitions in catalog order."""

    @abc.abstractmethod
    async def earned_badge_ids(self, user_id: str) -> set[int]:
        """Ids of badges the user has earned."""

    @abc.abstractmethod
    async def grant_badge(
        self,
        user_id: str,
        badge: BadgeDefinition,
        bonus: NewTransaction | None,
        earned_at: datetime,
    ) -> BadgeGrant | None:
        """Insert the user badge and, in the same unit, append its bonus transaction.

        Returns None when the user already has the badge (nothing is written).
        """

    @abc.abstractmethod
    async def list_user_badges(self, user_id: str) -> list[EarnedBadge]:
        """Earned badges with definitions, oldest first."""

    @abc.abstractmethod
    async def badge_catalog(self) -> list[BadgeCatalogEntry]:
        """All definitions with the number of users who earned each."""

    @abc.abstractmethod
    async def upsert_badges(self, definitions: Sequence[Mapping[str, Any]]) -> int:
        """Insert or update definitions keyed by slug. Returns the number processed."""

    # --- Leaderboard ---

    @abc.abstractmethod
    async def top_summaries(self, limit: int) -> list[LeaderboardEntry]:
        """Summaries ordered by total desc, updated_at asc, user_id asc, ranked from 1."""

    @abc.abstractmethod
    async def count_ranked_ahead(self, summary: UserPointsSummary) -> int:
        """Number of summaries that sort strictly before ``summary``."""
