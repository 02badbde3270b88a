"""Pydantic response models for the exposed read operations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from nexus.gamification.types import (
    BadgeCatalogEntry,
    EarnedBadge,
    LeaderboardEntry,
    PointTransaction,
)

# --- Points ---


class TransactionResponse(BaseModel):
    id: int
    event_type: str
    points: int
    resource_type: str | None = None
    resource_id: str | None = None
    description: str | None = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, tx: PointTransaction) -> TransactionResponse:
        return cls(
            id=tx.id,
            event_type=tx.event_type.value,
            points=tx.points,
            resource_type=tx.resource_type.value if tx.resource_type else None,
            resource_id=tx.resource_id,
            description=tx.description,
            created_at=tx.created_at,
        )


# --- Badge ---


class EarnedBadgeResponse(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    icon: str
    category: str
    earned_at: datetime

    @classmethod
    def from_earned(cls, earned: EarnedBadge) -> EarnedBadgeResponse:
        badge = earned.badge
        return cls(
            id=badge.id,
            slug=badge.slug,
            name=badge.name,
            description=badge.description,
            icon=badge.icon,
            category=badge.category,
            earned_at=earned.earned_at,
        )


class PointsOverviewResponse(BaseModel):
    points: int
    level: int
    next_level_threshold: int | None = None
    level_progress: float
    level_thresholds: list[int]
    transactions: list[TransactionResponse] | None = None
    badges: list[EarnedBadgeResponse] | None = None


class BadgeCatalogEntryResponse(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    icon: str
    category: str
    requirement_kind: str
    requirement_target: str | None = None
    threshold: int
    points: int
    earned_count: int = 0

    @classmethod
    def from_entry(cls, entry: BadgeCatalogEntry) -> BadgeCatalogEntryResponse:
        badge = entry.badge
        target = badge.requirement.target
        return cls(
            id=badge.id,
            slug=badge.slug,
            name=badge.name,
            description=badge.description,
            icon=badge.icon,
            category=badge.category,
            requirement_kind=badge.requirement.kind.value,
            requirement_target=target.value if target is not None else None,
            threshold=badge.requirement.threshold,
            points=badge.points,
            earned_count=entry.earned_count,
        )


class BadgeCatalogResponse(BaseModel):
    badges: list[BadgeCatalogEntryResponse]


# --- Leaderboard ---


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    name: str | None = None
    image: str | None = None
    total_points: int
    level: int

    @classmethod
    def from_entry(cls, entry: LeaderboardEntry) -> LeaderboardEntryResponse:
        return cls(
            rank=entry.rank,
            user_id=entry.user_id,
            name=entry.user_name,
            image=entry.user_image,
            total_points=entry.total_points,
            level=entry.level,
        )


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    limit: int
