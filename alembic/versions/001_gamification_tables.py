"""Gamification tables.

Creates point_transactions, user_points, badges and user_badges. The users
table and the community tables are owned by other subsystems and must exist
before this runs.

Revision ID: 001_gamification_tables
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Point Ledger (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            event_type VARCHAR(32) NOT NULL,
            points INTEGER NOT NULL,
            resource_type VARCHAR(32),
            resource_id VARCHAR(128),
            description VARCHAR(256),
            dedup_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_point_transactions_user_created
        ON point_transactions(user_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_point_transactions_user_event
        ON point_transactions(user_id, event_type)
    """)

    # --- User Points (derived summary) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_points (
            user_id VARCHAR(64) PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_points BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_points_ranking
        ON user_points(total_points DESC, updated_at, user_id)
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            icon VARCHAR(64) NOT NULL,
            category VARCHAR(32) NOT NULL,
            requirement_kind VARCHAR(32) NOT NULL,
            requirement_target VARCHAR(64),
            threshold INTEGER NOT NULL,
            points INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- User Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badges(id) ON DELETE CASCADE,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_badges_badge
        ON user_badges(badge_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS user_points CASCADE")
    op.execute("DROP TABLE IF EXISTS point_transactions CASCADE")
