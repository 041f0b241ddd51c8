"""Points economy tables.

Creates users, points_ledger, tasks, daily_challenges, and player_challenges.
Balances are guarded by a CHECK constraint and at most one daily challenge
per user may be active.

Revision ID: 001_points_economy
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_points_economy"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(64) PRIMARY KEY,
            display_name VARCHAR(64),
            points INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_users_points_non_negative CHECK (points >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_points
        ON users(points DESC)
    """)

    # --- Points Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_ledger (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            reason VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            balance_after INTEGER NOT NULL,
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_ledger_user_created
        ON points_ledger(user_id, created_at)
    """)

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id VARCHAR(36) PRIMARY KEY,
            owner_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            points INTEGER NOT NULL,
            completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            auto_complete_on_new_task BOOLEAN NOT NULL DEFAULT false,
            is_starter BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_tasks_points_positive CHECK (points > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_tasks_owner_completed_at
        ON tasks(owner_id, completed, completed_at)
    """)

    # --- Daily Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_challenges (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            target_tasks INTEGER NOT NULL,
            points_bet INTEGER NOT NULL,
            multiplier DOUBLE PRECISION NOT NULL,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            completed BOOLEAN NOT NULL DEFAULT false,
            tasks_completed INTEGER NOT NULL DEFAULT 0,
            payout INTEGER NOT NULL DEFAULT 0,
            settled_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_daily_challenges_user_status
        ON daily_challenges(user_id, status)
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_daily_challenges_one_active
        ON daily_challenges(user_id) WHERE status = 'active'
    """)

    # --- Player Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS player_challenges (
            id VARCHAR(36) PRIMARY KEY,
            challenger_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            challenged_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            points_bet INTEGER NOT NULL,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            challenger_completed BOOLEAN NOT NULL DEFAULT false,
            challenged_completed BOOLEAN NOT NULL DEFAULT false,
            challenger_tasks INTEGER NOT NULL DEFAULT 0,
            challenged_tasks INTEGER NOT NULL DEFAULT 0,
            winner_id VARCHAR(64) REFERENCES users(id),
            responded_at TIMESTAMPTZ,
            settled_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_player_challenges_challenger
        ON player_challenges(challenger_id, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_player_challenges_challenged
        ON player_challenges(challenged_id, status)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS player_challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS points_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
