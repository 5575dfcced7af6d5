"""Competitions: memberships, teams, results, payouts and notifications.

Creates competitions, competition_teams, competition_members,
competition_results, competition_payouts and notifications.

competition_results is keyed by competition_id so a competition can only
ever be finalized once; concurrent finalizers race on that primary key.

Revision ID: 002_competition_tables
Revises: 001_baseline
Create Date: 2026-10-05
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_competition_tables"
down_revision: str | None = "001_baseline"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Competitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competitions (
            id UUID PRIMARY KEY,
            code VARCHAR(16) NOT NULL UNIQUE,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            goal_type VARCHAR(32) NOT NULL DEFAULT 'income_goal',
            goal_value NUMERIC(12, 2) NOT NULL CHECK (goal_value > 0),
            prize_value NUMERIC(12, 2) NOT NULL CHECK (prize_value > 0),
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            max_members INTEGER CHECK (max_members IS NULL OR max_members >= 2),
            allow_teams BOOLEAN NOT NULL DEFAULT FALSE,
            team_size INTEGER CHECK (team_size IS NULL OR team_size >= 1),
            host_user_id UUID NOT NULL REFERENCES profiles(id),
            host_participates BOOLEAN NOT NULL DEFAULT TRUE,
            is_listed BOOLEAN NOT NULL DEFAULT FALSE,
            password_hash VARCHAR(256) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            deleted_at TIMESTAMPTZ,
            CHECK (end_date >= start_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competitions_end_date
        ON competitions(end_date) WHERE deleted_at IS NULL
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competitions_listed
        ON competitions(is_listed) WHERE deleted_at IS NULL
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_competitions_code_upper
        ON competitions(UPPER(code))
    """)

    # --- Competition Teams ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_teams (
            id SERIAL PRIMARY KEY,
            competition_id UUID NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            name VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_competition_teams_name
        ON competition_teams(competition_id, LOWER(name))
    """)

    # --- Competition Members ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_members (
            id SERIAL PRIMARY KEY,
            competition_id UUID NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            role VARCHAR(16) NOT NULL DEFAULT 'member',
            is_competitor BOOLEAN NOT NULL DEFAULT TRUE,
            team_id INTEGER REFERENCES competition_teams(id) ON DELETE SET NULL,
            payout_key VARCHAR(140),
            payout_key_type VARCHAR(16),
            payout_key_updated_at TIMESTAMPTZ,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT competition_members_comp_user_key UNIQUE(competition_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competition_members_user
        ON competition_members(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competition_members_team
        ON competition_members(team_id)
    """)

    # --- Competition Results (one row per competition, ever) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_results (
            competition_id UUID PRIMARY KEY REFERENCES competitions(id) ON DELETE CASCADE,
            meta_reached BOOLEAN NOT NULL DEFAULT FALSE,
            winner_type VARCHAR(16) NOT NULL DEFAULT 'none',
            winner_user_id UUID,
            winner_team_id INTEGER,
            winner_score NUMERIC(12, 2),
            goal_value NUMERIC(12, 2) NOT NULL,
            prize_value NUMERIC(12, 2) NOT NULL,
            finished_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Competition Payouts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_payouts (
            id SERIAL PRIMARY KEY,
            competition_id UUID NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            user_id UUID NOT NULL,
            team_id INTEGER,
            status VARCHAR(16) NOT NULL,
            payout_value NUMERIC(12, 2) NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT competition_payouts_comp_user_key UNIQUE(competition_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competition_payouts_user
        ON competition_payouts(user_id, status)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id SERIAL PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            type VARCHAR(64) NOT NULL,
            competition_id UUID REFERENCES competitions(id) ON DELETE CASCADE,
            payload JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            read_at TIMESTAMPTZ,
            dismissed_at TIMESTAMPTZ,
            CONSTRAINT notifications_user_comp_type_key UNIQUE(user_id, competition_id, type)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
        ON notifications(user_id, created_at DESC) WHERE read_at IS NULL AND dismissed_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_payouts CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_results CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_members CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_teams CASCADE")
    op.execute("DROP TABLE IF EXISTS competitions CASCADE")
