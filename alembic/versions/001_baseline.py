"""Baseline: driver profiles and daily income records.

These tables belong to the income tracking side of the app. In a shared
database they already exist and the IF NOT EXISTS guards make this a
no-op; on a fresh database it creates the minimum the competition engine
reads.

Revision ID: 001_baseline
Revises: None
Create Date: 2026-10-05
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id UUID PRIMARY KEY,
            display_name VARCHAR(64),
            first_name VARCHAR(64),
            last_name VARCHAR(64),
            whatsapp VARCHAR(32),
            avatar_url TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- Income days ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS income_days (
            id SERIAL PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            km_rodados NUMERIC(10, 2),
            hours_worked NUMERIC(6, 2),
            CONSTRAINT income_days_user_date_key UNIQUE(user_id, date)
        )
    """)

    # --- Income day items (one row per platform) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS income_day_items (
            id SERIAL PRIMARY KEY,
            income_day_id INTEGER NOT NULL REFERENCES income_days(id) ON DELETE CASCADE,
            platform VARCHAR(64) NOT NULL,
            platform_label VARCHAR(64),
            amount NUMERIC(12, 2) NOT NULL,
            trips INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_income_day_items_day
        ON income_day_items(income_day_id)
    """)


def downgrade() -> None:
    """Upstream tables are never dropped from here."""
