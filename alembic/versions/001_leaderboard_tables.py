"""Leaderboard tables: players, game_sessions, leaderboard_entries.

Revision ID: 001_leaderboard_tables
Revises:
Create Date: 2026-10-16
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_leaderboard_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Players ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS players (
            id BIGINT PRIMARY KEY,
            display_name VARCHAR(255) NOT NULL,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Game sessions (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS game_sessions (
            id BIGSERIAL PRIMARY KEY,
            player_id BIGINT NOT NULL REFERENCES players(id) ON DELETE CASCADE,
            score INTEGER NOT NULL CHECK (score >= 0 AND score <= 1000000),
            game_mode VARCHAR(50) NOT NULL,
            submitted_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_game_sessions_player_submitted
        ON game_sessions(player_id, submitted_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_game_sessions_player_score
        ON game_sessions(player_id, score)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_game_sessions_submitted
        ON game_sessions(submitted_at)
    """)

    # --- Leaderboard aggregate ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_entries (
            id BIGSERIAL PRIMARY KEY,
            player_id BIGINT NOT NULL UNIQUE REFERENCES players(id) ON DELETE CASCADE,
            total_score BIGINT NOT NULL DEFAULT 0,
            rank INTEGER,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_entries_total_desc
        ON leaderboard_entries(total_score DESC, player_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leaderboard_entries_rank
        ON leaderboard_entries(rank)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_entries")
    op.execute("DROP TABLE IF EXISTS game_sessions")
    op.execute("DROP TABLE IF EXISTS players")
