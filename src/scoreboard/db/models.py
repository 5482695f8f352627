"""ORM models for the players, game_sessions and leaderboard_entries tables.

The tables are created by the Alembic migration in alembic/versions; these
models mirror that schema.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard.db.base import Base


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------


class Player(Base):
    """Player identity. Created implicitly on first submission."""

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    sessions: Mapped[list[GameSession]] = relationship("GameSession", back_populates="player")
    entry: Mapped[LeaderboardEntry | None] = relationship(
        "LeaderboardEntry", back_populates="player", uselist=False,
    )


# ---------------------------------------------------------------------------
# Score store (append-only)
# ---------------------------------------------------------------------------


class GameSession(Base):
    """One submitted score. Never updated or deleted."""

    __tablename__ = "game_sessions"
    __table_args__ = (
        Index("idx_game_sessions_player_submitted", "player_id", "submitted_at"),
        Index("idx_game_sessions_player_score", "player_id", "score"),
        Index("idx_game_sessions_submitted", "submitted_at"),
        CheckConstraint("score >= 0 AND score <= 1000000", name="game_sessions_score_check"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("players.id", ondelete="CASCADE"), nullable=False,
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    game_mode: Mapped[str] = mapped_column(String(50), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    player: Mapped[Player] = relationship("Player", back_populates="sessions")


# ---------------------------------------------------------------------------
# Aggregate table
# ---------------------------------------------------------------------------


class LeaderboardEntry(Base):
    """Materialized per-player total plus a cached, possibly stale rank."""

    __tablename__ = "leaderboard_entries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("players.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    total_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now(),
    )

    player: Mapped[Player] = relationship("Player", back_populates="entry")


# Serves top-N and "totals greater than X" scans.
Index(
    "idx_leaderboard_entries_total_desc",
    LeaderboardEntry.total_score.desc(),
    LeaderboardEntry.player_id,
)
