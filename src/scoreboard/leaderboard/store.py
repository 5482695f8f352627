"""Score store and aggregate table access.

Every statement the engine issues against PostgreSQL lives here. Callers own
the transaction boundary; these helpers only execute statements on the
session they are given.

Ranks are dense everywhere: top-N uses DENSE_RANK() and single-player
lookups use 1 + COUNT(DISTINCT total_score) over strictly greater totals,
which produce the same number for the same snapshot of totals.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from redis.exceptions import RedisError
from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from scoreboard.db.models import GameSession, LeaderboardEntry, Player
from scoreboard.exceptions import TransientStoreError

logger = structlog.get_logger()


def default_display_name(player_id: int) -> str:
    return f"player_{player_id}"


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Translate driver, pool, Redis and timeout failures into TransientStoreError."""
    try:
        yield
    except asyncio.TimeoutError as exc:
        logger.warning("store_timeout", operation=operation)
        msg = f"{operation} timed out"
        raise TransientStoreError(msg, {"operation": operation}) from exc
    except (DBAPIError, PoolTimeoutError, RedisError, OSError) as exc:
        logger.warning("store_unavailable", operation=operation, error=str(exc))
        msg = f"{operation} failed: store unavailable"
        raise TransientStoreError(msg, {"operation": operation}) from exc


async def apply_timeouts(db: AsyncSession, timeout_seconds: float) -> None:
    """Bound lock waits and statements for the current transaction only."""
    ms = max(1, int(timeout_seconds * 1000))
    await db.execute(text(f"SET LOCAL lock_timeout = {ms}"))
    await db.execute(text(f"SET LOCAL statement_timeout = {ms}"))


# ---------------------------------------------------------------------------
# Submission steps
# ---------------------------------------------------------------------------


async def upsert_player(db: AsyncSession, player_id: int, display_name: str | None = None) -> None:
    """Create the player row if it does not exist yet."""
    stmt = (
        insert(Player)
        .values(id=player_id, display_name=display_name or default_display_name(player_id))
        .on_conflict_do_nothing(index_elements=[Player.id])
    )
    await db.execute(stmt)


async def lock_entry(db: AsyncSession, player_id: int) -> int:
    """Ensure the player's aggregate row exists and hold a row lock on it until commit.

    Returns the aggregate row id.
    """
    await db.execute(
        insert(LeaderboardEntry)
        .values(player_id=player_id, total_score=0)
        .on_conflict_do_nothing(index_elements=[LeaderboardEntry.player_id])
    )
    result = await db.execute(
        select(LeaderboardEntry.id)
        .where(LeaderboardEntry.player_id == player_id)
        .with_for_update()
    )
    return int(result.scalar_one())


async def insert_session(db: AsyncSession, player_id: int, score: int, game_mode: str) -> datetime:
    """Append a session row and return its submission timestamp."""
    result = await db.execute(
        insert(GameSession)
        .values(player_id=player_id, score=score, game_mode=game_mode)
        .returning(GameSession.submitted_at)
    )
    return result.scalar_one()


async def sum_session_scores(db: AsyncSession, player_id: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(GameSession.score), 0))
        .where(GameSession.player_id == player_id)
    )
    return int(result.scalar_one())


async def set_total_score(db: AsyncSession, player_id: int, total_score: int) -> None:
    await db.execute(
        update(LeaderboardEntry)
        .where(LeaderboardEntry.player_id == player_id)
        .values(total_score=total_score, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Read queries
# ---------------------------------------------------------------------------


async def fetch_top(db: AsyncSession, limit: int) -> list[dict[str, Any]]:
    """Top players by total score with dense ranks assigned in order."""
    rank_col = func.dense_rank().over(order_by=LeaderboardEntry.total_score.desc()).label("rank")
    result = await db.execute(
        select(
            LeaderboardEntry.player_id,
            Player.display_name,
            LeaderboardEntry.total_score,
            rank_col,
        )
        .join(Player, Player.id == LeaderboardEntry.player_id)
        .order_by(LeaderboardEntry.total_score.desc(), LeaderboardEntry.player_id)
        .limit(limit)
    )
    return [
        {
            "player_id": int(row.player_id),
            "display_name": row.display_name,
            "total_score": int(row.total_score),
            "rank": int(row.rank),
        }
        for row in result
    ]


def _dense_rank_of(outer_total: Any) -> Any:  # noqa: ANN401
    """Scalar subquery: 1 + number of distinct totals strictly above outer_total."""
    other = aliased(LeaderboardEntry)
    return (
        select(func.count(func.distinct(other.total_score)) + 1)
        .where(other.total_score > outer_total)
        .scalar_subquery()
    )


async def fetch_player_rank(db: AsyncSession, player_id: int) -> dict[str, Any] | None:
    """Live rank snapshot for one player, or None if they have no aggregate entry."""
    total_players = select(func.count()).select_from(LeaderboardEntry).correlate(None).scalar_subquery()
    result = await db.execute(
        select(
            LeaderboardEntry.player_id,
            Player.display_name,
            LeaderboardEntry.total_score,
            _dense_rank_of(LeaderboardEntry.total_score).label("rank"),
            total_players.label("total_players"),
        )
        .join(Player, Player.id == LeaderboardEntry.player_id)
        .where(LeaderboardEntry.player_id == player_id)
    )
    row = result.first()
    if row is None:
        return None
    return {
        "player_id": int(row.player_id),
        "display_name": row.display_name,
        "total_score": int(row.total_score),
        "rank": int(row.rank),
        "total_players": int(row.total_players),
    }


async def fetch_player_score(db: AsyncSession, player_id: int) -> dict[str, Any] | None:
    session_count = (
        select(func.count(GameSession.id))
        .where(GameSession.player_id == player_id)
        .scalar_subquery()
    )
    result = await db.execute(
        select(LeaderboardEntry.player_id, LeaderboardEntry.total_score, session_count.label("session_count"))
        .where(LeaderboardEntry.player_id == player_id)
    )
    row = result.first()
    if row is None:
        return None
    return {
        "player_id": int(row.player_id),
        "total_score": int(row.total_score),
        "session_count": int(row.session_count),
    }


async def fetch_stats(db: AsyncSession) -> dict[str, int]:
    players = await db.execute(select(func.count()).select_from(Player))
    sessions = await db.execute(
        select(func.count(GameSession.id), func.coalesce(func.avg(GameSession.score), 0))
    )
    total_sessions, avg_score = sessions.one()
    return {
        "total_players": int(players.scalar_one()),
        "total_sessions": int(total_sessions),
        "average_score": round(float(avg_score)),
    }


# ---------------------------------------------------------------------------
# Rank projection
# ---------------------------------------------------------------------------


async def recompute_all_ranks(db: AsyncSession) -> int:
    """Rewrite every stale rank in one ordering pass. Returns rows changed."""
    ranked = (
        select(
            LeaderboardEntry.player_id.label("player_id"),
            func.dense_rank().over(order_by=LeaderboardEntry.total_score.desc()).label("new_rank"),
        )
        .subquery("ranked")
    )
    result = await db.execute(
        update(LeaderboardEntry)
        .where(LeaderboardEntry.player_id == ranked.c.player_id)
        .where(LeaderboardEntry.rank.is_distinct_from(ranked.c.new_rank))
        .values(rank=ranked.c.new_rank)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def recompute_player_rank(db: AsyncSession, player_id: int) -> int | None:
    """Rewrite one player's rank from current totals. Returns the new rank."""
    result = await db.execute(
        update(LeaderboardEntry)
        .where(LeaderboardEntry.player_id == player_id)
        .values(rank=_dense_rank_of(LeaderboardEntry.total_score))
        .returning(LeaderboardEntry.rank)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def fetch_ranks(db: AsyncSession) -> dict[int, int | None]:
    """player_id -> stored rank, for audits and tests."""
    result = await db.execute(select(LeaderboardEntry.player_id, LeaderboardEntry.rank))
    return {int(row.player_id): row.rank for row in result}
