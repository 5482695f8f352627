"""Bulk seed data for load testing.

Fills players and game_sessions with random data directly in SQL, rebuilds
every aggregate total from the sessions, then runs one full rank pass.

Usage: python -m scoreboard.seed --players 1000000 --sessions 5000000
"""

from __future__ import annotations

import argparse
import asyncio

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.config import get_settings
from scoreboard.database import close_db, get_session_factory, init_db, verify_db
from scoreboard.leaderboard import store
from scoreboard.middleware.logging import setup_logging

logger = structlog.get_logger()


async def truncate(db: AsyncSession) -> None:
    await db.execute(text("TRUNCATE TABLE leaderboard_entries, game_sessions, players RESTART IDENTITY CASCADE"))


async def seed_players(db: AsyncSession, players: int) -> None:
    await db.execute(
        text("""
            INSERT INTO players (id, display_name)
            SELECT s, 'player_' || s FROM generate_series(1, :players) AS s
            ON CONFLICT (id) DO NOTHING
        """),
        {"players": players},
    )


async def seed_sessions(db: AsyncSession, players: int, count: int, max_score: int) -> None:
    await db.execute(
        text("""
            INSERT INTO game_sessions (player_id, score, game_mode, submitted_at)
            SELECT
                floor(random() * :players + 1)::bigint,
                floor(random() * :max_score + 1)::int,
                CASE WHEN random() > 0.5 THEN 'solo' ELSE 'team' END,
                NOW() - INTERVAL '1 day' * floor(random() * 365)
            FROM generate_series(1, :count)
        """),
        {"players": players, "max_score": max_score, "count": count},
    )


async def rebuild_totals(db: AsyncSession, first_id: int, last_id: int) -> None:
    """Recompute aggregate totals from sessions for a player id range."""
    await db.execute(
        text("""
            INSERT INTO leaderboard_entries (player_id, total_score)
            SELECT player_id, SUM(score) FROM game_sessions
            WHERE player_id BETWEEN :first_id AND :last_id
            GROUP BY player_id
            ON CONFLICT (player_id) DO UPDATE SET total_score = EXCLUDED.total_score
        """),
        {"first_id": first_id, "last_id": last_id},
    )


async def run(players: int, sessions: int, batch_size: int, max_score: int, keep_existing: bool) -> None:
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await verify_db()
    factory = get_session_factory()

    try:
        async with factory() as db, db.begin():
            if not keep_existing:
                await truncate(db)
                logger.info("seed_tables_truncated")
            await seed_players(db, players)
        logger.info("seed_players_done", players=players)

        for offset in range(0, sessions, batch_size):
            count = min(batch_size, sessions - offset)
            async with factory() as db, db.begin():
                await seed_sessions(db, players, count, max_score)
            logger.info("seed_sessions_batch", inserted=offset + count, total=sessions)

        for first_id in range(1, players + 1, batch_size):
            async with factory() as db, db.begin():
                await rebuild_totals(db, first_id, first_id + batch_size - 1)
        logger.info("seed_totals_rebuilt")

        async with factory() as db, db.begin():
            changed = await store.recompute_all_ranks(db)
        logger.info("seed_ranks_computed", rows=changed)
    finally:
        await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed the leaderboard with random sessions.")
    parser.add_argument("--players", type=int, default=10_000)
    parser.add_argument("--sessions", type=int, default=50_000)
    parser.add_argument("--batch-size", type=int, default=100_000)
    parser.add_argument("--max-score", type=int, default=10_000)
    parser.add_argument("--keep-existing", action="store_true", help="do not truncate tables first")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    score_max = get_settings().score_max
    # Generated scores fall in 1..max-score and must pass the game_sessions CHECK.
    if not 1 <= args.max_score <= score_max:
        parser.error(f"--max-score must be between 1 and {score_max}")
    asyncio.run(run(args.players, args.sessions, args.batch_size, args.max_score, args.keep_existing))


if __name__ == "__main__":
    main()
