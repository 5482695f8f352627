"""Fixtures for tests against live PostgreSQL and Redis.

Connection URLs come from SB_DATABASE_URL / SB_REDIS_URL. Tests skip when
either store is unreachable.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard.config import Settings, get_settings
from scoreboard.database import close_db, get_engine, get_session_factory, init_db, verify_db
from scoreboard.db import models  # noqa: F401
from scoreboard.db.base import Base
from scoreboard.exceptions import FatalConfigurationError
from scoreboard.leaderboard.cache import LeaderboardCache
from scoreboard.leaderboard.service import LeaderboardService
from scoreboard.recompute.engine import RankRecomputer
from scoreboard.recompute.ledger import RecomputeLedger

_KEY_PATTERNS = ["leaderboard:*", "recompute:*"]


async def _flush_keys(redis: aioredis.Redis) -> None:
    for pattern in _KEY_PATTERNS:
        keys = await redis.keys(pattern)
        if keys:
            await redis.delete(*keys)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Schema-ready session factory over empty leaderboard tables."""
    settings = get_settings()
    await init_db(settings.database_url)
    try:
        await verify_db()
    except FatalConfigurationError:
        await close_db()
        pytest.skip("PostgreSQL not available")

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text("TRUNCATE TABLE leaderboard_entries, game_sessions, players RESTART IDENTITY CASCADE"))

    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[aioredis.Redis, None]:
    """Decoding Redis client with leaderboard and recompute keys cleared."""
    client = aioredis.from_url(get_settings().redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose()
        pytest.skip("Redis not available")

    await _flush_keys(client)
    yield client
    await _flush_keys(client)
    await client.aclose()


@pytest.fixture
def cache(redis_client: aioredis.Redis) -> LeaderboardCache:
    return LeaderboardCache(redis_client, top_ttl=60, rank_ttl=30)


@pytest.fixture
def ledger(redis_client: aioredis.Redis) -> RecomputeLedger:
    return RecomputeLedger(redis_client)


@pytest.fixture
def service(session_factory, cache: LeaderboardCache, ledger: RecomputeLedger) -> LeaderboardService:
    return LeaderboardService(session_factory, cache, ledger=ledger, settings=Settings())


@pytest.fixture
def recomputer(session_factory, cache: LeaderboardCache, ledger: RecomputeLedger) -> RankRecomputer:
    return RankRecomputer(session_factory, cache, ledger)
