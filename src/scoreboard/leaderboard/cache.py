"""Redis cache tier in front of the aggregate table.

Two independently TTL'd caches: top-N snapshots (one key per N) and
per-player rank/score snapshots. Entries are JSON, always derived, and
always safe to drop. A cache outage degrades reads to the store; it never
fails them.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()

TOP_KEY = "leaderboard:top:{n}"
TOP_REGISTRY_KEY = "leaderboard:top:keys"
RANK_KEY = "leaderboard:rank:{player_id}"
SCORE_KEY = "leaderboard:score:{player_id}"


def top_key(n: int) -> str:
    return TOP_KEY.format(n=n)


def rank_key(player_id: int) -> str:
    return RANK_KEY.format(player_id=player_id)


def score_key(player_id: int) -> str:
    return SCORE_KEY.format(player_id=player_id)


class LeaderboardCache:
    """Read-through cache with explicit invalidation."""

    def __init__(self, redis: aioredis.Redis, top_ttl: int = 60, rank_ttl: int = 30) -> None:
        self.redis = redis
        self.top_ttl = top_ttl
        self.rank_ttl = rank_ttl

    async def get_or_fetch(
        self,
        key: str,
        ttl: int,
        fetch: Callable[[], Awaitable[Any]],
        *,
        register_top: bool = False,
    ) -> Any:  # noqa: ANN401
        """Return the cached value for key, or fetch, populate with TTL and return.

        A None result from fetch is returned without being cached.
        """
        try:
            cached = await self.redis.get(key)
        except (RedisError, OSError):
            logger.warning("cache_read_failed", key=key, exc_info=True)
            cached = None

        if cached:
            logger.debug("cache_hit", key=key)
            return json.loads(cached)

        logger.debug("cache_miss", key=key)
        value = await fetch()
        if value is None:
            return None

        try:
            pipe = self.redis.pipeline()
            pipe.setex(key, ttl, json.dumps(value))
            if register_top:
                pipe.sadd(TOP_REGISTRY_KEY, key)
            await pipe.execute()
        except (RedisError, OSError):
            logger.warning("cache_write_failed", key=key, exc_info=True)
        return value

    async def get_top(self, n: int, fetch: Callable[[], Awaitable[list[dict[str, Any]]]]) -> list[dict[str, Any]]:
        return await self.get_or_fetch(top_key(n), self.top_ttl, fetch, register_top=True)

    async def get_rank(
        self, player_id: int, fetch: Callable[[], Awaitable[dict[str, Any] | None]],
    ) -> dict[str, Any] | None:
        return await self.get_or_fetch(rank_key(player_id), self.rank_ttl, fetch)

    async def get_score(
        self, player_id: int, fetch: Callable[[], Awaitable[dict[str, Any] | None]],
    ) -> dict[str, Any] | None:
        return await self.get_or_fetch(score_key(player_id), self.rank_ttl, fetch)

    async def invalidate_top(self) -> int:
        """Delete every populated top-N snapshot. Returns keys removed."""
        keys: set[str] = await self.redis.smembers(TOP_REGISTRY_KEY)  # type: ignore[assignment]
        if not keys:
            return 0
        removed: int = await self.redis.delete(*keys, TOP_REGISTRY_KEY)
        logger.debug("top_cache_invalidated", keys=len(keys))
        return max(0, removed - 1)

    async def invalidate_player(self, player_id: int) -> None:
        await self.redis.delete(rank_key(player_id), score_key(player_id))
