"""Unit tests for the Redis cache tier."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from scoreboard.leaderboard.cache import (
    TOP_REGISTRY_KEY,
    LeaderboardCache,
    rank_key,
    score_key,
    top_key,
)

pytestmark = pytest.mark.asyncio


class TestKeys:
    async def test_key_formats(self):
        assert top_key(10) == "leaderboard:top:10"
        assert rank_key(42) == "leaderboard:rank:42"
        assert score_key(42) == "leaderboard:score:42"


class TestGetOrFetch:
    async def test_hit_returns_cached_value_without_fetching(self, mock_redis: MagicMock):
        mock_redis.get.return_value = json.dumps({"rank": 3})
        fetch = AsyncMock()
        cache = LeaderboardCache(mock_redis)

        value = await cache.get_rank(7, fetch)

        assert value == {"rank": 3}
        fetch.assert_not_awaited()
        mock_redis.get.assert_awaited_once_with("leaderboard:rank:7")

    async def test_miss_fetches_and_populates_with_ttl(self, mock_redis: MagicMock):
        fetch = AsyncMock(return_value={"rank": 1})
        cache = LeaderboardCache(mock_redis, top_ttl=60, rank_ttl=30)

        value = await cache.get_rank(7, fetch)

        assert value == {"rank": 1}
        pipe = mock_redis.pipeline.return_value
        pipe.setex.assert_called_once_with("leaderboard:rank:7", 30, json.dumps({"rank": 1}))
        pipe.sadd.assert_not_called()
        pipe.execute.assert_awaited_once()

    async def test_top_miss_registers_key(self, mock_redis: MagicMock):
        entries = [{"player_id": 1, "display_name": "a", "total_score": 10, "rank": 1}]
        cache = LeaderboardCache(mock_redis, top_ttl=60)

        assert await cache.get_top(5, AsyncMock(return_value=entries)) == entries

        pipe = mock_redis.pipeline.return_value
        pipe.setex.assert_called_once_with("leaderboard:top:5", 60, json.dumps(entries))
        pipe.sadd.assert_called_once_with(TOP_REGISTRY_KEY, "leaderboard:top:5")

    async def test_none_is_not_cached(self, mock_redis: MagicMock):
        cache = LeaderboardCache(mock_redis)

        assert await cache.get_score(9, AsyncMock(return_value=None)) is None
        mock_redis.pipeline.assert_not_called()

    async def test_read_failure_degrades_to_fetch(self, mock_redis: MagicMock):
        mock_redis.get.side_effect = RedisConnectionError("down")
        fetch = AsyncMock(return_value={"rank": 2})
        cache = LeaderboardCache(mock_redis)

        assert await cache.get_rank(1, fetch) == {"rank": 2}
        fetch.assert_awaited_once()

    async def test_write_failure_still_returns_value(self, mock_redis: MagicMock):
        mock_redis.pipeline.return_value.execute.side_effect = RedisConnectionError("down")
        cache = LeaderboardCache(mock_redis)

        assert await cache.get_rank(1, AsyncMock(return_value={"rank": 2})) == {"rank": 2}

    async def test_fetch_errors_propagate(self, mock_redis: MagicMock):
        cache = LeaderboardCache(mock_redis)

        with pytest.raises(RuntimeError):
            await cache.get_rank(1, AsyncMock(side_effect=RuntimeError("db")))


class TestInvalidation:
    async def test_invalidate_top_deletes_registered_keys(self, mock_redis: MagicMock):
        mock_redis.smembers.return_value = {"leaderboard:top:10", "leaderboard:top:50"}
        mock_redis.delete.return_value = 3
        cache = LeaderboardCache(mock_redis)

        assert await cache.invalidate_top() == 2

        args = mock_redis.delete.await_args.args
        assert set(args) == {"leaderboard:top:10", "leaderboard:top:50", TOP_REGISTRY_KEY}

    async def test_invalidate_top_with_nothing_registered(self, mock_redis: MagicMock):
        cache = LeaderboardCache(mock_redis)

        assert await cache.invalidate_top() == 0
        mock_redis.delete.assert_not_awaited()

    async def test_invalidate_player_drops_rank_and_score(self, mock_redis: MagicMock):
        cache = LeaderboardCache(mock_redis)

        await cache.invalidate_player(5)

        mock_redis.delete.assert_awaited_once_with("leaderboard:rank:5", "leaderboard:score:5")
