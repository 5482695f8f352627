"""Bookkeeping for the recomputation pipeline, kept in Redis.

- ``recompute:status``: hash with the outcome of the last full pass
- ``recompute:incremental_since_full``: counter that triggers a full pass
- ``recompute:dead``: list of parked jobs (newest first) awaiting an operator
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis

STATUS_KEY = "recompute:status"
INCREMENTAL_COUNTER_KEY = "recompute:incremental_since_full"
DEAD_KEY = "recompute:dead"
DEAD_MAX_ITEMS = 1000


class RecomputeLedger:
    """Status, threshold counter and dead set for recomputation jobs."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def record_full_pass(self, rows_changed: int, at: datetime | None = None) -> None:
        at = at or datetime.now(timezone.utc)
        pipe = self.redis.pipeline()
        pipe.hset(STATUS_KEY, mapping={"last_full_at": at.isoformat(), "last_full_rows": rows_changed})
        pipe.set(INCREMENTAL_COUNTER_KEY, 0)
        await pipe.execute()

    async def bump_incremental(self) -> int:
        """Count one incremental pass; returns the count since the last full pass."""
        return int(await self.redis.incr(INCREMENTAL_COUNTER_KEY))

    async def reset_incremental(self) -> None:
        await self.redis.set(INCREMENTAL_COUNTER_KEY, 0)

    async def park(
        self,
        job_id: str | None,
        scope: str,
        player_id: int | None,
        attempts: int,
        error: str,
    ) -> dict[str, Any]:
        """Move an exhausted job to the dead set."""
        entry = {
            "job_id": job_id,
            "scope": scope,
            "player_id": player_id,
            "attempts": attempts,
            "error": error,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        }
        pipe = self.redis.pipeline()
        pipe.lpush(DEAD_KEY, json.dumps(entry))
        pipe.ltrim(DEAD_KEY, 0, DEAD_MAX_ITEMS - 1)
        await pipe.execute()
        return entry

    async def dead_jobs(self, limit: int = 100) -> list[dict[str, Any]]:
        raw: list[str] = await self.redis.lrange(DEAD_KEY, 0, limit - 1)  # type: ignore[assignment]
        return [json.loads(item) for item in raw]

    async def drain_dead(self) -> list[dict[str, Any]]:
        """Remove and return every parked job."""
        pipe = self.redis.pipeline()
        pipe.lrange(DEAD_KEY, 0, -1)
        pipe.delete(DEAD_KEY)
        raw, _ = await pipe.execute()
        return [json.loads(item) for item in raw]

    async def status(self) -> dict[str, Any]:
        pipe = self.redis.pipeline()
        pipe.hgetall(STATUS_KEY)
        pipe.get(INCREMENTAL_COUNTER_KEY)
        pipe.llen(DEAD_KEY)
        data, counter, dead = await pipe.execute()
        return {
            "last_full_at": data.get("last_full_at"),
            "last_full_rows": int(data["last_full_rows"]) if "last_full_rows" in data else None,
            "incremental_since_full": int(counter or 0),
            "dead_jobs": int(dead),
        }
