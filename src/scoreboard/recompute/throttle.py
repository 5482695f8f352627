"""Redis-backed fixed-window throttle shared by all recomputation workers."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


class JobThrottle:
    """Allow at most ``max_per_second`` job starts per one-second window.

    A caller that finds the window full sleeps until the next window and
    tries again, so throttling never consumes a retry attempt.
    """

    def __init__(self, redis: aioredis.Redis, max_per_second: int, key_prefix: str = "recompute:throttle") -> None:
        self.redis = redis
        self.max_per_second = max_per_second
        self.key_prefix = key_prefix

    async def acquire(self) -> None:
        while True:
            now = time.time()
            window = int(now)
            key = f"{self.key_prefix}:{window}"

            pipe = self.redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, 2)
            results: list[Any] = await pipe.execute()

            if results[0] <= self.max_per_second:
                return
            wait = (window + 1) - now
            logger.debug("recompute_throttled", wait_seconds=round(wait, 3))
            await asyncio.sleep(wait)
