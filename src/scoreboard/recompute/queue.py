"""arq job queue for rank recomputation requests.

The queue lives in Redis, so a request enqueued before a crash is still
there when a worker comes back.
"""

from __future__ import annotations

import structlog
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

logger = structlog.get_logger()

SCOPE_FULL = "full"
SCOPE_INCREMENTAL = "incremental"
SCOPES = frozenset({SCOPE_FULL, SCOPE_INCREMENTAL})

RECOMPUTE_JOB = "recompute_ranks"
WARM_CACHE_JOB = "warm_top_cache"

_pool: ArqRedis | None = None


async def init_queue(url: str) -> None:
    """Initialize the arq Redis pool used for enqueueing."""
    global _pool  # noqa: PLW0603
    _pool = await create_pool(RedisSettings.from_dsn(url))


async def close_queue() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_queue_pool() -> ArqRedis:
    if _pool is None:
        msg = "Job queue not initialized. Call init_queue() first."
        raise RuntimeError(msg)
    return _pool


class RecomputeQueue:
    """Enqueues recomputation and cache-warming jobs."""

    def __init__(self, pool: ArqRedis, queue_name: str) -> None:
        self.pool = pool
        self.queue_name = queue_name

    async def enqueue(self, scope: str, player_id: int | None = None) -> str | None:
        """Queue a recomputation request. Returns the arq job id."""
        job = await self.pool.enqueue_job(
            RECOMPUTE_JOB,
            scope,
            player_id,
            _queue_name=self.queue_name,
        )
        if job is None:
            return None
        logger.info("recompute_job_enqueued", job_id=job.job_id, scope=scope, player_id=player_id)
        return job.job_id

    async def enqueue_incremental(self, player_id: int) -> str | None:
        return await self.enqueue(SCOPE_INCREMENTAL, player_id)

    async def enqueue_full(self) -> str | None:
        return await self.enqueue(SCOPE_FULL)

    async def enqueue_cache_warming(self) -> str | None:
        job = await self.pool.enqueue_job(WARM_CACHE_JOB, _queue_name=self.queue_name)
        return job.job_id if job else None

    async def queued_count(self) -> int:
        """Jobs waiting in the queue (including deferred retries)."""
        return int(await self.pool.zcard(self.queue_name))
