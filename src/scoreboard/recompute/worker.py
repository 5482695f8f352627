"""Rank recomputation arq worker.

Import path for arq CLI: arq scoreboard.recompute.worker.WorkerSettings

Jobs:
- recompute_ranks(scope, player_id): full or incremental pass, throttled,
  retried with exponential backoff, parked in the dead set when exhausted
- warm_top_cache: repopulate top-N snapshots after a full pass (and by cron)
- scheduled_full_recompute: cron, every full_recompute_interval_minutes
"""

from __future__ import annotations

import asyncio
from typing import Any

import redis.asyncio as aioredis
import structlog
from arq import Retry, cron
from arq.connections import RedisSettings

from scoreboard.config import Settings, get_settings
from scoreboard.database import close_db, get_session_factory, init_db, verify_db
from scoreboard.exceptions import ValidationError
from scoreboard.leaderboard.cache import LeaderboardCache
from scoreboard.leaderboard.service import LeaderboardService
from scoreboard.middleware.logging import setup_logging
from scoreboard.recompute.engine import RankRecomputer
from scoreboard.recompute.ledger import RecomputeLedger
from scoreboard.recompute.queue import SCOPE_FULL, SCOPE_INCREMENTAL, RecomputeQueue
from scoreboard.recompute.throttle import JobThrottle

logger = structlog.get_logger()


def backoff_seconds(attempt: int, base: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base, ..."""
    return base * (2 ** (attempt - 1))


def run_deadline(settings: Settings) -> float:
    """Time one attempt may run. Kept under arq's job_timeout so a slow pass
    fails inside the job, where it can still be retried or parked."""
    timeout = settings.recompute_job_timeout_seconds
    return max(1.0, timeout - max(1.0, timeout * 0.05))


async def _run_scope(recomputer: RankRecomputer, scope: str, player_id: int | None) -> dict[str, Any]:
    if scope == SCOPE_FULL:
        return await recomputer.run_full()
    if scope == SCOPE_INCREMENTAL:
        if player_id is None:
            msg = "incremental recompute requires a player_id"
            raise ValidationError(msg)
        return await recomputer.run_incremental(player_id)
    msg = f"Unknown recompute scope: {scope}"
    raise ValidationError(msg, {"scope": scope})


async def _park(
    ctx: dict,  # type: ignore[type-arg]
    scope: str,
    player_id: int | None,
    attempts: int,
    error: str,
) -> dict[str, Any]:
    entry = await ctx["ledger"].park(ctx.get("job_id"), scope, player_id, attempts, error)
    logger.error("recompute_job_dead_lettered", **entry)
    return {"status": "dead_lettered", "scope": scope, "player_id": player_id}


async def recompute_ranks(
    ctx: dict,  # type: ignore[type-arg]
    scope: str,
    player_id: int | None = None,
) -> dict[str, Any]:
    """Run one recomputation request with throttling, retry and dead-lettering."""
    settings: Settings = ctx["settings"]
    attempt: int = ctx.get("job_try", 1)
    job_id: str | None = ctx.get("job_id")

    # arq allows one try beyond the budget; reaching it means the previous
    # try never reported back (worker lost mid-job).
    if attempt > settings.recompute_max_attempts:
        return await _park(ctx, scope, player_id, attempt - 1, "attempt ended without a result")

    try:
        await ctx["throttle"].acquire()
        return await asyncio.wait_for(
            _run_scope(ctx["recomputer"], scope, player_id),
            timeout=run_deadline(settings),
        )
    except Exception as exc:
        exhausted = attempt >= settings.recompute_max_attempts
        if isinstance(exc, ValidationError) or exhausted:
            return await _park(ctx, scope, player_id, attempt, f"{type(exc).__name__}: {exc}")

        defer = backoff_seconds(attempt, settings.recompute_backoff_seconds)
        logger.warning(
            "recompute_job_retry",
            job_id=job_id,
            scope=scope,
            player_id=player_id,
            attempt=attempt,
            defer_seconds=defer,
            error=str(exc),
        )
        raise Retry(defer=defer) from exc


async def scheduled_full_recompute(ctx: dict) -> dict[str, Any]:  # type: ignore[type-arg]
    """Periodic full pass that bounds incremental staleness."""
    return await recompute_ranks(ctx, SCOPE_FULL)


async def warm_top_cache(ctx: dict) -> list[int]:  # type: ignore[type-arg]
    service: LeaderboardService = ctx["service"]
    warmed = await service.warm_top_cache()
    logger.info("top_cache_warmed", sizes=warmed)
    return warmed


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis connections and the recomputation collaborators."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    await verify_db()

    # ctx["redis"] is arq's own pool (bytes, used for enqueueing); the cache
    # and ledger need a decoding client.
    app_redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    cache = LeaderboardCache(app_redis, settings.top_cache_ttl_seconds, settings.rank_cache_ttl_seconds)
    ledger = RecomputeLedger(app_redis)
    queue = RecomputeQueue(ctx["redis"], settings.recompute_queue_name)

    ctx["settings"] = settings
    ctx["app_redis"] = app_redis
    ctx["ledger"] = ledger
    ctx["throttle"] = JobThrottle(app_redis, settings.recompute_max_jobs_per_second)
    ctx["recomputer"] = RankRecomputer(
        get_session_factory(),
        cache,
        ledger,
        queue=queue,
        full_threshold=settings.full_recompute_threshold,
    )
    ctx["service"] = LeaderboardService(get_session_factory(), cache, settings=settings)
    logger.info("recompute_worker_started", queue=settings.recompute_queue_name)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    app_redis: aioredis.Redis | None = ctx.get("app_redis")
    if app_redis:
        await app_redis.aclose()
    await close_db()
    logger.info("recompute_worker_shut_down")


_settings = get_settings()
_full_minutes = set(range(0, 60, max(1, _settings.full_recompute_interval_minutes)))


class WorkerSettings:
    """arq worker settings for rank recomputation."""

    functions = [recompute_ranks, warm_top_cache]
    cron_jobs = [
        cron(scheduled_full_recompute, minute=_full_minutes, unique=True),
        # One minute after each scheduled full pass.
        cron(warm_top_cache, minute={(m + 1) % 60 for m in _full_minutes}, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    queue_name = _settings.recompute_queue_name
    max_jobs = _settings.recompute_concurrency
    max_tries = _settings.recompute_max_attempts + 1
    job_timeout = _settings.recompute_job_timeout_seconds
