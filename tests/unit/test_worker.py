"""Unit tests for the recompute_ranks arq job: throttling, retry backoff and dead-lettering."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from arq import Retry

from scoreboard.config import Settings
from scoreboard.exceptions import TransientStoreError
from scoreboard.recompute import worker as worker_module
from scoreboard.recompute.worker import (
    WorkerSettings,
    backoff_seconds,
    recompute_ranks,
    run_deadline,
    scheduled_full_recompute,
    warm_top_cache,
)

pytestmark = pytest.mark.asyncio


def make_ctx(settings: Settings, job_try: int = 1) -> dict:
    recomputer = MagicMock()
    recomputer.run_full = AsyncMock(return_value={"scope": "full", "rows_changed": 12})
    recomputer.run_incremental = AsyncMock(
        return_value={"scope": "incremental", "player_id": 5, "rank": 2},
    )
    throttle = MagicMock()
    throttle.acquire = AsyncMock()
    ledger = MagicMock()

    async def park(job_id, scope, player_id, attempts, error):
        return {
            "job_id": job_id,
            "scope": scope,
            "player_id": player_id,
            "attempts": attempts,
            "error": error,
            "failed_at": "2026-01-01T00:00:00+00:00",
        }

    ledger.park = AsyncMock(side_effect=park)
    return {
        "settings": settings,
        "job_try": job_try,
        "job_id": "job-123",
        "recomputer": recomputer,
        "throttle": throttle,
        "ledger": ledger,
    }


class TestBackoff:
    async def test_doubles_per_attempt(self):
        assert [backoff_seconds(n, 2.0) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    async def test_run_deadline_stays_under_job_timeout(self):
        assert run_deadline(Settings(recompute_job_timeout_seconds=300)) == 285.0
        assert run_deadline(Settings(recompute_job_timeout_seconds=10)) == 9.0


class TestRecomputeRanks:
    async def test_full_scope(self, settings: Settings):
        ctx = make_ctx(settings)

        result = await recompute_ranks(ctx, "full")

        assert result == {"scope": "full", "rows_changed": 12}
        ctx["throttle"].acquire.assert_awaited_once()
        ctx["recomputer"].run_full.assert_awaited_once()

    async def test_incremental_scope(self, settings: Settings):
        ctx = make_ctx(settings)

        result = await recompute_ranks(ctx, "incremental", 5)

        assert result["rank"] == 2
        ctx["recomputer"].run_incremental.assert_awaited_once_with(5)

    async def test_failure_before_last_attempt_retries_with_backoff(self, settings: Settings):
        ctx = make_ctx(settings, job_try=2)
        ctx["recomputer"].run_full.side_effect = TransientStoreError("db down")

        with pytest.raises(Retry) as exc_info:
            await recompute_ranks(ctx, "full")

        assert exc_info.value.defer_score == 4000
        ctx["ledger"].park.assert_not_awaited()

    async def test_throttle_failure_is_retried(self, settings: Settings):
        ctx = make_ctx(settings)
        ctx["throttle"].acquire.side_effect = ConnectionError("redis gone")

        with pytest.raises(Retry):
            await recompute_ranks(ctx, "full")

    async def test_last_attempt_parks_job(self, settings: Settings):
        ctx = make_ctx(settings, job_try=settings.recompute_max_attempts)
        ctx["recomputer"].run_incremental.side_effect = TransientStoreError("db down")

        result = await recompute_ranks(ctx, "incremental", 9)

        assert result == {"status": "dead_lettered", "scope": "incremental", "player_id": 9}
        job_id, scope, player_id, attempts, error = ctx["ledger"].park.await_args.args
        assert (job_id, scope, player_id, attempts) == ("job-123", "incremental", 9, 3)
        assert error == "TransientStoreError: db down"

    async def test_timed_out_last_attempt_is_parked(self, settings: Settings, monkeypatch):
        async def slow_pass():
            await asyncio.sleep(5)

        monkeypatch.setattr(worker_module, "run_deadline", lambda _settings: 0.05)
        ctx = make_ctx(settings, job_try=settings.recompute_max_attempts)
        ctx["recomputer"].run_full.side_effect = slow_pass

        result = await recompute_ranks(ctx, "full")

        assert result["status"] == "dead_lettered"
        ctx["ledger"].park.assert_awaited_once()
        assert ctx["ledger"].park.await_args.args[4].startswith("TimeoutError")

    async def test_timed_out_early_attempt_is_retried(self, settings: Settings, monkeypatch):
        async def slow_pass():
            await asyncio.sleep(5)

        monkeypatch.setattr(worker_module, "run_deadline", lambda _settings: 0.05)
        ctx = make_ctx(settings, job_try=1)
        ctx["recomputer"].run_full.side_effect = slow_pass

        with pytest.raises(Retry):
            await recompute_ranks(ctx, "full")
        ctx["ledger"].park.assert_not_awaited()

    async def test_try_past_budget_is_parked_without_running(self, settings: Settings):
        ctx = make_ctx(settings, job_try=settings.recompute_max_attempts + 1)

        result = await recompute_ranks(ctx, "incremental", 4)

        assert result == {"status": "dead_lettered", "scope": "incremental", "player_id": 4}
        ctx["recomputer"].run_incremental.assert_not_awaited()
        ctx["throttle"].acquire.assert_not_awaited()
        assert ctx["ledger"].park.await_args.args[3] == settings.recompute_max_attempts

    async def test_unknown_scope_is_parked_immediately(self, settings: Settings):
        ctx = make_ctx(settings, job_try=1)

        result = await recompute_ranks(ctx, "sideways")

        assert result["status"] == "dead_lettered"
        ctx["ledger"].park.assert_awaited_once()

    async def test_incremental_without_player_is_parked(self, settings: Settings):
        ctx = make_ctx(settings)

        result = await recompute_ranks(ctx, "incremental", None)

        assert result["status"] == "dead_lettered"
        ctx["recomputer"].run_incremental.assert_not_awaited()


class TestScheduledJobs:
    async def test_cron_runs_full_pass(self, settings: Settings):
        ctx = make_ctx(settings)

        assert (await scheduled_full_recompute(ctx))["scope"] == "full"

    async def test_warm_top_cache_delegates_to_service(self):
        service = MagicMock()
        service.warm_top_cache = AsyncMock(return_value=[10, 50])

        assert await warm_top_cache({"service": service}) == [10, 50]

    async def test_worker_settings(self):
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"recompute_ranks", "warm_top_cache"}
        assert WorkerSettings.queue_name == "scoreboard:recompute"
        assert WorkerSettings.max_jobs == 2
        # One spare try so a job lost mid-run still reaches the dead set.
        assert WorkerSettings.max_tries == 4
