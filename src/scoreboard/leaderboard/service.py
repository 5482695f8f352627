"""Leaderboard engine: score submission pipeline and cached rank reads.

Submissions are strongly consistent for a player's total: the session
insert and the total rewrite happen in one transaction holding the
player's aggregate row lock. Ranks are a derived projection that the
recomputation worker converges in the background; cache invalidation,
the recomputation request and the notification all happen after commit
and are best-effort.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard.config import Settings, get_settings
from scoreboard.exceptions import NotFound, ValidationError
from scoreboard.leaderboard import store
from scoreboard.leaderboard.cache import LeaderboardCache
from scoreboard.leaderboard.events import ScoreEventPublisher
from scoreboard.recompute.ledger import RecomputeLedger
from scoreboard.recompute.queue import SCOPES, RecomputeQueue

logger = structlog.get_logger()


def validate_submission(player_id: Any, score: Any, game_mode: Any, settings: Settings) -> None:  # noqa: ANN401
    """Range and type checks for a submission. Raises ValidationError."""
    if isinstance(player_id, bool) or not isinstance(player_id, int) or player_id <= 0:
        msg = "player_id must be a positive integer"
        raise ValidationError(msg, {"player_id": player_id})
    if isinstance(score, bool) or not isinstance(score, int):
        msg = "score must be an integer"
        raise ValidationError(msg, {"score": score})
    if not settings.score_min <= score <= settings.score_max:
        msg = f"score must be between {settings.score_min:,} and {settings.score_max:,}"
        raise ValidationError(msg, {"score": score})
    if not isinstance(game_mode, str) or not 1 <= len(game_mode) <= settings.game_mode_max_length:
        msg = f"game_mode must be 1-{settings.game_mode_max_length} characters"
        raise ValidationError(msg, {"game_mode": game_mode})


class LeaderboardService:
    """Entry point the transport layer calls with validated input."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LeaderboardCache,
        queue: RecomputeQueue | None = None,
        ledger: RecomputeLedger | None = None,
        publisher: ScoreEventPublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.queue = queue
        self.ledger = ledger
        self.publisher = publisher
        self.settings = settings or get_settings()

    # ── Submission pipeline ──

    async def submit_score(self, player_id: int, score: int, game_mode: str | None = None) -> dict[str, Any]:
        """Record a session and return the player's fresh total.

        Raises:
            ValidationError: input out of range.
            TransientStoreError: the transaction failed or timed out.
        """
        game_mode = self.settings.default_game_mode if game_mode is None else game_mode
        validate_submission(player_id, score, game_mode, self.settings)

        async with store.store_errors("submit_score"):
            total_score, submitted_at = await asyncio.wait_for(
                self._record_session(player_id, score, game_mode),
                timeout=self.settings.submit_timeout_seconds,
            )

        logger.info("score_submitted", player_id=player_id, score=score, total_score=total_score)
        await self._after_commit(player_id, score, total_score, submitted_at)

        return {
            "player_id": player_id,
            "total_score": total_score,
            "submitted_at": submitted_at.isoformat(),
        }

    async def _record_session(self, player_id: int, score: int, game_mode: str) -> tuple[int, datetime]:
        async with self.session_factory() as db, db.begin():
            await store.apply_timeouts(db, self.settings.submit_timeout_seconds)
            await store.upsert_player(db, player_id)
            # Held until commit: concurrent submissions for this player queue here.
            await store.lock_entry(db, player_id)
            submitted_at = await store.insert_session(db, player_id, score, game_mode)
            total_score = await store.sum_session_scores(db, player_id)
            await store.set_total_score(db, player_id, total_score)
        return total_score, submitted_at

    async def _after_commit(self, player_id: int, score: int, total_score: int, submitted_at: datetime) -> None:
        try:
            await self.cache.invalidate_top()
        except Exception:
            logger.warning("top_cache_invalidation_failed", player_id=player_id, exc_info=True)
        try:
            await self.cache.invalidate_player(player_id)
        except Exception:
            logger.warning("player_cache_invalidation_failed", player_id=player_id, exc_info=True)

        if self.queue is not None and self.settings.recompute_enabled:
            try:
                await self.queue.enqueue_incremental(player_id)
            except Exception:
                logger.warning("recompute_enqueue_failed", player_id=player_id, exc_info=True)

        if self.publisher is not None:
            try:
                await self.publisher.publish(player_id, score, total_score, submitted_at)
            except Exception:
                logger.warning("score_event_publish_failed", player_id=player_id, exc_info=True)

    # ── Reads ──

    async def get_top(self, n: int = 10) -> list[dict[str, Any]]:
        if isinstance(n, bool) or not isinstance(n, int) or not 1 <= n <= self.settings.top_limit_max:
            msg = f"n must be between 1 and {self.settings.top_limit_max}"
            raise ValidationError(msg, {"n": n})

        async def fetch() -> list[dict[str, Any]]:
            async with store.store_errors("get_top"):
                async with self.session_factory() as db:
                    entries = await store.fetch_top(db, n)
            logger.info("top_players_loaded", n=n, returned=len(entries))
            return entries

        return await self.cache.get_top(n, fetch)

    async def get_rank(self, player_id: int) -> dict[str, Any]:
        async def fetch() -> dict[str, Any] | None:
            async with store.store_errors("get_rank"):
                async with self.session_factory() as db:
                    return await store.fetch_player_rank(db, player_id)

        snapshot = await self.cache.get_rank(player_id, fetch)
        if snapshot is None:
            logger.info("player_not_ranked", player_id=player_id)
            msg = "Player not found in leaderboard"
            raise NotFound(msg, {"player_id": player_id})
        return snapshot

    async def get_score(self, player_id: int) -> dict[str, Any]:
        async def fetch() -> dict[str, Any] | None:
            async with store.store_errors("get_score"):
                async with self.session_factory() as db:
                    return await store.fetch_player_score(db, player_id)

        snapshot = await self.cache.get_score(player_id, fetch)
        if snapshot is None:
            msg = "Player not found in leaderboard"
            raise NotFound(msg, {"player_id": player_id})
        return snapshot

    async def get_stats(self) -> dict[str, int]:
        async with store.store_errors("get_stats"):
            async with self.session_factory() as db:
                return await store.fetch_stats(db)

    # ── Recomputation admin ──

    def _require_queue(self) -> RecomputeQueue:
        if self.queue is None:
            msg = "Recomputation queue is not configured"
            raise RuntimeError(msg)
        return self.queue

    def _require_ledger(self) -> RecomputeLedger:
        if self.ledger is None:
            msg = "Recomputation ledger is not configured"
            raise RuntimeError(msg)
        return self.ledger

    async def trigger_full_recomputation(self) -> dict[str, Any]:
        """Queue a full pass. Completion is observed via reads or the status call."""
        queue = self._require_queue()
        async with store.store_errors("trigger_full_recomputation"):
            job_id = await queue.enqueue_full()
        logger.info("full_recompute_triggered", job_id=job_id)
        return {"status": "accepted", "job_id": job_id}

    async def get_recomputation_status(self) -> dict[str, Any]:
        ledger, queue = self._require_ledger(), self._require_queue()
        async with store.store_errors("get_recomputation_status"):
            status = await ledger.status()
            status["queued_jobs"] = await queue.queued_count()
        return status

    async def list_dead_jobs(self, limit: int = 100) -> list[dict[str, Any]]:
        ledger = self._require_ledger()
        async with store.store_errors("list_dead_jobs"):
            return await ledger.dead_jobs(limit)

    async def requeue_dead_jobs(self) -> dict[str, Any]:
        """Put every parked job back on the queue with a fresh attempt budget."""
        queue = self._require_queue()
        ledger = self._require_ledger()
        job_ids = []
        async with store.store_errors("requeue_dead_jobs"):
            for entry in await ledger.drain_dead():
                scope = entry.get("scope")
                if scope not in SCOPES:
                    logger.warning("dead_job_dropped", entry=entry, reason="unknown_scope")
                    continue
                job_ids.append(await queue.enqueue(scope, entry.get("player_id")))
        logger.info("dead_jobs_requeued", count=len(job_ids))
        return {"status": "accepted", "requeued": len(job_ids), "job_ids": job_ids}

    async def warm_top_cache(self, sizes: list[int] | None = None) -> list[int]:
        """Populate the top-N cache for each size. Returns the sizes warmed."""
        warmed = []
        for n in sizes or self.settings.warm_cache_sizes:
            await self.get_top(n)
            warmed.append(n)
        return warmed
