"""Rank recomputation passes over the aggregate table."""

from __future__ import annotations

from typing import Any

import structlog
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard.leaderboard import store
from scoreboard.leaderboard.cache import LeaderboardCache
from scoreboard.recompute.ledger import RecomputeLedger
from scoreboard.recompute.queue import RecomputeQueue

logger = structlog.get_logger()


class RankRecomputer:
    """Full and incremental rank passes.

    Both passes are idempotent: for a fixed snapshot of totals they always
    write the same ranks, so a retried job cannot corrupt the projection.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LeaderboardCache,
        ledger: RecomputeLedger,
        queue: RecomputeQueue | None = None,
        full_threshold: int = 100,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.ledger = ledger
        self.queue = queue
        self.full_threshold = full_threshold

    async def run_full(self) -> dict[str, Any]:
        async with store.store_errors("full_recompute"):
            async with self.session_factory() as db, db.begin():
                changed = await store.recompute_all_ranks(db)

        try:
            await self.cache.invalidate_top()
        except (RedisError, OSError):
            logger.warning("top_cache_invalidation_failed", exc_info=True)

        await self.ledger.record_full_pass(changed)
        logger.info("full_recompute_completed", rows_changed=changed)

        if self.queue is not None:
            await self.queue.enqueue_cache_warming()
        return {"scope": "full", "rows_changed": changed}

    async def run_incremental(self, player_id: int) -> dict[str, Any]:
        async with store.store_errors("incremental_recompute"):
            async with self.session_factory() as db, db.begin():
                rank = await store.recompute_player_rank(db, player_id)

        if rank is None:
            logger.info("incremental_recompute_skipped", player_id=player_id, reason="no_entry")
            return {"scope": "incremental", "player_id": player_id, "rank": None}

        pending = await self.ledger.bump_incremental()
        logger.debug("incremental_recompute_completed", player_id=player_id, rank=rank, pending=pending)

        # Crossed players only get fixed by a full pass.
        if self.queue is not None and pending >= self.full_threshold:
            await self.ledger.reset_incremental()
            await self.queue.enqueue_full()
            logger.info("full_recompute_requested", incremental_since_full=pending)
        return {"scope": "incremental", "player_id": player_id, "rank": rank}
