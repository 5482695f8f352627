"""Shared FastAPI dependencies."""

from scoreboard.config import get_settings
from scoreboard.database import get_session_factory
from scoreboard.leaderboard.cache import LeaderboardCache
from scoreboard.leaderboard.events import ScoreEventPublisher
from scoreboard.leaderboard.service import LeaderboardService
from scoreboard.recompute.ledger import RecomputeLedger
from scoreboard.recompute.queue import RecomputeQueue, get_queue_pool
from scoreboard.redis_client import get_redis


def get_leaderboard_service() -> LeaderboardService:
    """Wire the engine from the process-wide pools."""
    settings = get_settings()
    redis = get_redis()
    return LeaderboardService(
        session_factory=get_session_factory(),
        cache=LeaderboardCache(redis, settings.top_cache_ttl_seconds, settings.rank_cache_ttl_seconds),
        queue=RecomputeQueue(get_queue_pool(), settings.recompute_queue_name),
        ledger=RecomputeLedger(redis),
        publisher=ScoreEventPublisher(redis),
        settings=settings,
    )
