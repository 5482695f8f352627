"""Score-changed events published to Redis pub/sub.

Subscribers (WebSocket gateways and the like) own delivery, ordering and
reconnection. The engine publishes once per committed submission.
"""

from __future__ import annotations

import json
from datetime import datetime

import redis.asyncio as aioredis

LEADERBOARD_CHANNEL = "pubsub:leaderboard_update"


class ScoreEventPublisher:
    """Publishes one message per successful submission."""

    def __init__(self, redis: aioredis.Redis, channel: str = LEADERBOARD_CHANNEL) -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, player_id: int, score: int, total_score: int, occurred_at: datetime) -> int:
        """Returns the number of subscribers that received the event."""
        return await self.redis.publish(
            self.channel,
            json.dumps({
                "event": "score_submitted",
                "player_id": player_id,
                "score": score,
                "total_score": total_score,
                "occurred_at": occurred_at.isoformat(),
            }),
        )
