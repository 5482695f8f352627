"""Leaderboard API endpoints.

Thin transport over LeaderboardService: request validation happens in the
schemas, error mapping in the global error handlers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query

from scoreboard.dependencies import get_leaderboard_service
from scoreboard.leaderboard.schemas import (
    DeadJobResponse,
    LeaderboardEntryResponse,
    PlayerRankResponse,
    PlayerScoreResponse,
    RecomputeAcceptedResponse,
    RecomputeStatusResponse,
    RequeueResponse,
    StatsResponse,
    SubmitScoreRequest,
    SubmitScoreResponse,
    TopPlayersResponse,
)
from scoreboard.leaderboard.service import LeaderboardService

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


@router.post("/scores", response_model=SubmitScoreResponse)
async def submit_score(
    body: SubmitScoreRequest,
    service: LeaderboardService = Depends(get_leaderboard_service),  # noqa: B008
):
    """Record a game session and return the player's new total."""
    result = await service.submit_score(body.player_id, body.score, body.game_mode)
    return SubmitScoreResponse(**result)


@router.get("/top", response_model=TopPlayersResponse)
async def get_top_players(
    limit: int = Query(10, ge=1),
    service: LeaderboardService = Depends(get_leaderboard_service),  # noqa: B008
):
    entries = await service.get_top(limit)
    return TopPlayersResponse(
        entries=[LeaderboardEntryResponse(**e) for e in entries],
        count=len(entries),
    )


@router.get("/players/{player_id}/rank", response_model=PlayerRankResponse)
async def get_player_rank(
    player_id: int = Path(gt=0),
    service: LeaderboardService = Depends(get_leaderboard_service),  # noqa: B008
):
    return PlayerRankResponse(**await service.get_rank(player_id))


@router.get("/players/{player_id}/score", response_model=PlayerScoreResponse)
async def get_player_score(
    player_id: int = Path(gt=0),
    service: LeaderboardService = Depends(get_leaderboard_service),  # noqa: B008
):
    return PlayerScoreResponse(**await service.get_score(player_id))


@router.get("/stats", response_model=StatsResponse)
async def get_stats(service: LeaderboardService = Depends(get_leaderboard_service)):  # noqa: B008
    return StatsResponse(**await service.get_stats())


# ── Admin ──


@router.post("/admin/recalculate", response_model=RecomputeAcceptedResponse, status_code=202)
async def trigger_recalculation(service: LeaderboardService = Depends(get_leaderboard_service)):  # noqa: B008
    """Queue a full rank recomputation; returns before it runs."""
    return RecomputeAcceptedResponse(**await service.trigger_full_recomputation())


@router.get("/admin/recalculate", response_model=RecomputeStatusResponse)
async def recalculation_status(service: LeaderboardService = Depends(get_leaderboard_service)):  # noqa: B008
    return RecomputeStatusResponse(**await service.get_recomputation_status())


@router.get("/admin/dead-jobs", response_model=list[DeadJobResponse])
async def list_dead_jobs(
    limit: int = Query(100, ge=1, le=1000),
    service: LeaderboardService = Depends(get_leaderboard_service),  # noqa: B008
):
    return [DeadJobResponse(**j) for j in await service.list_dead_jobs(limit)]


@router.post("/admin/dead-jobs/requeue", response_model=RequeueResponse, status_code=202)
async def requeue_dead_jobs(service: LeaderboardService = Depends(get_leaderboard_service)):  # noqa: B008
    return RequeueResponse(**await service.requeue_dead_jobs())
