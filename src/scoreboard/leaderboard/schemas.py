"""Pydantic request/response models for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# ── Submission ──


class SubmitScoreRequest(BaseModel):
    player_id: int = Field(gt=0)
    score: int = Field(ge=0, le=1_000_000)
    game_mode: str = Field(default="solo", min_length=1, max_length=50)


class SubmitScoreResponse(BaseModel):
    player_id: int
    total_score: int
    submitted_at: datetime


# ── Reads ──


class LeaderboardEntryResponse(BaseModel):
    player_id: int
    display_name: str
    total_score: int
    rank: int


class TopPlayersResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    count: int


class PlayerRankResponse(BaseModel):
    player_id: int
    display_name: str
    total_score: int
    rank: int
    total_players: int


class PlayerScoreResponse(BaseModel):
    player_id: int
    total_score: int
    session_count: int


class StatsResponse(BaseModel):
    total_players: int
    total_sessions: int
    average_score: int


# ── Recomputation admin ──


class RecomputeAcceptedResponse(BaseModel):
    status: str
    job_id: str | None = None


class RecomputeStatusResponse(BaseModel):
    last_full_at: datetime | None = None
    last_full_rows: int | None = None
    incremental_since_full: int
    queued_jobs: int
    dead_jobs: int


class DeadJobResponse(BaseModel):
    job_id: str | None = None
    scope: str
    player_id: int | None = None
    attempts: int
    error: str
    failed_at: datetime


class RequeueResponse(BaseModel):
    status: str
    requeued: int
    job_ids: list[str | None]
