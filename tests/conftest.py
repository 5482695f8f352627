"""Shared test fixtures.

Unit tests run against in-memory fakes for the database session and Redis.
Integration tests (tests/integration) use live PostgreSQL and Redis.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from scoreboard.config import Settings


class FakeSession:
    """Stands in for AsyncSession: supports ``async with`` and ``begin()``."""

    def __init__(self) -> None:
        self.begun = 0
        self.committed = 0
        self.rolled_back = 0

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def begin(self) -> FakeSession._Tx:
        self.begun += 1
        return FakeSession._Tx(self)

    class _Tx:
        def __init__(self, session: FakeSession) -> None:
            self.session = session

        async def __aenter__(self) -> FakeSession:
            return self.session

        async def __aexit__(self, exc_type: Any, *rest: Any) -> None:
            if exc_type is None:
                self.session.committed += 1
            else:
                self.session.rolled_back += 1


@pytest.fixture
def fake_sessions() -> list[FakeSession]:
    return []


@pytest.fixture
def session_factory(fake_sessions: list[FakeSession]) -> Callable[[], FakeSession]:
    """Callable returning a fresh FakeSession, recording each one."""

    def factory() -> FakeSession:
        session = FakeSession()
        fake_sessions.append(session)
        return session

    return factory


def make_pipeline(results: list[Any] | None = None) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results or [])
    return pipe


@pytest.fixture
def mock_redis() -> MagicMock:
    """Redis client double: async commands, sync pipeline() with async execute()."""
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock(return_value=1)
    redis.smembers = AsyncMock(return_value=set())
    redis.publish = AsyncMock(return_value=1)
    redis.pipeline = MagicMock(return_value=make_pipeline([True, 1]))
    return redis


@pytest.fixture
def settings() -> Settings:
    return Settings(
        submit_timeout_seconds=5.0,
        recompute_enabled=True,
        recompute_max_attempts=3,
        recompute_backoff_seconds=2.0,
        full_recompute_threshold=3,
    )
