"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from scoreboard.config import get_settings
from scoreboard.database import close_db, init_db, verify_db
from scoreboard.health.router import router as health_router
from scoreboard.leaderboard.router import router as leaderboard_router
from scoreboard.middleware import setup_middleware
from scoreboard.recompute.queue import close_queue, init_queue
from scoreboard.redis_client import close_redis, init_redis, verify_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle.

    An unreachable database or Redis raises FatalConfigurationError and the
    process does not start.
    """
    settings = get_settings()
    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    await init_redis(settings.redis_url, settings.redis_max_connections)
    try:
        await verify_db()
        await verify_redis()
        await init_queue(settings.redis_url)
    except Exception:
        logger.critical("startup_failed", exc_info=True)
        await close_redis()
        await close_db()
        raise
    logger.info("scoreboard_started", environment=settings.environment)

    yield

    await close_queue()
    await close_redis()
    await close_db()
    logger.info("scoreboard_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Scoreboard API",
        description="Ranked leaderboard with tiered caching and background rank recomputation",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(leaderboard_router)

    return app


app = create_app()
