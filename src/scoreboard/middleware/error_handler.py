"""Global error handlers: the engine's error taxonomy as consistent JSON responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from scoreboard.exceptions import NotFound, ScoreboardError, TransientStoreError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(ScoreboardError)
    async def scoreboard_error_handler(request: Request, exc: ScoreboardError) -> JSONResponse:
        """ValidationError -> 400, NotFound -> 404, TransientStoreError -> 503."""
        if isinstance(exc, TransientStoreError):
            logger.warning("transient_store_error", path=request.url.path, error=exc.message)
        elif not isinstance(exc, NotFound):
            logger.info("request_rejected", path=request.url.path, error=exc.message)

        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
