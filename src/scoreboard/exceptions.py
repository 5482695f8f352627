"""Error taxonomy shared by the engine, the worker and the HTTP layer.

Services raise these; the HTTP error handlers translate them into status
codes and the recomputation worker decides from them whether to retry.
"""

from __future__ import annotations

from typing import Any


class ScoreboardError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


class ValidationError(ScoreboardError):
    """Malformed or out-of-range input. Never retried."""

    status_code = 400


class NotFound(ScoreboardError):
    """The requested player has no aggregate entry."""

    status_code = 404


class TransientStoreError(ScoreboardError):
    """Store or cache unavailable, or a transaction timed out."""

    status_code = 503
    retryable = True


class FatalConfigurationError(ScoreboardError):
    """A store or cache connection could not be established at startup."""
