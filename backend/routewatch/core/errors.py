"""
Centralized error kinds for monitoring, quota and provider failures.
Typed results for expected conditions; exceptions only where a caller must stop.
Routes map these to HTTP with monitoring_error_to_http so they stay thin.
"""
from __future__ import annotations

import enum

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Typed outcomes (never raised)
# ---------------------------------------------------------------------------


class PollOutcomeStatus(str, enum.Enum):
    POLLED = "polled"
    WINDOW_INELIGIBLE = "window_ineligible"
    NOT_DUE = "not_due"
    QUOTA_EXCEEDED = "quota_exceeded"
    SESSION_CLOSED = "session_closed"
    PROVIDER_FAILURE = "provider_failure"
    NOT_FOUND = "not_found"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MonitoringError(Exception):
    """Base for errors the API boundary turns into a 4xx rejection."""

    code = "MONITORING_ERROR"

    def __init__(self, message: str = "", code: str | None = None):
        if code:
            self.code = code
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFoundError(MonitoringError):
    code = "NOT_FOUND"


class WindowIneligibleError(MonitoringError):
    code = "WINDOW_INELIGIBLE"


class QuotaExceededError(MonitoringError):
    code = "QUOTA_EXCEEDED"


class NotDueError(MonitoringError):
    """Another poll for the session landed inside the interval first."""

    code = "NOT_DUE"


class InvalidRequestError(MonitoringError):
    code = "INVALID_REQUEST"


class ConflictError(MonitoringError):
    """Write refused by existing state: duplicate route, overlapping or in-use window."""

    code = "CONFLICT"


class SessionClosedError(MonitoringError):
    """Poll attempted on a Completed session (stale scheduling decision upstream)."""

    code = "SESSION_CLOSED"


class ProviderFailure(Exception):
    """Provider call failed or timed out. Isolated per poll/shot."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code


# HTTP status codes for known error categories
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_UNPROCESSABLE = 422
STATUS_TOO_MANY_REQUESTS = 429
STATUS_BAD_GATEWAY = 502

# (error class, status). First match wins.
MONITORING_ERROR_RULES: list[tuple[type[Exception], int]] = [
    (QuotaExceededError, STATUS_TOO_MANY_REQUESTS),
    (SessionClosedError, STATUS_CONFLICT),
    (ConflictError, STATUS_CONFLICT),
    (WindowIneligibleError, STATUS_UNPROCESSABLE),
    (NotDueError, STATUS_UNPROCESSABLE),
    (InvalidRequestError, STATUS_UNPROCESSABLE),
    (NotFoundError, STATUS_NOT_FOUND),
    (ProviderFailure, STATUS_BAD_GATEWAY),
]

OUTCOME_STATUS_CODES: dict[PollOutcomeStatus, int] = {
    PollOutcomeStatus.QUOTA_EXCEEDED: STATUS_TOO_MANY_REQUESTS,
    PollOutcomeStatus.SESSION_CLOSED: STATUS_CONFLICT,
    PollOutcomeStatus.WINDOW_INELIGIBLE: STATUS_UNPROCESSABLE,
    PollOutcomeStatus.NOT_DUE: STATUS_UNPROCESSABLE,
    PollOutcomeStatus.NOT_FOUND: STATUS_NOT_FOUND,
    PollOutcomeStatus.PROVIDER_FAILURE: STATUS_BAD_GATEWAY,
}


def monitoring_error_to_http(exc: Exception) -> HTTPException:
    """
    Map a monitoring/provider exception into an HTTPException.
    Anything not in MONITORING_ERROR_RULES is re-raised: persistence faults surface unchanged.
    """
    for exc_type, status_code in MONITORING_ERROR_RULES:
        if isinstance(exc, exc_type):
            code = getattr(exc, "code", exc_type.__name__)
            return HTTPException(status_code=status_code, detail={"error": code, "message": str(exc)})
    raise exc
