"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError


class WritiumError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.error
        self.detail = detail
        super().__init__(self.message)


class NotAuthenticatedError(WritiumError):
    status_code = 401
    error = "Not logged in"


class ForbiddenError(WritiumError):
    status_code = 403
    error = "Forbidden"


class NotFoundError(WritiumError):
    """Entity absent, or present but not visible to the actor."""

    status_code = 404
    error = "Not found"


class InvalidRequestError(WritiumError):
    status_code = 400
    error = "Invalid request"


class StorageUnavailableError(WritiumError):
    """Database unreachable or too slow; callers may retry."""

    status_code = 503
    error = "Service Unavailable"


_BUSY_MARKERS = ("statement timeout", "database is locked", "canceling statement")
_MISSING_DB_MARKERS = ("unable to open database file", "does not exist")


def describe_storage_error(exc: DBAPIError) -> str:
    """Turn a driver error into a message an operator can act on."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    text = str(orig or exc).lower()
    if code == "28P01" or "password authentication failed" in text:
        return "Database connection failed: check user and password (DATABASE_URL)."
    if code == "3D000" or any(marker in text for marker in _MISSING_DB_MARKERS):
        return "Database does not exist: run `writium init-db`."
    if code == "57014" or any(marker in text for marker in _BUSY_MARKERS):
        return "Database is busy: statement timed out, retry the request."
    return str(orig or exc) or "Database error"
