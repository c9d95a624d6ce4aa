"""Exception hierarchy for sessions and calendar sync."""
from __future__ import annotations

from typing import Optional


class FocusBlocksError(Exception):
    pass


# ---------- sessions ----------
class SessionStateError(FocusBlocksError):
    """A session transition was requested that its current state forbids."""


class SessionNotFound(FocusBlocksError):
    pass


class TaskNotFound(FocusBlocksError):
    pass


# ---------- sync ----------
class SyncError(FocusBlocksError):
    def __init__(self, message: str = "", *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientNetworkError(SyncError):
    """Retry later; the operation stays queued."""


class AuthExpired(SyncError):
    """Credentials could not be refreshed; the user has to reconnect."""


class CursorExpired(SyncError):
    """The incremental sync cursor was rejected by the calendar (HTTP 410)."""


class RemoteNotFound(SyncError):
    """The remote event no longer exists."""


class MaxRetriesExceeded(SyncError):
    pass


class MissingCursorError(SyncError):
    """A full sync finished without handing back a cursor."""


class CalendarApiError(SyncError):
    pass


__all__ = [
    "FocusBlocksError",
    "SessionStateError",
    "SessionNotFound",
    "TaskNotFound",
    "SyncError",
    "TransientNetworkError",
    "AuthExpired",
    "CursorExpired",
    "RemoteNotFound",
    "MaxRetriesExceeded",
    "MissingCursorError",
    "CalendarApiError",
]
