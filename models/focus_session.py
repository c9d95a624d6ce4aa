"""Focus session (time block) table and its state transitions.

A session carries two spans: the *planned* one the user booked and the
*actual* one recorded by the timer.  ``session_start`` anchors the calendar
event span when several short runs are merged into one logical session;
``actual_start`` is the start of the current run only and is what elapsed
time is measured from.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

from sqlmodel import Field, SQLModel

from core.errors import SessionStateError
from datetime_utils import ensure_utc, utc_now
from storage.types import UTCDateTime


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    MISSED = "missed"
    DISCARDED = "discarded"


class FocusSession(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(index=True, foreign_key="task.id")

    planned_start: datetime = Field(sa_type=UTCDateTime)
    planned_end: datetime = Field(sa_type=UTCDateTime)
    actual_start: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    actual_end: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    session_start: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_stop_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    accumulated_seconds: int = 0

    is_active: bool = Field(default=False, index=True)
    auto_end: bool = True
    was_manual_continue: bool = False
    is_discarded: bool = False

    owned_event_id: Optional[str] = Field(default=None, index=True)
    imported_event_id: Optional[str] = Field(default=None, index=True)
    has_synced_to_calendar: bool = False
    # span most recently written to the calendar, used to recognise our own echoes
    synced_start: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    synced_end: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    # ------------------------------------------------------------------
    # derived state
    @property
    def has_started(self) -> bool:
        return self.actual_start is not None or self.accumulated_seconds > 0

    @property
    def is_completed(self) -> bool:
        return not self.is_active and self.accumulated_seconds > 0

    @property
    def is_imported(self) -> bool:
        return self.imported_event_id is not None

    @property
    def has_calendar_link(self) -> bool:
        return bool(self.owned_event_id or self.imported_event_id)

    @property
    def linked_event_id(self) -> Optional[str]:
        return self.owned_event_id or self.imported_event_id

    @property
    def planned_duration(self) -> timedelta:
        return self.planned_end - self.planned_start

    def work_seconds(self, now: Optional[datetime] = None) -> int:
        """Confirmed work plus the running stretch, gaps excluded."""
        total = self.accumulated_seconds
        if self.is_active and self.actual_start is not None:
            moment = ensure_utc(now) if now else utc_now()
            total += max(0, int((moment - ensure_utc(self.actual_start)).total_seconds()))
        return total

    def can_merge(self, now: datetime, window: timedelta) -> bool:
        if self.last_stop_at is None:
            return False
        return ensure_utc(now) - ensure_utc(self.last_stop_at) < window

    def is_finalized(self, now: datetime, window: timedelta) -> bool:
        if not self.is_completed or self.last_stop_at is None:
            return False
        past_planned = ensure_utc(now) > ensure_utc(self.planned_end) + window
        return past_planned and not self.can_merge(now, window)

    def display_status(self, now: datetime) -> SessionStatus:
        if self.is_discarded:
            return SessionStatus.DISCARDED
        if self.is_active:
            return SessionStatus.ACTIVE
        if self.is_completed:
            return SessionStatus.COMPLETED
        if ensure_utc(now) > ensure_utc(self.planned_end) and not self.has_started:
            return SessionStatus.MISSED
        return SessionStatus.SCHEDULED

    def display_span(self, now: datetime, window: timedelta) -> Tuple[datetime, datetime]:
        """Span to draw on a timeline: actual once finalized, planned while resumable."""
        now = ensure_utc(now)
        start, end = self.planned_start, self.planned_end
        if self.session_start is not None:
            if self.is_finalized(now, window) and self.actual_end is not None:
                return self.session_start, self.actual_end
            if self.is_active or self.can_merge(now, window):
                start = self.session_start
        if self.is_active and now > ensure_utc(self.planned_end):
            end = now
        return start, end

    # ------------------------------------------------------------------
    # transitions
    def start(self, now: datetime, merge_window: timedelta) -> bool:
        """Begin or resume the timer. Returns ``True`` for a merge-resume."""
        if self.is_discarded:
            raise SessionStateError(f"session {self.id} is discarded")
        if self.is_active:
            raise SessionStateError(f"session {self.id} is already running")

        now = ensure_utc(now)
        if self.session_start is None:
            self.actual_start = now
            self.session_start = now
            self.actual_end = None
            self.is_active = True
            return False
        if self.can_merge(now, merge_window):
            self.actual_start = now
            self.actual_end = None
            self.is_active = True
            return True
        raise SessionStateError(
            f"session {self.id} stopped outside the merge window; create a new session instead"
        )

    def end(self, now: datetime) -> int:
        """Fold the running stretch into ``accumulated_seconds``; returns seconds added."""
        now = ensure_utc(now)
        added = 0
        if self.is_active and self.actual_start is not None:
            added = max(0, int((now - ensure_utc(self.actual_start)).total_seconds()))
            self.accumulated_seconds += added
        self.actual_end = now
        self.last_stop_at = now
        self.is_active = False
        return added

    def _clear_timing(self) -> None:
        self.actual_start = None
        self.actual_end = None
        self.session_start = None
        self.last_stop_at = None
        self.accumulated_seconds = 0
        self.is_active = False
        self.was_manual_continue = False

    def discard(self) -> None:
        self._clear_timing()
        self.is_discarded = True
        self.owned_event_id = None
        self.imported_event_id = None
        self.has_synced_to_calendar = False
        self.synced_start = None
        self.synced_end = None

    def soft_reset(self) -> None:
        """Forget a false start but keep the pre-booked block and its event."""
        self._clear_timing()
        self.is_discarded = False

    def continue_past_end(self) -> None:
        self.was_manual_continue = True
        self.auto_end = False

    def extend_to(self, planned_end: datetime) -> None:
        self.planned_end = ensure_utc(planned_end)
        self.was_manual_continue = True

    # ------------------------------------------------------------------
    # calendar linkage
    def link_owned(self, event_id: str) -> None:
        if self.imported_event_id is not None:
            raise ValueError(f"session {self.id} is already linked to imported event")
        self.owned_event_id = event_id
        self.has_synced_to_calendar = True

    def link_imported(self, event_id: str) -> None:
        if self.owned_event_id is not None:
            raise ValueError(f"session {self.id} already owns event {self.owned_event_id}")
        self.imported_event_id = event_id

    def unlink(self) -> None:
        self.owned_event_id = None
        self.imported_event_id = None
        self.synced_start = None
        self.synced_end = None

    def mark_synced_span(self, start: datetime, end: datetime) -> None:
        self.synced_start = ensure_utc(start)
        self.synced_end = ensure_utc(end)


__all__ = ["FocusSession", "SessionStatus"]
