"""Start/stop decisions for focus sessions.

The controller is the only writer of the "which session is running" pointer.
Every transition that should be visible on the calendar goes through the
outbound queue; lifecycle observers are notified through ``LifecycleEvents``.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional

from core.errors import SessionNotFound, SessionStateError, TaskNotFound
from core.log import get_logger
from core.settings import SESSION_POLICY, SessionPolicy
from datetime_utils import ensure_utc, local_date, local_day_bounds, utc_now
from models.focus_session import FocusSession
from models.task import Task, TaskStatus
from services import events as ev
from services.events import LifecycleEvents
from storage.repository import Repository


class StopOutcome(str, Enum):
    COMPLETED = "completed"
    DISCARDED = "discarded"
    RESET = "reset"


@dataclass
class StopResult:
    session: FocusSession
    outcome: StopOutcome
    work_seconds: int


@dataclass
class StartResult:
    session: FocusSession
    resumed: bool = False
    created: bool = False
    stopped: Optional[StopResult] = None


class SessionController:
    def __init__(
        self,
        repo: Repository,
        queue=None,
        events: Optional[LifecycleEvents] = None,
        policy: SessionPolicy = SESSION_POLICY,
    ):
        self.repo = repo
        self.queue = queue
        self.events = events or LifecycleEvents()
        self.policy = policy
        self.logger = get_logger("sessions")
        self._lock = threading.RLock()
        active = self.repo.active_focus_session()
        self._active_id: Optional[int] = active.id if active else None
        self.events.subscribe(ev.SESSION_REMOVED, self._on_session_removed)

    # ------------------------------------------------------------------
    # lookups
    @property
    def active_session_id(self) -> Optional[int]:
        return self._active_id

    def active_session(self) -> Optional[FocusSession]:
        if self._active_id is None:
            return None
        record = self.repo.get_focus_session(self._active_id)
        if record is None or not record.is_active:
            self._active_id = None
            return None
        return record

    def refresh_active(self) -> Optional[FocusSession]:
        with self._lock:
            active = self.repo.active_focus_session()
            self._active_id = active.id if active else None
            return active

    def _task(self, task_id: int) -> Task:
        task = self.repo.get_task(task_id)
        if task is None:
            raise TaskNotFound(f"task {task_id} not found")
        return task

    def _session(self, session_id: int) -> FocusSession:
        record = self.repo.get_focus_session(session_id)
        if record is None:
            raise SessionNotFound(f"session {session_id} not found")
        return record

    def _calendar_on(self) -> bool:
        return self.queue is not None and self.queue.gateway.is_connected

    def remaining_minutes(self, task: Task, now: Optional[datetime] = None) -> int:
        return task.remaining_minutes(self.repo.total_work_seconds(task.id, now))

    def _on_session_removed(self, task, record) -> None:
        if record is not None and record.id == self._active_id:
            self._active_id = None

    # ------------------------------------------------------------------
    # start
    def start(
        self,
        task_id: int,
        preferred_session_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> StartResult:
        now = ensure_utc(now) if now else utc_now()
        with self._lock:
            stopped = None
            if self._active_id is not None:
                stopped = self.stop_active(now=now)

            task = self._task(task_id)
            sessions = self.repo.sessions_for_task(task_id)

            resumable = self._last_stopped(sessions)
            if resumable is not None and resumable.can_merge(now, self.policy.merge_window):
                record = self._resume(task, resumable, now)
                result = StartResult(session=record, resumed=True, stopped=stopped)
            else:
                record, created = self._pick_or_create(task, sessions, preferred_session_id, now)
                record.start(now, self.policy.merge_window)
                record = self.repo.put_focus_session(record)
                result = StartResult(session=record, created=created, stopped=stopped)

            self._active_id = record.id
            if task.status != TaskStatus.COMPLETED.value:
                task.status = TaskStatus.IN_PROGRESS.value
                task = self.repo.put_task(task)

            self.logger.info(
                "Started session %s for task %s (%s)",
                record.id,
                task.id,
                "resume" if result.resumed else ("ad-hoc" if result.created else "scheduled"),
            )
            if record.has_calendar_link and self._calendar_on():
                self._queue_update(task, record, record.session_start, record.planned_end)
            self.events.emit(ev.SESSION_START, task, record)
            return result

    @staticmethod
    def _last_stopped(sessions: List[FocusSession]) -> Optional[FocusSession]:
        stopped = [
            s for s in sessions if not s.is_active and s.last_stop_at is not None and not s.is_discarded
        ]
        if not stopped:
            return None
        return max(stopped, key=lambda s: ensure_utc(s.last_stop_at))

    def _resume(self, task: Task, record: FocusSession, now: datetime) -> FocusSession:
        if ensure_utc(record.planned_end) < now:
            remaining = self.remaining_minutes(task, now)
            minutes = remaining if remaining > 0 else self.policy.overdue_extension_fallback_min
            record.extend_to(now + timedelta(minutes=minutes))
        record.start(now, self.policy.merge_window)
        return self.repo.put_focus_session(record)

    def _is_candidate(self, record: FocusSession, now: datetime) -> bool:
        if record.has_started or record.is_discarded:
            return False
        return abs(ensure_utc(record.planned_start) - now) <= self.policy.proximity_window

    def _pick_or_create(
        self,
        task: Task,
        sessions: List[FocusSession],
        preferred_session_id: Optional[int],
        now: datetime,
    ) -> tuple[FocusSession, bool]:
        if preferred_session_id is not None:
            preferred = next((s for s in sessions if s.id == preferred_session_id), None)
            if preferred is not None and self._is_candidate(preferred, now):
                return preferred, False

        unused = [s for s in sessions if not s.has_started and not s.is_discarded]
        if unused:
            nearest = min(unused, key=lambda s: abs(ensure_utc(s.planned_start) - now))
            if self._is_candidate(nearest, now):
                return nearest, False

        remaining = self.remaining_minutes(task, now)
        minutes = remaining or task.estimated_minutes or self.policy.adhoc_fallback_min
        record = self.repo.put_focus_session(
            FocusSession(
                task_id=task.id,
                planned_start=now,
                planned_end=now + timedelta(minutes=minutes),
            )
        )
        return record, True

    # ------------------------------------------------------------------
    # stop
    def stop(
        self,
        session_id: int,
        now: Optional[datetime] = None,
        force_keep: bool = False,
    ) -> StopResult:
        now = ensure_utc(now) if now else utc_now()
        with self._lock:
            record = self._session(session_id)
            if not record.is_active:
                raise SessionStateError(f"session {session_id} is not running")
            task = self._task(record.task_id)

            work = record.work_seconds(now)
            threshold = self.policy.commitment_threshold(task.estimated_minutes)
            keeps = force_keep or work >= threshold.total_seconds()

            if record.id == self._active_id:
                self._active_id = None

            if not keeps and not record.has_calendar_link:
                record.discard()
                record = self.repo.put_focus_session(record)
                self.logger.info("Discarded session %s after %ss (below threshold)", record.id, work)
                self.events.emit(ev.SESSION_STOP, task, record)
                return StopResult(record, StopOutcome.DISCARDED, work)

            if not keeps:
                record.soft_reset()
                record = self.repo.put_focus_session(record)
                self.logger.info("Reset pre-scheduled session %s after %ss", record.id, work)
                self.events.emit(ev.SESSION_STOP, task, record)
                return StopResult(record, StopOutcome.RESET, work)

            record.end(now)
            record = self.repo.put_focus_session(record)
            self.logger.info("Completed session %s with %ss of work", record.id, record.accumulated_seconds)
            if self._calendar_on():
                record = self._sync_completed(task, record)
            self.events.emit(ev.SESSION_STOP, task, record)
            return StopResult(record, StopOutcome.COMPLETED, work)

    def stop_active(self, now: Optional[datetime] = None, force_keep: bool = False) -> Optional[StopResult]:
        with self._lock:
            record = self.active_session()
            if record is None:
                return None
            return self.stop(record.id, now=now, force_keep=force_keep)

    def _sync_completed(self, task: Task, record: FocusSession) -> FocusSession:
        if record.session_start is None or record.actual_end is None:
            return record
        start, end = record.session_start, record.actual_end
        if record.linked_event_id:
            self._queue_update(task, record, start, end)
        elif not record.is_imported:
            if not record.has_synced_to_calendar:
                # flag first so an overlapping path cannot queue a second create
                record.has_synced_to_calendar = True
                record = self.repo.put_focus_session(record)
            self.queue.enqueue_create(task, record, start, end, self.repo.task_color_hex(task.id))
        return record

    def _queue_update(self, task: Task, record: FocusSession, start, end) -> None:
        event_id = record.linked_event_id
        if not event_id or start is None or end is None:
            return
        self.queue.enqueue_update(task, record, event_id, start, end, self.repo.task_color_hex(task.id))

    # ------------------------------------------------------------------
    # overtime
    def continue_session(self, session_id: int) -> FocusSession:
        with self._lock:
            record = self._session(session_id)
            if record.is_discarded:
                raise SessionStateError(f"session {session_id} is discarded")
            record.continue_past_end()
            record = self.repo.put_focus_session(record)
            self.logger.info("Session %s continues past its planned end", record.id)
            return record

    def resync_overtime(self, session_id: int, now: Optional[datetime] = None) -> bool:
        """Stretch the linked event to ``now`` while work runs past the plan."""
        now = ensure_utc(now) if now else utc_now()
        with self._lock:
            record = self._session(session_id)
            if not record.is_active or not record.linked_event_id or record.session_start is None:
                return False
            if not self._calendar_on():
                return False
            task = self._task(record.task_id)
            self._queue_update(task, record, record.session_start, now)
            return True

    # ------------------------------------------------------------------
    # missed sessions
    def cleanup_missed(self, now: Optional[datetime] = None) -> int:
        """Discard today's never-started blocks whose owned event outlived the plan."""
        now = ensure_utc(now) if now else utc_now()
        if not self._calendar_on():
            return 0
        with self._lock:
            day_start, day_end = local_day_bounds(local_date(now))
            cleaned = 0
            for record in self.repo.focus_sessions_between(day_start, day_end):
                if not self._is_missed(record, now):
                    continue
                event_id = record.owned_event_id
                record.discard()
                self.repo.put_focus_session(record)
                self.queue.enqueue_delete(record.task_id, record.id, event_id)
                cleaned += 1
            if cleaned:
                self.logger.info("Cleaned up %d missed session(s)", cleaned)
            return cleaned

    def _is_missed(self, record: FocusSession, now: datetime) -> bool:
        if not record.owned_event_id or record.is_discarded or record.is_imported:
            return False
        if record.is_active or record.session_start is not None or record.accumulated_seconds > 0:
            return False
        return now > ensure_utc(record.planned_end) + self.policy.merge_window

    def missed_sessions(self, day: Optional[date] = None, now: Optional[datetime] = None) -> List[FocusSession]:
        now = ensure_utc(now) if now else utc_now()
        day_start, day_end = local_day_bounds(day or local_date(now))
        return [
            s for s in self.repo.focus_sessions_between(day_start, day_end)
            if s.display_status(now).value == "missed"
        ]

    def reschedule_missed(
        self,
        session_id: int,
        new_start: datetime,
        duration: Optional[timedelta] = None,
    ) -> FocusSession:
        with self._lock:
            record = self._session(session_id)
            if record.has_started or record.is_active:
                raise SessionStateError(f"session {session_id} has work recorded; not missed")
            span = duration or record.planned_duration
            new_start = ensure_utc(new_start)
            if record.is_discarded:
                # a tombstone stays a tombstone; plan a fresh block instead
                return self.add_session(record.task_id, new_start, new_start + span, auto_end=record.auto_end)
            record.planned_start = new_start
            record.planned_end = new_start + span
            record = self.repo.put_focus_session(record)
            if record.linked_event_id and self._calendar_on():
                task = self._task(record.task_id)
                self._queue_update(task, record, record.planned_start, record.planned_end)
            self.logger.info("Rescheduled session %s to %s", record.id, record.planned_start)
            return record

    def discard_missed(self, session_id: int) -> FocusSession:
        with self._lock:
            record = self._session(session_id)
            if record.has_started or record.is_active:
                raise SessionStateError(f"session {session_id} has work recorded; not missed")
            event_id = record.owned_event_id
            record.discard()
            record = self.repo.put_focus_session(record)
            if event_id and self._calendar_on():
                self.queue.enqueue_delete(record.task_id, record.id, event_id)
            return record

    # ------------------------------------------------------------------
    # planning
    def add_session(
        self,
        task_id: int,
        planned_start: datetime,
        planned_end: datetime,
        *,
        auto_end: bool = True,
    ) -> FocusSession:
        planned_start, planned_end = ensure_utc(planned_start), ensure_utc(planned_end)
        if planned_end <= planned_start:
            raise ValueError("planned_end must be after planned_start")
        self._task(task_id)
        # calendar events are created on "Start My Day" or after a committed stop
        return self.repo.put_focus_session(
            FocusSession(
                task_id=task_id,
                planned_start=planned_start,
                planned_end=planned_end,
                auto_end=auto_end,
            )
        )

    def update_session_times(
        self,
        session_id: int,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        auto_end: Optional[bool] = None,
    ) -> FocusSession:
        with self._lock:
            record = self._session(session_id)
            if record.is_discarded:
                raise SessionStateError(f"session {session_id} is discarded")
            if start is not None:
                record.planned_start = ensure_utc(start)
            if end is not None:
                record.planned_end = ensure_utc(end)
            if record.planned_end <= record.planned_start:
                raise ValueError("planned_end must be after planned_start")
            if auto_end is not None:
                record.auto_end = auto_end
            record = self.repo.put_focus_session(record)
            if record.linked_event_id and self._calendar_on():
                task = self._task(record.task_id)
                self._queue_update(task, record, record.planned_start, record.planned_end)
            return record

    def remove_session(self, session_id: int) -> None:
        """Delete a block; owned events go with it, imported ones are only unlinked."""
        with self._lock:
            record = self._session(session_id)
            task = self.repo.get_task(record.task_id)
            if record.owned_event_id and self._calendar_on():
                self.queue.enqueue_delete(record.task_id, record.id, record.owned_event_id)
            self.repo.delete_focus_session(record.id)
            self.events.emit(ev.SESSION_REMOVED, task, record)

    def delete_task(self, task_id: int) -> None:
        with self._lock:
            task = self._task(task_id)
            for record in self.repo.sessions_for_task(task_id):
                if record.owned_event_id and self._calendar_on():
                    self.queue.enqueue_delete(task_id, record.id, record.owned_event_id)
                if record.id == self._active_id:
                    self._active_id = None
            self.repo.delete_task(task_id)
            self.logger.info("Deleted task %s (%s)", task_id, task.title)

    def complete_task(self, task_id: int, now: Optional[datetime] = None) -> Task:
        with self._lock:
            active = self.active_session()
            if active is not None and active.task_id == task_id:
                self.stop(active.id, now=now)
            task = self._task(task_id)
            task.mark_complete()
            return self.repo.put_task(task)

    def uncomplete_task(self, task_id: int) -> Task:
        with self._lock:
            task = self._task(task_id)
            task.is_complete = False
            worked = self.repo.total_work_seconds(task_id)
            task.status = (TaskStatus.IN_PROGRESS if worked > 0 else TaskStatus.NOT_STARTED).value
            return self.repo.put_task(task)

    def link_external_event(self, session_id: int, event_id: str) -> FocusSession:
        with self._lock:
            record = self._session(session_id)
            holder = self.repo.find_by_imported_event(event_id)
            if holder is not None and holder.id != record.id:
                raise ValueError(f"event {event_id} is already linked to session {holder.id}")
            record.link_imported(event_id)
            return self.repo.put_focus_session(record)

    def publish_session(self, session_id: int, now: Optional[datetime] = None) -> bool:
        """Queue a calendar event for a planned block of today, at most once."""
        now = ensure_utc(now) if now else utc_now()
        with self._lock:
            record = self._session(session_id)
            if not self._calendar_on():
                return False
            if (
                record.owned_event_id
                or record.is_discarded
                or record.is_imported
                or record.has_synced_to_calendar
                or local_date(record.planned_start) != local_date(now)
            ):
                return False
            return self._publish(record)

    def _publish(self, record: FocusSession) -> bool:
        task = self._task(record.task_id)
        record.has_synced_to_calendar = True
        record = self.repo.put_focus_session(record)
        self.queue.enqueue_create(
            task, record, record.planned_start, record.planned_end, self.repo.task_color_hex(task.id)
        )
        return True

    def publish_day(self, day: Optional[date] = None, now: Optional[datetime] = None) -> int:
        """Put every remaining planned block of ``day`` on the calendar ("Start My Day")."""
        now = ensure_utc(now) if now else utc_now()
        if not self._calendar_on():
            return 0
        with self._lock:
            day_start, day_end = local_day_bounds(day or local_date(now))
            published = 0
            for record in self.repo.focus_sessions_between(day_start, day_end):
                if (
                    record.owned_event_id
                    or record.is_discarded
                    or record.is_imported
                    or record.has_synced_to_calendar
                ):
                    continue
                if not record.is_active and ensure_utc(record.planned_end) <= now:
                    continue
                if self._publish(record):
                    published += 1
            self.logger.info("Published %d session(s) to the calendar", published)
            return published


__all__ = ["SessionController", "StartResult", "StopResult", "StopOutcome"]
