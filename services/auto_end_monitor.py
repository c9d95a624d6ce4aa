from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Tuple

from core.log import get_logger
from core.settings import SESSION_POLICY, SessionPolicy
from datetime_utils import ensure_utc, utc_now
from services import events as ev
from services.events import LifecycleEvents
from services.session_controller import SessionController


class AutoEndMonitor:
    """Periodic watcher over the running session.

    ``tick`` is the whole unit of work; ``run`` only schedules it.
    """

    def __init__(
        self,
        controller: SessionController,
        events: Optional[LifecycleEvents] = None,
        policy: SessionPolicy = SESSION_POLICY,
    ):
        self.controller = controller
        self.repo = controller.repo
        self.events = events or controller.events
        self.policy = policy
        self.logger = get_logger("monitor")
        self._last_overtime_sync: Optional[datetime] = None
        self._last_sweep: Optional[datetime] = None
        # (session id, run start) of the run already announced as past its end
        self._announced: Optional[Tuple[int, Optional[datetime]]] = None

    def tick(self, now: Optional[datetime] = None, *, force_sweep: bool = False) -> None:
        now = ensure_utc(now) if now else utc_now()
        self._check_active(now)
        self._maybe_sweep(now, force=force_sweep)

    def _check_active(self, now: datetime) -> None:
        record = self.controller.active_session()
        if record is None:
            self._last_overtime_sync = None
            self._announced = None
            return
        overdue = now - ensure_utc(record.planned_end)
        if overdue <= self.policy.auto_end_grace:
            return

        task = self.repo.get_task(record.task_id)
        if record.auto_end and not record.was_manual_continue:
            self.logger.info("Auto-ending session %s (%s past plan)", record.id, overdue)
            result = self.controller.stop(record.id, now=now)
            self.events.emit(ev.AUTO_END, task, result.session)
            self._announced = None
            return

        key = (record.id, record.actual_start)
        if key != self._announced:
            self._announced = key
            self.events.emit(ev.REACHED_PLANNED_END, task, record)

        if record.has_calendar_link and self._overtime_due(now):
            if self.controller.resync_overtime(record.id, now=now):
                self._last_overtime_sync = now

    def _overtime_due(self, now: datetime) -> bool:
        if self._last_overtime_sync is None:
            return True
        throttle = timedelta(seconds=self.policy.overtime_resync_throttle_sec)
        return now - self._last_overtime_sync >= throttle

    def _maybe_sweep(self, now: datetime, *, force: bool = False) -> int:
        throttle = timedelta(seconds=self.policy.missed_sweep_throttle_sec)
        if not force and self._last_sweep is not None and now - self._last_sweep < throttle:
            return 0
        self._last_sweep = now
        return self.controller.cleanup_missed(now)

    def on_app_resumed(self, now: Optional[datetime] = None) -> None:
        now = ensure_utc(now) if now else utc_now()
        self.controller.refresh_active()
        self.tick(now, force_sweep=True)
        queue = self.controller.queue
        if queue is not None:
            queue.process_queue()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        self.logger.info("Auto-end monitor started (every %ss)", self.policy.monitor_interval_sec)
        while stop_event is None or not stop_event.is_set():
            try:
                await asyncio.to_thread(self.tick)
            except Exception:
                self.logger.exception("Monitor tick failed")
            await asyncio.sleep(self.policy.monitor_interval_sec)
        self.logger.info("Auto-end monitor stopped")


__all__ = ["AutoEndMonitor"]
