"""Two-way calendar synchronisation.

A pass pushes the outbound queue first, then pulls remote changes (full
window or incremental by cursor) and reconciles them onto linked sessions.
Remote edits win over local planned times; spans we wrote ourselves are
recognised through the session's last synced span and ignored.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.errors import AuthExpired, CursorExpired, MissingCursorError, SyncError
from core.log import get_logger
from core.settings import GOOGLE_SYNC, GoogleSyncSettings
from datetime_utils import ensure_utc, utc_now, within
from models.focus_session import FocusSession
from models.sync_operation import OpKind
from services import events as ev
from services.calendar_gateway import CalendarEvent, CalendarGateway
from services.cursor_store import SyncCursorStore
from services.events import LifecycleEvents
from services.sync_queue import OutboundSyncQueue
from services.sync_report import SyncReport, SyncStatus
from storage.repository import Repository


class SyncEngine:
    def __init__(
        self,
        repo: Repository,
        gateway: CalendarGateway,
        queue: OutboundSyncQueue,
        cursor_store: SyncCursorStore,
        events: Optional[LifecycleEvents] = None,
        connectivity=None,
        settings: GoogleSyncSettings = GOOGLE_SYNC,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.gateway = gateway
        self.queue = queue
        self.cursor_store = cursor_store
        self.events = events or LifecycleEvents()
        self.connectivity = connectivity
        self.settings = settings
        self.clock = clock
        self.tolerance = timedelta(seconds=settings.remote_tolerance_sec)
        self.logger = get_logger("sync")
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self.last_report: Optional[SyncReport] = None
        if connectivity is not None:
            connectivity.subscribe(self._on_connectivity_regained)

    # ------------------------------------------------------------------
    # entry points
    def perform_sync(self, force_full: bool = False) -> SyncReport:
        with self._lock:
            if self._inflight is not None:
                future, owner = self._inflight, False
            else:
                future, owner = Future(), True
                self._inflight = future
        if not owner:
            return future.result()
        try:
            report = self._run(force_full)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(report)
            return report
        finally:
            with self._lock:
                self._inflight = None

    def force_full_resync(self) -> SyncReport:
        self.cursor_store.clear_cursor()
        self.logger.info("Cursor cleared; running full resync")
        return self.perform_sync(force_full=True)

    def _on_connectivity_regained(self) -> None:
        with self._lock:
            busy = self._inflight is not None
        if busy:
            # the running pass already pushes and pulls
            return
        report = self.perform_sync()
        self.logger.info("Sync after reconnect: %s", report.summary())

    def status(self) -> Dict[str, Any]:
        return {
            "connected": self.gateway.is_connected,
            "has_cursor": self.cursor_store.get_cursor() is not None,
            "last_full_sync": self.cursor_store.get_last_full_sync(),
            "last_sync": self.cursor_store.get_last_sync(),
            "last_push": self.cursor_store.get_last_push(),
            "pending": self.queue.pending_count(),
            "failed": len(self.queue.failed_operations()),
            "last_report": self.last_report.summary() if self.last_report else None,
        }

    # ------------------------------------------------------------------
    # one pass
    def _run(self, force_full: bool) -> SyncReport:
        if not self.settings.enabled:
            return SyncReport(status=SyncStatus.SKIPPED)
        if not self.gateway.is_connected:
            return SyncReport(status=SyncStatus.NOT_CONNECTED)
        if self.connectivity is not None and not self.connectivity.is_online():
            return SyncReport(status=SyncStatus.OFFLINE)

        started = time.monotonic()
        report = SyncReport()
        try:
            pushed = self.queue.process_queue()
            report.pushed_creates = pushed.created
            report.pushed_updates = pushed.updated
            report.pushed_deletes = pushed.deleted
            if pushed.auth_required:
                raise AuthExpired("authorization expired while pushing")

            cursor = None if force_full else self.cursor_store.get_cursor()
            if cursor is None:
                self._pull_full(report)
            else:
                try:
                    self._pull_incremental(cursor, report)
                except CursorExpired:
                    self.logger.info("Sync cursor expired; falling back to a full sync")
                    self.cursor_store.clear_cursor()
                    self._pull_full(report)
        except AuthExpired as exc:
            report.status = SyncStatus.AUTH_REQUIRED
            report.error_message = str(exc)
            self.logger.warning("Sync needs reauthorization: %s", exc)
        except SyncError as exc:
            report.status = SyncStatus.ERROR
            report.error_message = str(exc)
            self.logger.warning("Sync failed: %s", exc)
        except Exception as exc:
            report.status = SyncStatus.ERROR
            report.error_message = str(exc)
            self.logger.exception("Unexpected sync failure")

        report.duration = timedelta(seconds=time.monotonic() - started)
        self.last_report = report
        self.logger.info("%s", report.summary())
        return report

    def _pull_full(self, report: SyncReport) -> None:
        now = self.clock()
        result = self.gateway.full_sync(
            now - timedelta(days=self.settings.window_days_back),
            now + timedelta(days=self.settings.window_days_forward),
        )
        if not result.cursor:
            raise MissingCursorError("full sync finished without a sync cursor")
        report.was_full_sync = True
        self._reconcile(result.events, [], report)
        self.cursor_store.set_cursor(result.cursor, now)
        self.cursor_store.mark_full_sync(now)

    def _pull_incremental(self, cursor: str, report: SyncReport) -> None:
        result = self.gateway.incremental_sync(cursor)
        if not result.cursor:
            raise MissingCursorError("incremental sync returned no sync cursor")
        if result.has_changes:
            self._reconcile(result.changed, result.deleted_ids, report)
        self.cursor_store.set_cursor(result.cursor, self.clock())

    # ------------------------------------------------------------------
    # reconciliation
    def _reconcile(
        self, changed: List[CalendarEvent], deleted_ids: List[str], report: SyncReport
    ) -> None:
        for event_id in deleted_ids:
            if self._apply_remote_delete(event_id):
                report.pulled_deletes += 1
        for event in changed:
            record = self.repo.find_by_owned_event(event.id) or self.repo.find_by_imported_event(event.id)
            if record is None:
                # unlinked events are display-only
                continue
            if self._apply_remote_change(record, event, report):
                report.pulled_updates += 1

    def _apply_remote_delete(self, event_id: str) -> bool:
        owned = self.repo.find_by_owned_event(event_id)
        if owned is not None:
            self.logger.info("Event %s deleted remotely; unlinking session %s", event_id, owned.id)
            owned.owned_event_id = None
            self.repo.put_focus_session(owned)
            return True
        imported = self.repo.find_by_imported_event(event_id)
        if imported is not None and imported.is_discarded:
            # tombstones are kept; only the reference goes
            imported.imported_event_id = None
            self.repo.put_focus_session(imported)
            return True
        if imported is not None:
            self.logger.info("Imported event %s deleted; removing session %s", event_id, imported.id)
            task = self.repo.get_task(imported.task_id)
            self.repo.delete_focus_session(imported.id)
            self.events.emit(ev.SESSION_REMOVED, task, imported)
            return True
        return False

    def _is_echo(self, record: FocusSession, start: datetime, end: datetime) -> bool:
        if record.synced_start is None or record.synced_end is None:
            return False
        return within(record.synced_start, start, self.tolerance) and within(
            record.synced_end, end, self.tolerance
        )

    def _apply_remote_change(
        self, record: FocusSession, event: CalendarEvent, report: SyncReport
    ) -> bool:
        if event.all_day or event.start is None or event.end is None:
            return False
        start, end = ensure_utc(event.start), ensure_utc(event.end)
        if self._is_echo(record, start, end):
            return False
        if within(record.planned_start, start, self.tolerance) and within(
            record.planned_end, end, self.tolerance
        ):
            return False

        pending = self.repo.operations_for_session(
            record.id, kinds=[OpKind.CREATE.value, OpKind.UPDATE.value]
        )
        if pending:
            report.conflicts_resolved += 1
            report.conflict_details.append(
                f"session {record.id}: remote {start:%Y-%m-%d %H:%M}-{end:%H:%M} "
                f"replaced local {ensure_utc(record.planned_start):%H:%M}-{ensure_utc(record.planned_end):%H:%M}"
            )
        self.logger.info(
            "Remote edit of %s wins: session %s planned %s -> %s",
            event.id,
            record.id,
            record.planned_start,
            start,
        )
        record.planned_start = start
        record.planned_end = end
        record.mark_synced_span(start, end)
        self.repo.put_focus_session(record)
        return True


__all__ = ["SyncEngine"]
