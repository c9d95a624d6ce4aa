from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Set

from core.colors import hex_to_color_id
from core.errors import AuthExpired, MaxRetriesExceeded, RemoteNotFound, SyncError
from core.log import get_logger
from core.settings import GOOGLE_SYNC
from datetime_utils import ensure_utc
from models.focus_session import FocusSession
from models.sync_operation import OpKind, SyncOperation
from models.task import Task
from services.calendar_gateway import CalendarGateway
from storage.repository import Repository


@dataclass
class QueueReport:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: int = 0
    dropped: int = 0
    auth_required: bool = False
    not_connected: bool = False

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.deleted


class OutboundSyncQueue:
    """Persisted FIFO of calendar writes.

    ``process_queue`` is single-flight: a caller arriving while a pass is
    running waits for that pass and gets its report.
    """

    def __init__(
        self,
        repo: Repository,
        gateway: CalendarGateway,
        *,
        connectivity=None,
        cursor_store=None,
        max_retries: int = GOOGLE_SYNC.max_retries,
        auto_process: bool = True,
    ):
        self.repo = repo
        self.gateway = gateway
        self.connectivity = connectivity
        self.cursor_store = cursor_store
        self.max_retries = max_retries
        self.auto_process = auto_process
        self.logger = get_logger("queue")
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self._owner: Optional[int] = None

    # ------------------------------------------------------------------
    # enqueue
    def enqueue_create(
        self,
        task: Task,
        record: FocusSession,
        start: datetime,
        end: datetime,
        color_hex: Optional[str] = None,
    ) -> SyncOperation:
        pending = self.repo.operations_for_session(record.id, kinds=[OpKind.CREATE.value])
        if pending:
            op = pending[-1]
            op.title = task.title
            op.start = ensure_utc(start)
            op.end = ensure_utc(end)
            op.color_hex = color_hex
            op = self.repo.put_operation(op)
            self.logger.debug("Refreshed pending create %s for session %s", op.id, record.id)
        else:
            op = self.repo.add_operation(
                SyncOperation(
                    kind=OpKind.CREATE.value,
                    task_id=task.id,
                    session_id=record.id,
                    title=task.title,
                    start=ensure_utc(start),
                    end=ensure_utc(end),
                    color_hex=color_hex,
                )
            )
            self.logger.info("Queued create for session %s", record.id)
        self._after_enqueue()
        return op

    def enqueue_update(
        self,
        task: Task,
        record: FocusSession,
        event_id: str,
        start: datetime,
        end: datetime,
        color_hex: Optional[str] = None,
    ) -> SyncOperation:
        op = self.repo.add_operation(
            SyncOperation(
                kind=OpKind.UPDATE.value,
                task_id=task.id,
                session_id=record.id,
                remote_event_id=event_id,
                title=task.title,
                start=ensure_utc(start),
                end=ensure_utc(end),
                color_hex=color_hex,
            )
        )
        self.logger.info("Queued update of %s for session %s", event_id, record.id)
        self._after_enqueue()
        return op

    def enqueue_delete(
        self, task_id: Optional[int], session_id: Optional[int], event_id: str
    ) -> SyncOperation:
        # updates to an event about to disappear are pointless
        if session_id is not None:
            for stale in self.repo.operations_for_session(session_id, kinds=[OpKind.UPDATE.value]):
                if stale.remote_event_id == event_id:
                    self.repo.delete_operation(stale.id)
        op = self.repo.add_operation(
            SyncOperation(
                kind=OpKind.DELETE.value,
                task_id=task_id,
                session_id=session_id,
                remote_event_id=event_id,
            )
        )
        self.logger.info("Queued delete of %s", event_id)
        self._after_enqueue()
        return op

    def _after_enqueue(self) -> None:
        if not self.auto_process:
            return
        if self.connectivity is not None and not self.connectivity.is_online():
            self.logger.debug("Offline; leaving operation queued")
            return
        self.process_queue()

    # ------------------------------------------------------------------
    # processing
    @property
    def is_processing(self) -> bool:
        return self._inflight is not None

    def process_queue(self) -> QueueReport:
        with self._lock:
            if self._inflight is not None:
                if self._owner == threading.get_ident():
                    return QueueReport()
                future = self._inflight
                owner = False
            else:
                future = Future()
                self._inflight = future
                self._owner = threading.get_ident()
                owner = True
        if not owner:
            return future.result()

        try:
            report = self._drain()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(report)
            return report
        finally:
            with self._lock:
                self._inflight = None
                self._owner = None

    def _drain(self) -> QueueReport:
        report = QueueReport()
        if not self.gateway.is_connected:
            report.not_connected = True
            return report

        seen: Set[int] = set()
        while True:
            batch = [op for op in self.repo.list_operations() if op.id not in seen]
            if not batch:
                break
            for op in batch:
                seen.add(op.id)
                if op.has_exceeded_retries(self.max_retries):
                    report.skipped += 1
                    continue
                if not self._run_one(op, report):
                    self._log_pass(report)
                    return report
        self._log_pass(report)
        if report.processed and self.cursor_store is not None:
            self.cursor_store.mark_push()
        return report

    def _log_pass(self, report: QueueReport) -> None:
        if report.processed or report.failed or report.auth_required:
            self.logger.info(
                "Queue pass: %d created, %d updated, %d deleted, %d failed, %d skipped",
                report.created,
                report.updated,
                report.deleted,
                report.failed,
                report.skipped,
            )

    def _run_one(self, op: SyncOperation, report: QueueReport) -> bool:
        """Dispatch one op; returns ``False`` when the pass has to stop."""
        current = self.repo.get_operation(op.id)
        if current is None:
            return True
        try:
            self._dispatch(current, report)
        except AuthExpired as exc:
            current.last_error = str(exc)[:1000]
            self.repo.put_operation(current)
            report.auth_required = True
            self.logger.warning("Authorization expired; stopping queue pass")
            return False
        except SyncError as exc:
            self._record_failure(current, exc, report)
            self.logger.warning("Op %s (%s) failed: %s", current.id, current.kind, exc)
        except Exception as exc:
            self._record_failure(current, exc, report)
            self.logger.exception("Op %s (%s) crashed", current.id, current.kind)
        else:
            self.repo.delete_operation(current.id)
        return True

    def _record_failure(self, op: SyncOperation, exc: BaseException, report: QueueReport) -> None:
        op.retry_count += 1
        op.last_error = str(exc)[:1000]
        self.repo.put_operation(op)
        report.failed += 1
        if op.has_exceeded_retries(self.max_retries):
            self.logger.error("Op %s exceeded %d retries; kept as failed", op.id, self.max_retries)

    def _dispatch(self, op: SyncOperation, report: QueueReport) -> None:
        if op.kind == OpKind.CREATE.value:
            self._process_create(op, report)
        elif op.kind == OpKind.UPDATE.value:
            self._process_update(op, report)
        elif op.kind == OpKind.DELETE.value:
            self._process_delete(op, report)
        else:
            raise ValueError(f"Unsupported op kind: {op.kind}")

    def _process_create(self, op: SyncOperation, report: QueueReport) -> None:
        record = self.repo.get_focus_session(op.session_id) if op.session_id else None
        if record is None or record.is_discarded:
            report.dropped += 1
            self.logger.info("Dropping create %s: session gone or discarded", op.id)
            return
        if record.owned_event_id:
            self.gateway.update_event(
                record.owned_event_id,
                title=op.title,
                start=op.start,
                end=op.end,
                color_id=hex_to_color_id(op.color_hex),
            )
            record.mark_synced_span(op.start, op.end)
            self.repo.put_focus_session(record)
            report.updated += 1
            return

        event_id = self.gateway.create_event(
            op.title or "",
            op.start,
            op.end,
            color_id=hex_to_color_id(op.color_hex),
            task_id=op.task_id,
        )
        report.created += 1

        # the session may have changed while the request was in flight
        fresh = self.repo.get_focus_session(record.id)
        if fresh is None or fresh.is_discarded or fresh.imported_event_id:
            self.logger.info("Session %s no longer wants event %s; queueing delete", record.id, event_id)
            self.repo.add_operation(
                SyncOperation(
                    kind=OpKind.DELETE.value,
                    task_id=op.task_id,
                    session_id=record.id,
                    remote_event_id=event_id,
                )
            )
            return
        fresh.link_owned(event_id)
        fresh.mark_synced_span(op.start, op.end)
        self.repo.put_focus_session(fresh)

    def _process_update(self, op: SyncOperation, report: QueueReport) -> None:
        event_id = op.remote_event_id
        record = self.repo.get_focus_session(op.session_id) if op.session_id else None
        if not event_id and record is not None:
            event_id = record.linked_event_id
        if not event_id:
            report.dropped += 1
            return
        try:
            self.gateway.update_event(
                event_id,
                title=op.title,
                start=op.start,
                end=op.end,
                color_id=hex_to_color_id(op.color_hex),
            )
        except RemoteNotFound:
            self.logger.info("Event %s is gone remotely; clearing local reference", event_id)
            if record is not None:
                if record.owned_event_id == event_id:
                    record.owned_event_id = None
                if record.imported_event_id == event_id:
                    record.imported_event_id = None
                self.repo.put_focus_session(record)
            report.dropped += 1
            return
        if record is not None and record.linked_event_id == event_id:
            record.mark_synced_span(op.start, op.end)
            self.repo.put_focus_session(record)
        report.updated += 1

    def _process_delete(self, op: SyncOperation, report: QueueReport) -> None:
        if not op.remote_event_id:
            report.dropped += 1
            return
        try:
            self.gateway.delete_event(op.remote_event_id)
        except RemoteNotFound:
            self.logger.info("Event %s already deleted remotely", op.remote_event_id)
        report.deleted += 1

    def process_operation(self, op_id: int, *, force: bool = False) -> QueueReport:
        """Dispatch a single queued op outside the normal FIFO pass."""
        op = self.repo.get_operation(op_id)
        report = QueueReport()
        if op is None:
            return report
        if op.has_exceeded_retries(self.max_retries) and not force:
            raise MaxRetriesExceeded(f"operation {op_id} failed {op.retry_count} times")
        self._run_one(op, report)
        return report

    # ------------------------------------------------------------------
    # maintenance
    def pending_count(self) -> int:
        return self.repo.count_operations()

    def failed_operations(self) -> List[SyncOperation]:
        return [op for op in self.repo.list_operations() if op.has_exceeded_retries(self.max_retries)]

    def retry_failed(self) -> int:
        failed = self.failed_operations()
        for op in failed:
            op.retry_count = 0
            op.last_error = None
            self.repo.put_operation(op)
        if failed:
            self.logger.info("Reset %d failed operation(s) for retry", len(failed))
            self._after_enqueue()
        return len(failed)

    def clear(self) -> int:
        removed = self.repo.clear_operations()
        self.logger.warning("Cleared %d queued operation(s)", removed)
        return removed


__all__ = ["OutboundSyncQueue", "QueueReport"]
