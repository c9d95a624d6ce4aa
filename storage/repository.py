"""Persistence collaborator for tasks, focus sessions and queued operations."""
from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, select

from datetime_utils import ensure_utc, utc_now
from models.focus_session import FocusSession
from models.sync_operation import SyncOperation
from models.tag import Tag, TaskTag
from models.task import Task
from storage.db import get_session


SessionFactory = Callable[[], Session]


class Repository:
    """Keyed get/put/delete over SQLModel tables.

    Every call opens its own short-lived session, so returned objects are
    detached snapshots; mutate them and hand them back to ``put_*``.
    """

    def __init__(self, session_factory: SessionFactory = get_session):
        self._session_factory = session_factory

    def _save(self, obj):
        with self._session_factory() as s:
            s.add(obj)
            s.commit()
            s.refresh(obj)
            return obj

    # ------------------------------------------------------------------
    # tasks
    def add_task(
        self,
        title: str,
        estimated_minutes: int = 30,
        scheduled_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Task:
        task = Task(
            title=title.strip(),
            estimated_minutes=int(estimated_minutes),
            scheduled_date=scheduled_date or date.today(),
            notes=notes or None,
        )
        return self._save(task)

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._session_factory() as s:
            return s.get(Task, task_id)

    def put_task(self, task: Task) -> Task:
        task.updated_at = utc_now()
        return self._save(task)

    def delete_task(self, task_id: int) -> None:
        with self._session_factory() as s:
            for record in list(s.exec(select(FocusSession).where(FocusSession.task_id == task_id))):
                s.delete(record)
            for link in list(s.exec(select(TaskTag).where(TaskTag.task_id == task_id))):
                s.delete(link)
            task = s.get(Task, task_id)
            if task:
                s.delete(task)
            s.commit()

    def tasks_for_day(self, day: date) -> List[Task]:
        with self._session_factory() as s:
            stmt = select(Task).where(Task.scheduled_date == day).order_by(Task.id)
            return list(s.exec(stmt))

    # ------------------------------------------------------------------
    # tags
    def add_tag(self, name: str, color_hex: str) -> Tag:
        return self._save(Tag(name=name.strip(), color_hex=color_hex))

    def tag_task(self, task_id: int, tag_id: int, position: Optional[int] = None) -> None:
        with self._session_factory() as s:
            if position is None:
                current = s.exec(
                    select(func.count()).select_from(TaskTag).where(TaskTag.task_id == task_id)
                ).one()
                position = int(current)
            s.add(TaskTag(task_id=task_id, tag_id=tag_id, position=position))
            s.commit()

    def task_color_hex(self, task_id: int) -> Optional[str]:
        with self._session_factory() as s:
            stmt = (
                select(Tag.color_hex)
                .join(TaskTag, TaskTag.tag_id == Tag.id)
                .where(TaskTag.task_id == task_id)
                .order_by(TaskTag.position, TaskTag.tag_id)
                .limit(1)
            )
            return s.exec(stmt).first()

    # ------------------------------------------------------------------
    # focus sessions
    def get_focus_session(self, session_id: int) -> Optional[FocusSession]:
        with self._session_factory() as s:
            return s.get(FocusSession, session_id)

    def put_focus_session(self, record: FocusSession) -> FocusSession:
        record.updated_at = utc_now()
        return self._save(record)

    def delete_focus_session(self, session_id: int) -> None:
        with self._session_factory() as s:
            record = s.get(FocusSession, session_id)
            if record:
                s.delete(record)
                s.commit()

    def sessions_for_task(self, task_id: int) -> List[FocusSession]:
        with self._session_factory() as s:
            stmt = (
                select(FocusSession)
                .where(FocusSession.task_id == task_id)
                .order_by(FocusSession.planned_start, FocusSession.id)
            )
            return list(s.exec(stmt))

    def active_focus_session(self) -> Optional[FocusSession]:
        with self._session_factory() as s:
            stmt = select(FocusSession).where(FocusSession.is_active == True)  # noqa: E712
            return s.exec(stmt).first()

    def focus_sessions_between(self, start: datetime, end: datetime) -> List[FocusSession]:
        """Sessions whose planned start falls in ``[start, end)``."""
        with self._session_factory() as s:
            stmt = (
                select(FocusSession)
                .where(FocusSession.planned_start >= ensure_utc(start))
                .where(FocusSession.planned_start < ensure_utc(end))
                .order_by(FocusSession.planned_start, FocusSession.id)
            )
            return list(s.exec(stmt))

    def find_by_owned_event(self, event_id: str) -> Optional[FocusSession]:
        with self._session_factory() as s:
            stmt = select(FocusSession).where(FocusSession.owned_event_id == event_id)
            return s.exec(stmt).first()

    def find_by_imported_event(self, event_id: str) -> Optional[FocusSession]:
        with self._session_factory() as s:
            stmt = select(FocusSession).where(FocusSession.imported_event_id == event_id)
            return s.exec(stmt).first()

    def total_work_seconds(self, task_id: int, now: Optional[datetime] = None) -> int:
        return sum(record.work_seconds(now) for record in self.sessions_for_task(task_id))

    # ------------------------------------------------------------------
    # sync operations
    def add_operation(self, op: SyncOperation) -> SyncOperation:
        return self._save(op)

    def put_operation(self, op: SyncOperation) -> SyncOperation:
        return self._save(op)

    def get_operation(self, op_id: int) -> Optional[SyncOperation]:
        with self._session_factory() as s:
            return s.get(SyncOperation, op_id)

    def delete_operation(self, op_id: int) -> None:
        with self._session_factory() as s:
            record = s.get(SyncOperation, op_id)
            if record:
                s.delete(record)
                s.commit()

    def list_operations(self) -> List[SyncOperation]:
        with self._session_factory() as s:
            return list(s.exec(select(SyncOperation).order_by(SyncOperation.id)))

    def operations_for_session(
        self, session_id: int, kinds: Optional[Iterable[str]] = None
    ) -> List[SyncOperation]:
        with self._session_factory() as s:
            stmt = select(SyncOperation).where(SyncOperation.session_id == session_id)
            if kinds:
                stmt = stmt.where(col(SyncOperation.kind).in_(list(kinds)))
            return list(s.exec(stmt.order_by(SyncOperation.id)))

    def count_operations(self) -> int:
        with self._session_factory() as s:
            return int(s.exec(select(func.count()).select_from(SyncOperation)).one())

    def clear_operations(self) -> int:
        with self._session_factory() as s:
            rows = list(s.exec(select(SyncOperation)))
            for row in rows:
                s.delete(row)
            s.commit()
            return len(rows)


__all__ = ["Repository", "SessionFactory"]
