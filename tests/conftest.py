import itertools
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# keep the real user data dir untouched while settings are imported
os.environ.setdefault("FOCUSBLOCKS_HOME", tempfile.mkdtemp(prefix="focusblocks-tests-"))

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401  registers tables
from core.errors import RemoteNotFound
from services.calendar_gateway import (
    CalendarEvent,
    CalendarGateway,
    FullSyncResult,
    IncrementalSyncResult,
)
from services.cursor_store import SyncCursorStore
from services.events import LifecycleEvents
from storage import migrations
from storage.repository import Repository


@pytest.fixture
def db_engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    migrations.run_all(eng)
    return eng


@pytest.fixture
def session_factory(db_engine):
    def factory():
        return Session(db_engine, expire_on_commit=False)

    return factory


@pytest.fixture
def repo(session_factory):
    return Repository(session_factory=session_factory)


@pytest.fixture
def now():
    # 09:00 local time, so day-window queries see the whole working day
    return datetime(2025, 3, 10, 9, 0).astimezone().astimezone(timezone.utc)


@pytest.fixture
def events():
    return LifecycleEvents()


@pytest.fixture
def cursor_store(tmp_path):
    return SyncCursorStore(tmp_path / "cursor.json")


class FakeGateway(CalendarGateway):
    """In-memory calendar keyed by event id."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.events = {}
        self.calls = []
        self.fail_next = []
        self.full_results = []
        self.incremental_results = []
        self._ids = itertools.count(1)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def _maybe_fail(self, name):
        if self.fail_next:
            exc = self.fail_next.pop(0)
            if exc is not None:
                raise exc

    def list_events(self, calendar_ids, time_min, time_max):
        self.calls.append(("list",))
        return [e for e in self.events.values() if e.start and time_min <= e.start < time_max]

    def create_event(self, title, start, end, color_id=None, task_id=None):
        self.calls.append(("create", title, start, end, color_id))
        self._maybe_fail("create")
        event_id = f"evt-{next(self._ids)}"
        self.events[event_id] = CalendarEvent(
            id=event_id, start=start, end=end, title=title, color_id=color_id, task_marker=task_id
        )
        return event_id

    def update_event(self, event_id, *, title=None, start=None, end=None, color_id=None):
        self.calls.append(("update", event_id, start, end))
        self._maybe_fail("update")
        if event_id not in self.events:
            raise RemoteNotFound(f"{event_id} not found", status=404)
        event = self.events[event_id]
        if start is not None:
            event.start = start
        if end is not None:
            event.end = end
        if title is not None:
            event.title = title
        return True

    def delete_event(self, event_id):
        self.calls.append(("delete", event_id))
        self._maybe_fail("delete")
        if self.events.pop(event_id, None) is None:
            raise RemoteNotFound(f"{event_id} not found", status=410)
        return True

    def full_sync(self, time_min, time_max):
        self.calls.append(("full", time_min, time_max))
        self._maybe_fail("full")
        if self.full_results:
            return self.full_results.pop(0)
        return FullSyncResult(events=list(self.events.values()), cursor="cursor-full")

    def incremental_sync(self, cursor):
        self.calls.append(("incremental", cursor))
        self._maybe_fail("incremental")
        if self.incremental_results:
            return self.incremental_results.pop(0)
        return IncrementalSyncResult(cursor=cursor)

    def kinds(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def gateway():
    return FakeGateway()
