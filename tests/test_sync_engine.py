import threading
from datetime import timedelta

import pytest

from core.errors import AuthExpired, CursorExpired, TransientNetworkError
from models.focus_session import FocusSession
from services import events as ev
from services.calendar_gateway import CalendarEvent, FullSyncResult, IncrementalSyncResult
from services.connectivity import ConnectivityMonitor
from services.session_controller import SessionController
from services.sync_engine import SyncEngine
from services.sync_queue import OutboundSyncQueue
from services.sync_report import SyncStatus


@pytest.fixture
def queue(repo, gateway, cursor_store):
    return OutboundSyncQueue(repo, gateway, cursor_store=cursor_store, auto_process=False)


@pytest.fixture
def engine(repo, gateway, queue, cursor_store, events, now):
    return SyncEngine(repo, gateway, queue, cursor_store, events, clock=lambda: now)


@pytest.fixture
def task(repo):
    return repo.add_task("Synced", estimated_minutes=60)


def _block(repo, task, start, minutes=60, **links):
    record = FocusSession(task_id=task.id, planned_start=start, planned_end=start + timedelta(minutes=minutes))
    for key, value in links.items():
        setattr(record, key, value)
    return repo.put_focus_session(record)


def test_first_sync_is_full_and_stores_cursor(engine, gateway, cursor_store, now):
    report = engine.perform_sync()

    assert report.status == SyncStatus.SUCCESS
    assert report.was_full_sync
    assert cursor_store.get_cursor() == "cursor-full"
    assert cursor_store.get_last_full_sync() == now
    _, time_min, time_max = gateway.calls[0]
    assert time_min == now - timedelta(days=30)
    assert time_max == now + timedelta(days=90)


def test_push_runs_before_pull(engine, repo, gateway, task, queue, now):
    block = _block(repo, task, now)
    queue.enqueue_create(task, block, now, now + timedelta(hours=1))

    report = engine.perform_sync()

    assert gateway.kinds() == ["create", "full"]
    assert report.pushed_creates == 1


def test_full_sync_without_cursor_is_an_error(engine, gateway, cursor_store):
    gateway.full_results = [FullSyncResult(events=[], cursor=None)]

    report = engine.perform_sync()

    assert report.status == SyncStatus.ERROR
    assert "cursor" in report.error_message
    assert cursor_store.get_cursor() is None


def test_expired_cursor_falls_back_to_one_full_sync(engine, gateway, cursor_store):
    cursor_store.set_cursor("stale")
    gateway.fail_next = [CursorExpired("gone", status=410)]
    seen = []
    original = gateway.full_sync

    def spy(time_min, time_max):
        seen.append(cursor_store.get_cursor())
        return original(time_min, time_max)

    gateway.full_sync = spy

    report = engine.perform_sync()

    assert report.status == SyncStatus.SUCCESS
    assert report.was_full_sync
    assert seen == [None]
    assert gateway.kinds() == ["incremental", "full"]
    assert cursor_store.get_cursor() == "cursor-full"


def test_incremental_without_cursor_keeps_previous(engine, gateway, cursor_store):
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(cursor=None)]

    report = engine.perform_sync()

    assert report.status == SyncStatus.ERROR
    assert cursor_store.get_cursor() == "c1"


def test_remote_delete_of_owned_event_unlinks(engine, repo, gateway, task, cursor_store, now):
    block = _block(repo, task, now, owned_event_id="evt-1", has_synced_to_calendar=True)
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(deleted_ids=["evt-1"], cursor="c2")]

    report = engine.perform_sync()

    assert report.pulled_deletes == 1
    record = repo.get_focus_session(block.id)
    assert record is not None
    assert record.owned_event_id is None
    assert cursor_store.get_cursor() == "c2"


def test_remote_delete_of_imported_event_removes_session(engine, repo, gateway, task, cursor_store, events, now):
    removed = []
    events.subscribe(ev.SESSION_REMOVED, lambda t, record: removed.append(record.id))
    block = _block(repo, task, now, imported_event_id="ext-1")
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(deleted_ids=["ext-1", "unknown"], cursor="c2")]

    report = engine.perform_sync()

    assert report.pulled_deletes == 1
    assert repo.get_focus_session(block.id) is None
    assert removed == [block.id]


def test_remote_move_wins_over_planned_times(engine, repo, gateway, task, cursor_store, now):
    block = _block(repo, task, now, owned_event_id="evt-2")
    moved = CalendarEvent(id="evt-2", start=now + timedelta(hours=2), end=now + timedelta(hours=3))
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(changed=[moved], cursor="c2")]

    report = engine.perform_sync()

    assert report.pulled_updates == 1
    record = repo.get_focus_session(block.id)
    assert record.planned_start == now + timedelta(hours=2)
    assert record.planned_end == now + timedelta(hours=3)


def test_small_drift_is_ignored(engine, repo, gateway, task, cursor_store, now):
    block = _block(repo, task, now, imported_event_id="ext-2")
    drift = CalendarEvent(id="ext-2", start=now + timedelta(seconds=60), end=now + timedelta(minutes=60, seconds=30))
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(changed=[drift], cursor="c2")]

    report = engine.perform_sync()

    assert report.pulled_updates == 0
    assert repo.get_focus_session(block.id).planned_start == now


def test_own_pushed_span_is_not_treated_as_remote_edit(engine, repo, gateway, task, cursor_store, now):
    block = _block(repo, task, now, owned_event_id="evt-3")
    record = repo.get_focus_session(block.id)
    record.mark_synced_span(now + timedelta(minutes=5), now + timedelta(minutes=50))
    repo.put_focus_session(record)
    echo = CalendarEvent(id="evt-3", start=now + timedelta(minutes=5), end=now + timedelta(minutes=50))
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(changed=[echo], cursor="c2")]

    report = engine.perform_sync()

    assert report.pulled_updates == 0
    assert repo.get_focus_session(block.id).planned_start == now


def test_unlinked_events_are_left_alone(engine, repo, gateway, task, now):
    block = _block(repo, task, now)
    gateway.full_results = [
        FullSyncResult(
            events=[CalendarEvent(id="other", start=now, end=now + timedelta(hours=1))],
            cursor="c1",
        )
    ]

    report = engine.perform_sync()

    assert report.pulled == 0
    assert repo.get_focus_session(block.id).imported_event_id is None


def test_conflict_counted_when_local_update_pending(engine, repo, gateway, queue, task, cursor_store, now):
    block = _block(repo, task, now, owned_event_id="evt-4")
    queue.enqueue_update(task, block, "evt-4", now, now + timedelta(minutes=90))
    gateway.fail_next = [TransientNetworkError("flaky")]  # push fails, update stays queued
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [
        IncrementalSyncResult(
            changed=[CalendarEvent(id="evt-4", start=now + timedelta(hours=4), end=now + timedelta(hours=5))],
            cursor="c2",
        )
    ]

    report = engine.perform_sync()

    assert report.conflicts_resolved == 1
    assert len(report.conflict_details) == 1
    assert repo.get_focus_session(block.id).planned_start == now + timedelta(hours=4)


def test_not_connected_and_offline_reports(repo, gateway, queue, cursor_store, events):
    gateway.connected = False
    assert SyncEngine(repo, gateway, queue, cursor_store, events).perform_sync().status == SyncStatus.NOT_CONNECTED

    class Offline:
        def is_online(self):
            return False

        def subscribe(self, callback):
            pass

    gateway.connected = True
    engine = SyncEngine(repo, gateway, queue, cursor_store, events, connectivity=Offline())
    assert engine.perform_sync().status == SyncStatus.OFFLINE
    assert gateway.calls == []


def test_auth_failure_becomes_report(engine, gateway):
    gateway.fail_next = [AuthExpired("expired")]

    report = engine.perform_sync()

    assert report.status == SyncStatus.AUTH_REQUIRED
    assert "reconnect" in report.summary()


def test_force_full_resync_clears_cursor(engine, gateway, cursor_store):
    cursor_store.set_cursor("c1")

    report = engine.force_full_resync()

    assert report.was_full_sync
    assert gateway.kinds() == ["full"]


def test_status_snapshot(engine, cursor_store):
    engine.perform_sync()
    status = engine.status()
    assert status["connected"] is True
    assert status["has_cursor"] is True
    assert status["pending"] == 0
    assert status["last_report"]


def _flaky_link(states):
    feed = iter(states)
    return ConnectivityMonitor(checker=lambda: next(feed))


def test_reconnect_runs_one_sync_outside_the_callers_stack(repo, gateway, queue, cursor_store, events, task, now):
    connectivity = _flaky_link([False, True])
    engine = SyncEngine(repo, gateway, queue, cursor_store, events, connectivity=connectivity, clock=lambda: now)
    connectivity.check()

    results = []
    worker = threading.Thread(target=lambda: results.append(engine.perform_sync()))
    worker.start()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert results[0].status == SyncStatus.OFFLINE
    assert gateway.calls == []

    block = _block(repo, task, now)
    queue.enqueue_create(task, block, now, now + timedelta(hours=1))
    connectivity.check()

    assert gateway.kinds() == ["create", "full"]
    assert engine.last_report.status == SyncStatus.SUCCESS


def test_connectivity_regained_during_a_pass_does_not_deadlock(repo, gateway, queue, cursor_store, events, now):
    # never checked yet, so the pass goes ahead; the link drops and returns mid-pass
    connectivity = _flaky_link([False, True])
    engine = SyncEngine(repo, gateway, queue, cursor_store, events, connectivity=connectivity, clock=lambda: now)
    original = gateway.full_sync

    def full_sync_with_reconnect(time_min, time_max):
        connectivity.check()
        connectivity.check()
        return original(time_min, time_max)

    gateway.full_sync = full_sync_with_reconnect
    results = []
    worker = threading.Thread(target=lambda: results.append(engine.perform_sync()))
    worker.start()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert results[0].status == SyncStatus.SUCCESS
    assert gateway.kinds() == ["full"]


def test_remote_delete_keeps_discarded_imported_block(engine, repo, gateway, task, cursor_store, events, now):
    controller = SessionController(repo, None, events)
    block = controller.add_session(task.id, now - timedelta(hours=3), now - timedelta(hours=2))
    controller.link_external_event(block.id, "ext-9")
    controller.discard_missed(block.id)
    record = repo.get_focus_session(block.id)
    assert record.is_discarded
    assert record.imported_event_id is None

    # an older row still carrying the reference
    record.imported_event_id = "ext-9"
    repo.put_focus_session(record)
    cursor_store.set_cursor("c1")
    gateway.incremental_results = [IncrementalSyncResult(deleted_ids=["ext-9"], cursor="c2")]

    engine.perform_sync()

    kept = repo.get_focus_session(block.id)
    assert kept is not None
    assert kept.is_discarded
    assert kept.imported_event_id is None
