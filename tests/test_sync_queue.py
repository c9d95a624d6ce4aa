import threading
import time
from datetime import timedelta

import pytest

from core.errors import AuthExpired, MaxRetriesExceeded, TransientNetworkError
from models.focus_session import FocusSession
from models.sync_operation import OpKind
from services.connectivity import ConnectivityMonitor
from services.sync_queue import OutboundSyncQueue


@pytest.fixture
def queue(repo, gateway, cursor_store):
    return OutboundSyncQueue(repo, gateway, cursor_store=cursor_store, max_retries=3, auto_process=False)


@pytest.fixture
def task(repo):
    return repo.add_task("Queue me", estimated_minutes=60)


@pytest.fixture
def block(repo, task, now):
    return repo.put_focus_session(
        FocusSession(task_id=task.id, planned_start=now, planned_end=now + timedelta(hours=1))
    )


def test_create_writes_remote_id_back(repo, queue, gateway, task, block, now, cursor_store):
    queue.enqueue_create(task, block, now, now + timedelta(minutes=50), "#4285F4")

    report = queue.process_queue()

    assert report.created == 1
    assert repo.count_operations() == 0
    record = repo.get_focus_session(block.id)
    assert record.owned_event_id == "evt-1"
    assert record.has_synced_to_calendar
    assert record.synced_end == now + timedelta(minutes=50)
    assert gateway.calls[0][4] == "9"
    assert cursor_store.get_last_push() is not None


def test_failures_retry_then_stay_as_failed(repo, queue, gateway, task, block, now):
    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))
    gateway.fail_next = [TransientNetworkError("boom")] * 3

    for _ in range(3):
        report = queue.process_queue()
        assert report.failed == 1

    report = queue.process_queue()
    assert report.skipped == 1
    assert repo.count_operations() == 1
    failed = queue.failed_operations()
    assert len(failed) == 1
    assert failed[0].retry_count == 3
    assert "boom" in failed[0].last_error

    with pytest.raises(MaxRetriesExceeded):
        queue.process_operation(failed[0].id)

    assert queue.retry_failed() == 1
    report = queue.process_queue()
    assert report.created == 1
    assert repo.count_operations() == 0


def test_auth_expired_stops_pass_without_burning_retries(repo, queue, gateway, task, block, now):
    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))
    queue.enqueue_update(task, block, "evt-x", now, now + timedelta(minutes=30))
    gateway.fail_next = [AuthExpired("expired")]

    report = queue.process_queue()

    assert report.auth_required
    ops = repo.list_operations()
    assert len(ops) == 2
    assert ops[0].retry_count == 0
    assert gateway.kinds() == ["create"]


def test_update_of_missing_event_clears_reference(repo, queue, task, block, now):
    record = repo.get_focus_session(block.id)
    record.link_owned("evt-gone")
    repo.put_focus_session(record)

    queue.enqueue_update(task, record, "evt-gone", now, now + timedelta(minutes=30))
    report = queue.process_queue()

    assert report.dropped == 1
    assert repo.count_operations() == 0
    assert repo.get_focus_session(block.id).owned_event_id is None


def test_delete_of_missing_event_counts_as_done(repo, queue, task, block):
    queue.enqueue_delete(task.id, block.id, "evt-never")
    report = queue.process_queue()
    assert report.deleted == 1
    assert repo.count_operations() == 0


def test_delete_drops_stale_updates(repo, queue, task, block, now):
    queue.enqueue_update(task, block, "evt-5", now, now + timedelta(minutes=30))
    queue.enqueue_delete(task.id, block.id, "evt-5")

    ops = repo.list_operations()
    assert [op.kind for op in ops] == [OpKind.DELETE.value]


def test_create_for_discarded_session_is_dropped(repo, queue, gateway, task, block, now):
    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))
    record = repo.get_focus_session(block.id)
    record.discard()
    repo.put_focus_session(record)

    report = queue.process_queue()

    assert report.dropped == 1
    assert gateway.calls == []


def test_nothing_dispatched_when_not_connected(repo, queue, gateway, task, block, now):
    gateway.connected = False
    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))

    report = queue.process_queue()

    assert report.not_connected
    assert repo.count_operations() == 1


def test_enqueue_stays_queued_while_offline(repo, gateway, task, block, now):
    class Offline:
        def is_online(self):
            return False

    queue = OutboundSyncQueue(repo, gateway, connectivity=Offline())
    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))

    assert repo.count_operations() == 1
    assert gateway.calls == []


def test_concurrent_callers_share_one_pass(repo, queue, gateway, task, block, now):
    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))
    entered = threading.Event()
    release = threading.Event()
    original = gateway.create_event

    def slow_create(*args, **kwargs):
        entered.set()
        release.wait(timeout=5)
        return original(*args, **kwargs)

    gateway.create_event = slow_create
    results = []
    worker = threading.Thread(target=lambda: results.append(queue.process_queue()))
    worker.start()
    assert entered.wait(timeout=5)

    waiter = threading.Thread(target=lambda: results.append(queue.process_queue()))
    waiter.start()
    time.sleep(0.2)
    release.set()
    worker.join(timeout=5)
    waiter.join(timeout=5)

    assert len(results) == 2
    assert results[0] is results[1]
    assert [c[0] for c in gateway.calls] == ["create"]


def test_enqueue_reads_cached_connectivity_without_pinging(repo, gateway, task, block, now):
    pings = []

    def ping():
        pings.append(1)
        return False

    connectivity = ConnectivityMonitor(checker=ping)
    queue = OutboundSyncQueue(repo, gateway, connectivity=connectivity)

    queue.enqueue_create(task, block, now, now + timedelta(minutes=30))
    assert pings == []
    assert gateway.kinds() == ["create"]

    connectivity.check()
    queue.enqueue_delete(task.id, block.id, "evt-1")

    assert pings == [1]
    assert repo.count_operations() == 1
    assert gateway.kinds() == ["create"]
