import json
from datetime import datetime, timezone

import pytest

from services.cursor_store import SyncCursorStore


def test_cursor_roundtrip_and_timestamps(tmp_path):
    store = SyncCursorStore(tmp_path / "cursor.json")
    moment = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

    assert store.get_cursor() is None
    store.set_cursor("abc", moment)
    store.mark_full_sync(moment)

    reopened = SyncCursorStore(tmp_path / "cursor.json")
    assert reopened.get_cursor() == "abc"
    assert reopened.get_last_sync() == moment
    assert reopened.get_last_full_sync() == moment


def test_clear_cursor_keeps_timestamps(tmp_path):
    store = SyncCursorStore(tmp_path / "cursor.json")
    store.set_cursor("abc")
    store.mark_push()

    store.clear_cursor()

    assert store.get_cursor() is None
    assert store.get_last_push() is not None


def test_empty_cursor_rejected(tmp_path):
    store = SyncCursorStore(tmp_path / "cursor.json")
    with pytest.raises(ValueError):
        store.set_cursor("")


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "cursor.json"
    path.write_text("{not json", encoding="utf-8")
    store = SyncCursorStore(path)

    assert store.get_cursor() is None
    store.set_cursor("fresh")
    assert json.loads(path.read_text(encoding="utf-8"))["cursor"] == "fresh"


def test_clear_all_removes_file(tmp_path):
    path = tmp_path / "cursor.json"
    store = SyncCursorStore(path)
    store.set_cursor("abc")

    store.clear_all()

    assert not path.exists()
