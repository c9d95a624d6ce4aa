from datetime import datetime, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from core.errors import (
    AuthExpired,
    CalendarApiError,
    CursorExpired,
    RemoteNotFound,
    TransientNetworkError,
)
from services.event_mapping import build_event_body, event_from_item, parse_marker, strip_marker
from services.google_calendar import GoogleCalendarGateway, map_http_error


def _http_error(status, content=b"{}"):
    return HttpError(httplib2.Response({"status": status}), content)


@pytest.mark.parametrize(
    "status, context, expected",
    [
        (401, "full", AuthExpired),
        (410, "incremental", CursorExpired),
        (410, "full", CalendarApiError),
        (404, "update", RemoteNotFound),
        (410, "delete", RemoteNotFound),
        (404, "list", CalendarApiError),
        (429, "create", TransientNetworkError),
        (503, "incremental", TransientNetworkError),
        (400, "create", CalendarApiError),
    ],
)
def test_map_http_error(status, context, expected):
    error = map_http_error(_http_error(status), context)
    assert type(error) is expected
    assert error.status == status


def test_rate_limited_403_is_transient():
    content = b'{"error": {"errors": [{"reason": "rateLimitExceeded"}], "message": "Rate Limit Exceeded"}}'
    assert isinstance(map_http_error(_http_error(403, content), "create"), TransientNetworkError)
    assert type(map_http_error(_http_error(403), "create")) is CalendarApiError


def test_marker_round_trip_through_description():
    body = build_event_body(
        title="Deep work",
        start=datetime(2025, 3, 10, 9, tzinfo=timezone.utc),
        end=datetime(2025, 3, 10, 10, tzinfo=timezone.utc),
        task_id=42,
        notes="bring coffee",
    )
    assert body["start"]["dateTime"].startswith("2025-03-10T09:00:00")
    assert parse_marker(body["description"]) == 42
    assert strip_marker(body["description"]) == "bring coffee"


def test_partial_body_only_carries_given_fields():
    body = build_event_body(end=datetime(2025, 3, 10, 10, tzinfo=timezone.utc))
    assert set(body) == {"end"}


def test_event_from_item_flags():
    cancelled = event_from_item({"id": "a", "status": "cancelled"})
    assert cancelled.cancelled
    assert cancelled.start is None

    all_day = event_from_item({"id": "b", "start": {"date": "2025-03-10"}, "end": {"date": "2025-03-11"}})
    assert all_day.all_day

    timed = event_from_item(
        {
            "id": "c",
            "summary": "Call",
            "description": "agenda\nfocusblocks-task:7",
            "start": {"dateTime": "2025-03-10T09:00:00Z"},
            "end": {"dateTime": "2025-03-10T09:30:00Z"},
        }
    )
    assert timed.task_marker == 7
    assert timed.description == "agenda"
    assert timed.start == datetime(2025, 3, 10, 9, tzinfo=timezone.utc)


class _Request:
    def __init__(self, outcome):
        self.outcome = outcome

    def execute(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _Events:
    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.calls = []

    def _next(self, name, kwargs):
        self.calls.append((name, kwargs))
        return _Request(self.outcomes.pop(0))

    def insert(self, **kwargs):
        return self._next("insert", kwargs)

    def patch(self, **kwargs):
        return self._next("patch", kwargs)

    def delete(self, **kwargs):
        return self._next("delete", kwargs)

    def list(self, **kwargs):
        return self._next("list", kwargs)


class _Service:
    def __init__(self, outcomes):
        self._events = _Events(outcomes)

    def events(self):
        return self._events


def _gateway(outcomes):
    service = _Service(outcomes)
    return GoogleCalendarGateway(auth=None, service=service), service._events


def test_create_sends_marker_and_default_color():
    gateway, events = _gateway([{"id": "new-1"}])

    event_id = gateway.create_event(
        "Focus",
        datetime(2025, 3, 10, 9, tzinfo=timezone.utc),
        datetime(2025, 3, 10, 10, tzinfo=timezone.utc),
        task_id=3,
    )

    assert event_id == "new-1"
    body = events.calls[0][1]["body"]
    assert body["colorId"] == "9"
    assert parse_marker(body["description"]) == 3


def test_delete_of_gone_event_raises_not_found():
    gateway, _ = _gateway([_http_error(410)])
    with pytest.raises(RemoteNotFound):
        gateway.delete_event("evt-1")


def test_incremental_sync_splits_cancelled_and_follows_pages():
    pages = [
        {
            "items": [
                {"id": "x", "status": "cancelled"},
                {"id": "y", "start": {"dateTime": "2025-03-10T09:00:00Z"}, "end": {"dateTime": "2025-03-10T10:00:00Z"}},
            ],
            "nextPageToken": "p2",
        },
        {"items": [], "nextSyncToken": "next-cursor"},
    ]
    gateway, events = _gateway(pages)

    result = gateway.incremental_sync("old-cursor")

    assert result.deleted_ids == ["x"]
    assert [e.id for e in result.changed] == ["y"]
    assert result.cursor == "next-cursor"
    assert events.calls[0][1]["syncToken"] == "old-cursor"
    assert events.calls[1][1]["pageToken"] == "p2"


def test_expired_cursor_surfaces_as_cursor_expired():
    gateway, _ = _gateway([_http_error(410)])
    with pytest.raises(CursorExpired):
        gateway.incremental_sync("stale")


def test_full_sync_keeps_last_page_cursor():
    pages = [
        {"items": [{"id": "a", "start": {"dateTime": "2025-03-10T09:00:00Z"}, "end": {"dateTime": "2025-03-10T10:00:00Z"}}], "nextPageToken": "p2"},
        {"items": [{"id": "b", "status": "cancelled"}], "nextSyncToken": "c1"},
    ]
    gateway, events = _gateway(pages)

    result = gateway.full_sync(
        datetime(2025, 2, 8, tzinfo=timezone.utc), datetime(2025, 6, 8, tzinfo=timezone.utc)
    )

    assert [e.id for e in result.events] == ["a"]
    assert result.cursor == "c1"
    assert "orderBy" not in events.calls[0][1]
