from __future__ import annotations

import socket
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import httplib2
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.errors import (
    AuthExpired,
    CalendarApiError,
    CursorExpired,
    RemoteNotFound,
    SyncError,
    TransientNetworkError,
)
from core.log import get_logger
from core.settings import GOOGLE_SYNC
from datetime_utils import to_rfc3339_utc
from services.calendar_gateway import (
    CalendarEvent,
    CalendarGateway,
    FullSyncResult,
    IncrementalSyncResult,
)
from services.event_mapping import build_event_body, event_from_item


RETRYABLE_STATUS = {408, 409, 412, 429, 500, 502, 503, 504}
_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")


def http_status(exc: HttpError) -> int:
    resp = getattr(exc, "resp", None)
    try:
        return int(getattr(resp, "status", 0) or 0)
    except (TypeError, ValueError):
        return 0


def _is_rate_limited(exc: HttpError) -> bool:
    content = getattr(exc, "content", b"") or b""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    text = f"{exc} {content}"
    return any(reason in text for reason in _RATE_LIMIT_REASONS)


def map_http_error(exc: HttpError, context: str) -> SyncError:
    """Translate a Google ``HttpError`` into the sync error family.

    ``context`` is one of ``list``, ``full``, ``incremental``, ``create``,
    ``update`` or ``delete``; 404/410 mean different things per call.
    """
    status = http_status(exc)
    message = f"{context} failed with HTTP {status}: {exc}"
    if status == 401:
        return AuthExpired(message, status=status)
    if status == 410 and context == "incremental":
        return CursorExpired(message, status=status)
    if status in (404, 410) and context in ("update", "delete"):
        return RemoteNotFound(message, status=status)
    if status in RETRYABLE_STATUS or status >= 500:
        return TransientNetworkError(message, status=status)
    if status == 403 and _is_rate_limited(exc):
        return TransientNetworkError(message, status=status)
    return CalendarApiError(message, status=status)


class GoogleCalendarGateway(CalendarGateway):
    """Google Calendar v3 behind :class:`CalendarGateway`.

    Events created here carry ``focusblocks-task:<id>`` in the description so
    they can be recognised on the way back.
    """

    def __init__(
        self,
        auth,
        calendar_id: str = GOOGLE_SYNC.calendar_id,
        *,
        request_timeout_sec: Optional[float] = GOOGLE_SYNC.request_timeout_sec,
        page_size: int = GOOGLE_SYNC.page_size,
        service=None,
    ):
        self.auth = auth
        self.calendar_id = calendar_id
        self.request_timeout_sec = request_timeout_sec
        self.page_size = page_size
        self.service = service
        self.logger = get_logger("gcal")

    # ------------------------------------------------------------------
    # connection
    @property
    def is_connected(self) -> bool:
        if self.service is not None:
            return True
        return bool(self.auth is not None and self.auth.has_cached_token())

    def connect(self, *, interactive: bool = True) -> bool:
        self.auth.ensure_credentials(interactive=interactive)
        self.service = self._build_service()
        self.logger.info("Connected to Google Calendar (%s)", self.calendar_id)
        return True

    def disconnect(self) -> None:
        self.auth.reset_credentials()
        self.service = None
        self.logger.info("Disconnected from Google Calendar")

    def _build_service(self):
        http = AuthorizedHttp(
            self.auth.get_credentials(),
            http=httplib2.Http(timeout=self.request_timeout_sec),
        )
        return build("calendar", "v3", http=http, cache_discovery=False)

    def _events(self):
        if self.service is None:
            self.connect(interactive=False)
        return self.service.events()

    def _execute(self, make_request: Callable[[], Any], context: str) -> Dict[str, Any]:
        refreshed = False
        while True:
            try:
                return make_request().execute() or {}
            except HttpError as exc:
                if http_status(exc) == 401 and not refreshed and self.auth is not None:
                    refreshed = True
                    self.auth.refresh()
                    self.service = self._build_service()
                    continue
                error = map_http_error(exc, context)
                self.logger.warning("%s", error)
                raise error from exc
            except (httplib2.HttpLib2Error, socket.timeout, TimeoutError, ConnectionError) as exc:
                raise TransientNetworkError(f"{context} transport error: {exc}") from exc

    # ------------------------------------------------------------------
    # reads
    def _paginate(self, params: Dict[str, Any], context: str):
        page_token = None
        while True:
            if page_token:
                params["pageToken"] = page_token
            response = self._execute(lambda: self._events().list(**params), context)
            yield response
            page_token = response.get("nextPageToken")
            if not page_token:
                break

    def list_events(
        self, calendar_ids: Sequence[str], time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        events: List[CalendarEvent] = []
        for calendar_id in calendar_ids or [self.calendar_id]:
            params = dict(
                calendarId=calendar_id,
                timeMin=to_rfc3339_utc(time_min),
                timeMax=to_rfc3339_utc(time_max),
                singleEvents=True,
                orderBy="startTime",
                maxResults=self.page_size,
            )
            for response in self._paginate(params, "list"):
                for item in response.get("items", []):
                    event = event_from_item(item, calendar_id)
                    if not event.cancelled:
                        events.append(event)
        return events

    def full_sync(self, time_min: datetime, time_max: datetime) -> FullSyncResult:
        # orderBy is not allowed when asking for a nextSyncToken
        params = dict(
            calendarId=self.calendar_id,
            timeMin=to_rfc3339_utc(time_min),
            timeMax=to_rfc3339_utc(time_max),
            singleEvents=True,
            maxResults=self.page_size,
        )
        events: List[CalendarEvent] = []
        cursor = None
        pages = 0
        for response in self._paginate(params, "full"):
            pages += 1
            for item in response.get("items", []):
                event = event_from_item(item, self.calendar_id)
                if not event.cancelled:
                    events.append(event)
            cursor = response.get("nextSyncToken") or cursor
        self.logger.info("Full sync fetched %d events in %d page(s)", len(events), pages)
        return FullSyncResult(events=events, cursor=cursor)

    def incremental_sync(self, cursor: str) -> IncrementalSyncResult:
        params = dict(
            calendarId=self.calendar_id,
            syncToken=cursor,
            singleEvents=True,
            maxResults=self.page_size,
        )
        result = IncrementalSyncResult()
        for response in self._paginate(params, "incremental"):
            for item in response.get("items", []):
                event = event_from_item(item, self.calendar_id)
                if event.cancelled:
                    result.deleted_ids.append(event.id)
                else:
                    result.changed.append(event)
            result.cursor = response.get("nextSyncToken") or result.cursor
        self.logger.info(
            "Incremental sync: %d changed, %d deleted",
            len(result.changed),
            len(result.deleted_ids),
        )
        return result

    # ------------------------------------------------------------------
    # writes
    def create_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        color_id: Optional[str] = None,
        task_id: Optional[int] = None,
    ) -> str:
        body = build_event_body(
            title=title,
            start=start,
            end=end,
            color_id=color_id or GOOGLE_SYNC.default_color_id,
            task_id=task_id,
        )
        created = self._execute(
            lambda: self._events().insert(calendarId=self.calendar_id, body=body), "create"
        )
        event_id = created.get("id")
        if not event_id:
            raise CalendarApiError("create returned no event id")
        self.logger.info("Created event %s", event_id)
        return str(event_id)

    def update_event(
        self,
        event_id: str,
        *,
        title: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        color_id: Optional[str] = None,
    ) -> bool:
        body = build_event_body(title=title, start=start, end=end, color_id=color_id)
        if not body:
            return True
        self._execute(
            lambda: self._events().patch(calendarId=self.calendar_id, eventId=event_id, body=body),
            "update",
        )
        self.logger.info("Updated event %s", event_id)
        return True

    def delete_event(self, event_id: str) -> bool:
        self._execute(
            lambda: self._events().delete(calendarId=self.calendar_id, eventId=event_id),
            "delete",
        )
        self.logger.info("Deleted event %s", event_id)
        return True


__all__ = ["GoogleCalendarGateway", "RETRYABLE_STATUS", "http_status", "map_http_error"]
