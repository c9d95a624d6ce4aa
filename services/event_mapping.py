"""Utilities for FocusBlocks ↔ Google Calendar event bodies."""

from __future__ import annotations

from datetime import datetime
import re
from typing import Any, Dict, Optional

from datetime_utils import UTC, parse_rfc3339, to_rfc3339_utc
from services.calendar_gateway import CalendarEvent


MARKER_PREFIX = "focusblocks-task"
_MARKER_RE = re.compile(r"focusblocks-task\s*:\s*(\d+)", re.I)


def parse_marker(description: Optional[str]) -> Optional[int]:
    if not description:
        return None
    match = _MARKER_RE.search(description)
    if not match:
        return None
    try:
        return int(match.group(1))
    except (TypeError, ValueError):
        return None


def strip_marker(description: Optional[str]) -> str:
    if not description:
        return ""
    lines = [ln for ln in description.splitlines() if not _MARKER_RE.search(ln)]
    return "\n".join(lines).strip()


def ensure_marker(notes: str, task_id: int) -> str:
    marker = f"{MARKER_PREFIX}:{task_id}"
    if marker in notes:
        return notes
    return f"{notes}\n{marker}" if notes else marker


def parse_event_datetime(payload: Optional[Dict[str, Any]]) -> tuple[Optional[datetime], bool]:
    """Return ``(moment, is_all_day)`` for an event ``start``/``end`` block."""
    if not payload:
        return None, False
    date_time = payload.get("dateTime")
    if date_time:
        return parse_rfc3339(date_time), False
    all_day = payload.get("date")
    if all_day:
        try:
            return datetime.strptime(all_day, "%Y-%m-%d").replace(tzinfo=UTC), True
        except ValueError:
            return None, True
    return None, False


def event_from_item(item: Dict[str, Any], calendar_id: Optional[str] = None) -> CalendarEvent:
    start, all_day = parse_event_datetime(item.get("start"))
    end, _ = parse_event_datetime(item.get("end"))
    description = item.get("description") or ""
    return CalendarEvent(
        id=str(item.get("id")),
        start=start,
        end=end,
        title=item.get("summary") or "",
        description=strip_marker(description),
        color_id=item.get("colorId"),
        calendar_id=calendar_id,
        cancelled=item.get("status") == "cancelled",
        all_day=all_day,
        task_marker=parse_marker(description),
    )


def build_event_body(
    title: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    color_id: Optional[str] = None,
    task_id: Optional[int] = None,
    notes: str = "",
) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if title is not None:
        body["summary"] = title or "Focus block"
    if task_id is not None:
        body["description"] = ensure_marker(strip_marker(notes), task_id)
    if start is not None:
        body["start"] = {"dateTime": to_rfc3339_utc(start), "timeZone": "UTC"}
    if end is not None:
        body["end"] = {"dateTime": to_rfc3339_utc(end), "timeZone": "UTC"}
    if color_id:
        body["colorId"] = color_id
    return body


__all__ = [
    "MARKER_PREFIX",
    "parse_marker",
    "strip_marker",
    "ensure_marker",
    "parse_event_datetime",
    "event_from_item",
    "build_event_body",
]
