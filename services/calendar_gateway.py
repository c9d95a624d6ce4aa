"""Interface the sync layer talks to, independent of the calendar vendor."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence


@dataclass
class CalendarEvent:
    id: str
    start: Optional[datetime]
    end: Optional[datetime]
    title: str = ""
    description: str = ""
    color_id: Optional[str] = None
    calendar_id: Optional[str] = None
    cancelled: bool = False
    all_day: bool = False
    task_marker: Optional[int] = None


@dataclass
class FullSyncResult:
    events: List[CalendarEvent]
    cursor: Optional[str]


@dataclass
class IncrementalSyncResult:
    changed: List[CalendarEvent] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    cursor: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.changed or self.deleted_ids)


class CalendarGateway(ABC):
    """Create/update/delete single events plus the two pull flavours.

    Implementations raise the ``core.errors.SyncError`` family only.
    """

    request_timeout_sec: Optional[float] = None

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    def list_events(
        self, calendar_ids: Sequence[str], time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]: ...

    @abstractmethod
    def create_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        color_id: Optional[str] = None,
        task_id: Optional[int] = None,
    ) -> str: ...

    @abstractmethod
    def update_event(
        self,
        event_id: str,
        *,
        title: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        color_id: Optional[str] = None,
    ) -> bool: ...

    @abstractmethod
    def delete_event(self, event_id: str) -> bool: ...

    @abstractmethod
    def full_sync(self, time_min: datetime, time_max: datetime) -> FullSyncResult: ...

    @abstractmethod
    def incremental_sync(self, cursor: str) -> IncrementalSyncResult: ...


__all__ = ["CalendarEvent", "CalendarGateway", "FullSyncResult", "IncrementalSyncResult"]
