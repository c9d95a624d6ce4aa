# focusblocks/models/task.py
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now
from storage.types import UTCDateTime


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    notes: Optional[str] = None
    estimated_minutes: int = 30
    scheduled_date: date = Field(default_factory=date.today, index=True)
    status: str = TaskStatus.NOT_STARTED.value
    is_complete: bool = False
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    def remaining_minutes(self, worked_seconds: int) -> int:
        remaining = self.estimated_minutes - worked_seconds // 60
        return remaining if remaining > 0 else 0

    def mark_complete(self) -> None:
        self.is_complete = True
        self.status = TaskStatus.COMPLETED.value


__all__ = ["Task", "TaskStatus"]
