"""SQLModel table for queued calendar operations."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now
from storage.types import UTCDateTime


class OpKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncOperation(SQLModel, table=True):
    # autoincrement id doubles as FIFO order
    id: Optional[int] = Field(default=None, primary_key=True)
    kind: str = Field(index=True)
    task_id: Optional[int] = Field(default=None, index=True)
    session_id: Optional[int] = Field(default=None, index=True)
    remote_event_id: Optional[str] = None
    title: Optional[str] = None
    start: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    end: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    color_hex: Optional[str] = None
    retry_count: int = Field(default=0)
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    def has_exceeded_retries(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries


__all__ = ["SyncOperation", "OpKind"]
