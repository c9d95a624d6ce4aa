# focusblocks/models/tag.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now
from storage.types import UTCDateTime


class Tag(SQLModel, table=True):
    __tablename__ = "tags"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    color_hex: str
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class TaskTag(SQLModel, table=True):
    __tablename__ = "task_tags"

    task_id: int = Field(primary_key=True, foreign_key="task.id")
    tag_id: int = Field(primary_key=True, foreign_key="tags.id")
    # first tag (lowest position) drives the calendar event color
    position: int = 0


__all__ = ["Tag", "TaskTag"]
