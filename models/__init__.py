"""ORM models exposed by the FocusBlocks application."""
from .task import Task, TaskStatus
from .tag import Tag, TaskTag
from .focus_session import FocusSession, SessionStatus
from .sync_operation import OpKind, SyncOperation

__all__ = [
    "Task",
    "TaskStatus",
    "Tag",
    "TaskTag",
    "FocusSession",
    "SessionStatus",
    "SyncOperation",
    "OpKind",
]
