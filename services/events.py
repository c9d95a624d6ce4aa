"""Observer lists for session lifecycle notifications."""
from __future__ import annotations

from typing import Callable, Dict, Set

from core.log import get_logger


SESSION_START = "session_start"
SESSION_STOP = "session_stop"
AUTO_END = "auto_end"
REACHED_PLANNED_END = "reached_planned_end"
SESSION_REMOVED = "session_removed"

EVENT_NAMES = (SESSION_START, SESSION_STOP, AUTO_END, REACHED_PLANNED_END, SESSION_REMOVED)

Listener = Callable[..., None]


class LifecycleEvents:
    def __init__(self) -> None:
        self._listeners: Dict[str, Set[Listener]] = {name: set() for name in EVENT_NAMES}
        self.logger = get_logger("events")

    def subscribe(self, event: str, callback: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unsupported event: {event}")
        self._listeners[event].add(callback)

    def unsubscribe(self, event: str, callback: Listener) -> None:
        if event not in self._listeners:
            return
        self._listeners[event].discard(callback)

    def emit(self, event: str, task, session) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(task, session)
            except Exception:
                self.logger.exception("Listener for %s failed", event)


__all__ = [
    "LifecycleEvents",
    "EVENT_NAMES",
    "SESSION_START",
    "SESSION_STOP",
    "AUTO_END",
    "REACHED_PLANNED_END",
    "SESSION_REMOVED",
]
