from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import List, Optional


class SyncStatus(str, Enum):
    SUCCESS = "success"
    NOT_CONNECTED = "not_connected"
    OFFLINE = "offline"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class SyncReport:
    status: SyncStatus = SyncStatus.SUCCESS
    pushed_creates: int = 0
    pushed_updates: int = 0
    pushed_deletes: int = 0
    pulled_creates: int = 0
    pulled_updates: int = 0
    pulled_deletes: int = 0
    conflicts_resolved: int = 0
    conflict_details: List[str] = field(default_factory=list)
    was_full_sync: bool = False
    duration: timedelta = timedelta(0)
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def pushed(self) -> int:
        return self.pushed_creates + self.pushed_updates + self.pushed_deletes

    @property
    def pulled(self) -> int:
        return self.pulled_creates + self.pulled_updates + self.pulled_deletes

    def summary(self) -> str:
        if self.status == SyncStatus.NOT_CONNECTED:
            return "Calendar not connected"
        if self.status == SyncStatus.OFFLINE:
            return "Offline; changes stay queued"
        if self.status == SyncStatus.AUTH_REQUIRED:
            return "Google authorization expired; reconnect to resume sync"
        if self.status == SyncStatus.SKIPPED:
            return "Sync skipped"
        if self.status == SyncStatus.ERROR:
            return f"Sync failed: {self.error_message or 'unknown error'}"
        kind = "full" if self.was_full_sync else "incremental"
        text = (
            f"{kind.capitalize()} sync in {self.duration.total_seconds():.1f}s: "
            f"pushed {self.pushed} ({self.pushed_creates}+/{self.pushed_updates}~/{self.pushed_deletes}-), "
            f"pulled {self.pulled} ({self.pulled_creates}+/{self.pulled_updates}~/{self.pulled_deletes}-)"
        )
        if self.conflicts_resolved:
            text += f", {self.conflicts_resolved} conflict(s) resolved"
        return text


__all__ = ["SyncReport", "SyncStatus"]
