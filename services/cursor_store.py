from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from core.settings import GOOGLE_SYNC
from datetime_utils import ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_now


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(parse_rfc3339(value)) if value else None


def _stamp(moment: Optional[datetime]) -> str:
    return to_rfc3339_utc(ensure_utc(moment) if moment else utc_now())


class SyncCursorStore:
    """JSON-file record of the incremental sync cursor and sync timestamps."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or GOOGLE_SYNC.cursor_path)

    # ------------------------------------------------------------------
    # generic helpers
    def _load(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            return {}
        if isinstance(data, dict):
            return data
        return {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, self.path)

    # ------------------------------------------------------------------
    # cursor
    def get_cursor(self) -> Optional[str]:
        token = self._load().get("cursor")
        return str(token) if token else None

    def set_cursor(self, cursor: str, moment: Optional[datetime] = None) -> None:
        if not cursor:
            raise ValueError("cursor must be a non-empty string")
        data = self._load()
        data["cursor"] = cursor
        data["lastSyncAt"] = _stamp(moment)
        self._save(data)

    def clear_cursor(self) -> None:
        data = self._load()
        if data.pop("cursor", None) is not None:
            self._save(data)

    # ------------------------------------------------------------------
    # timestamps
    def mark_full_sync(self, moment: Optional[datetime] = None) -> None:
        data = self._load()
        data["lastFullSyncAt"] = _stamp(moment)
        self._save(data)

    def get_last_full_sync(self) -> Optional[datetime]:
        return _parse_datetime(self._load().get("lastFullSyncAt"))

    def get_last_sync(self) -> Optional[datetime]:
        return _parse_datetime(self._load().get("lastSyncAt"))

    def mark_push(self, moment: Optional[datetime] = None) -> None:
        data = self._load()
        data["lastPushAt"] = _stamp(moment)
        self._save(data)

    def get_last_push(self) -> Optional[datetime]:
        return _parse_datetime(self._load().get("lastPushAt"))

    # ------------------------------------------------------------------
    def clear_all(self) -> None:
        if self.path.exists():
            self.path.unlink()


__all__ = ["SyncCursorStore"]
