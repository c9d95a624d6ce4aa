"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``.

    ``FOCUSBLOCKS_HOME`` wins over the platform defaults when set.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    override = environ.get("FOCUSBLOCKS_HOME")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = home_dir / "Library" / "Application Support"
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "FocusBlocks"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
SECRETS_DIR = DATA_DIR / "secrets"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, SECRETS_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "focusblocks.db"
TOKEN_PATH = DATA_DIR / "token.json"
CLIENT_SECRET_PATH = SECRETS_DIR / "client_secret.json"
SYNC_CURSOR_PATH = STORAGE_DIR / "gcal_sync_cursor.json"


@dataclass(frozen=True)
class SessionPolicy:
    short_commitment_min: int = 5
    long_commitment_min: int = 10
    long_task_cutoff_min: int = 120
    merge_window_min: int = 15
    proximity_window_min: int = 30
    auto_end_grace_sec: int = 15
    monitor_interval_sec: int = 10
    overtime_resync_throttle_sec: int = 120
    missed_sweep_throttle_sec: int = 120
    overdue_extension_fallback_min: int = 30
    adhoc_fallback_min: int = 30

    @property
    def merge_window(self) -> timedelta:
        return timedelta(minutes=self.merge_window_min)

    @property
    def proximity_window(self) -> timedelta:
        return timedelta(minutes=self.proximity_window_min)

    @property
    def auto_end_grace(self) -> timedelta:
        return timedelta(seconds=self.auto_end_grace_sec)

    def commitment_threshold(self, estimated_minutes: int) -> timedelta:
        if estimated_minutes >= self.long_task_cutoff_min:
            return timedelta(minutes=self.long_commitment_min)
        return timedelta(minutes=self.short_commitment_min)


SESSION_POLICY = SessionPolicy()


@dataclass(frozen=True)
class GoogleSyncSettings:
    enabled: bool = True
    calendar_id: str = "primary"
    scopes: tuple[str, ...] = (
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/calendar.events",
    )
    cursor_path: Path = SYNC_CURSOR_PATH
    window_days_back: int = 30
    window_days_forward: int = 90
    page_size: int = 250
    max_retries: int = 5
    request_timeout_sec: int = 30
    remote_tolerance_sec: int = 60
    # 15, 30, 60 or None for manual only
    background_interval_min: Optional[int] = 30
    default_color_id: str = "9"
    connectivity_check_url: str = "https://www.googleapis.com/generate_204"
    connectivity_timeout_sec: int = 5
    connectivity_interval_sec: int = 30


GOOGLE_SYNC = GoogleSyncSettings()

BACKGROUND_INTERVAL_CHOICES: tuple[Optional[int], ...] = (15, 30, 60, None)


@dataclass(frozen=True)
class LoggingSettings:
    path: Path = LOG_DIR / "sync.log"
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"


LOGGING = LoggingSettings()


@dataclass(frozen=True)
class ThemeColors:
    surface_bg: str = "#F1F5F9"
    text_subtle: str = "#6B7280"
    active: str = "#22C55E"
    missed: str = "#EF4444"
    discarded: str = "#9CA3AF"
    completed: str = "#3B82F6"
    scheduled: str = "#6366F1"


@dataclass(frozen=True)
class UISettings:
    app_title: str = APP_NAME
    theme_mode: str = "system"
    color_scheme_seed: str = "#4F46E5"
    window_min_width: int = 720
    window_min_height: int = 560
    list_section_height: int = 420
    theme: ThemeColors = ThemeColors()


UI = UISettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "SECRETS_DIR",
    "LOG_DIR",
    "DB_PATH",
    "TOKEN_PATH",
    "CLIENT_SECRET_PATH",
    "SYNC_CURSOR_PATH",
    "SESSION_POLICY",
    "SessionPolicy",
    "GOOGLE_SYNC",
    "GoogleSyncSettings",
    "BACKGROUND_INTERVAL_CHOICES",
    "LOGGING",
    "UI",
    "get_default_data_dir",
]
