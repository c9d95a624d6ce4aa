"""Rotating file logger shared by every component."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.settings import LOGGING


ROOT_LOGGER_NAME = "focusblocks"


def _ensure_root() -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if not logger.handlers:
        Path(LOGGING.path).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            LOGGING.path,
            maxBytes=LOGGING.max_bytes,
            backupCount=LOGGING.backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, LOGGING.level.upper(), logging.INFO))
    return logger


def get_logger(name: str) -> logging.Logger:
    _ensure_root()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def read_log_tail(lines: int = 200) -> str:
    path = Path(LOGGING.path)
    if not path.exists():
        return ""
    content = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return "\n".join(content[-lines:])


__all__ = ["get_logger", "read_log_tail", "ROOT_LOGGER_NAME"]
