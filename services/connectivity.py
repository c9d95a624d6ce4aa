"""Lightweight online/offline detection."""
from __future__ import annotations

import socket
import threading
from typing import Callable, Optional, Set

import httplib2

from core.log import get_logger
from core.settings import GOOGLE_SYNC


class ConnectivityMonitor:
    """Pings a known endpoint and fires ``regained`` listeners on offline→online.

    Only ``check`` touches the network; run it from a background loop.
    """

    def __init__(
        self,
        check_url: str = GOOGLE_SYNC.connectivity_check_url,
        timeout_sec: float = GOOGLE_SYNC.connectivity_timeout_sec,
        checker: Optional[Callable[[], bool]] = None,
    ):
        self.check_url = check_url
        self.timeout_sec = timeout_sec
        self._checker = checker or self._http_check
        self._online: Optional[bool] = None
        self._listeners: Set[Callable[[], None]] = set()
        self._lock = threading.Lock()
        self.logger = get_logger("connectivity")

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.add(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.discard(callback)

    @property
    def last_known(self) -> Optional[bool]:
        return self._online

    def _http_check(self) -> bool:
        http = httplib2.Http(timeout=self.timeout_sec)
        try:
            resp, _ = http.request(self.check_url, "HEAD")
        except (httplib2.HttpLib2Error, socket.timeout, OSError):
            return False
        return int(resp.status) < 500

    def is_online(self) -> bool:
        """Last checked state; unknown counts as online. Never touches the network or notifies."""
        return self._online is not False

    def check(self) -> bool:
        online = bool(self._checker())
        with self._lock:
            previous = self._online
            self._online = online
        if previous is False and online:
            self.logger.info("Connectivity regained")
            for listener in list(self._listeners):
                try:
                    listener()
                except Exception:
                    self.logger.exception("Connectivity listener failed")
        elif previous and not online:
            self.logger.info("Connectivity lost")
        return online


__all__ = ["ConnectivityMonitor"]
