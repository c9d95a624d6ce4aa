# focusblocks/services/google_auth.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable, Optional, Sequence

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from core.errors import AuthExpired, TransientNetworkError
from core.log import get_logger
from core.settings import CLIENT_SECRET_PATH, GOOGLE_SYNC, TOKEN_PATH


class GoogleAuth:
    def __init__(
        self,
        secrets_path: str | Path = CLIENT_SECRET_PATH,
        token_path: str | Path = TOKEN_PATH,
        scopes: Sequence[str] = GOOGLE_SYNC.scopes,
    ):
        self.secrets_path = Path(secrets_path)
        self.token_path = Path(token_path)
        self.scopes = list(scopes)
        self.secrets_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.creds: Optional[Credentials] = None
        self.logger = get_logger("auth")
        self.logger.debug("Token path: %s", self.token_path)

    def load_cached(self) -> Optional[Credentials]:
        """Load ``token.json`` without ever opening a browser."""
        if self.creds is not None:
            return self.creds
        if not self.token_path.exists():
            return None
        try:
            self.creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except (ValueError, json.JSONDecodeError) as exc:
            self.logger.warning("Failed to load token.json: %s; reauth required", exc)
            self.reset_credentials()
            return None
        if not self._has_required_scopes(self.creds):
            self.logger.warning("Cached token is missing required scopes")
            self.reset_credentials()
            return None
        return self.creds

    def has_cached_token(self) -> bool:
        return self.load_cached() is not None

    def ensure_credentials(self, *, interactive: bool = True) -> bool:
        creds = self.load_cached()
        if creds and creds.valid:
            self._log_active_scopes(creds.scopes)
            return True

        if creds and creds.expired and creds.refresh_token:
            try:
                self.refresh()
            except AuthExpired:
                creds = None

        if not self.creds or not self.creds.valid:
            if not interactive:
                raise AuthExpired("Google authorization required")
            if not self.secrets_path.exists():
                raise FileNotFoundError(
                    f"Missing {self.secrets_path}. "
                    "Create a Desktop OAuth client in Google Cloud and download its JSON."
                )
            flow = InstalledAppFlow.from_client_secrets_file(str(self.secrets_path), self.scopes)
            self.logger.info("Running OAuth consent flow (local server)")
            self.creds = flow.run_local_server(
                port=0,
                access_type="offline",
                prompt="consent",
                include_granted_scopes="true",
            )

        if not self.creds:
            raise AuthExpired("Could not obtain Google credentials")
        if not self._has_required_scopes(self.creds):
            raise AuthExpired("Granted Google scopes are insufficient")

        self._persist_credentials(self.creds)
        self._log_active_scopes(self.creds.scopes)
        return True

    def refresh(self) -> Credentials:
        """Single refresh attempt; raises :class:`AuthExpired` when it cannot succeed."""
        creds = self.load_cached()
        if creds is None or not creds.refresh_token:
            raise AuthExpired("No refresh token available")
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            self.logger.warning("Token refresh failed: %s", exc)
            self.reset_credentials()
            raise AuthExpired(str(exc)) from exc
        except TransportError as exc:
            raise TransientNetworkError(f"Token refresh transport error: {exc}") from exc
        self._persist_credentials(creds)
        self.logger.info("Google token refreshed")
        return creds

    def get_credentials(self) -> Optional[Credentials]:
        return self.creds

    def reset_credentials(self) -> None:
        self.creds = None
        try:
            if self.token_path.exists():
                self.token_path.unlink()
                self.logger.info("Removed cached Google token")
        except OSError as exc:
            self.logger.warning("Failed to remove cached token: %s", exc)

    # ----- helpers -----
    def _persist_credentials(self, creds: Credentials) -> None:
        data = creds.to_json()
        tmp_path = self.token_path.with_suffix(".tmp")
        try:
            tmp_path.write_text(data, encoding="utf-8")
            os.replace(tmp_path, self.token_path)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

    def _has_required_scopes(self, creds: Credentials) -> bool:
        current = set(creds.scopes or [])
        return all(scope in current for scope in self.scopes)

    def _log_active_scopes(self, scopes: Iterable[str] | None) -> None:
        scopes_list = sorted(set(scopes or []))
        self.logger.info("Active scopes: %s", ", ".join(scopes_list) if scopes_list else "-")


__all__ = ["GoogleAuth"]
