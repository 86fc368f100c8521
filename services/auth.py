from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Sequence

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from core.errors import StorageError
from core.settings import STORAGE_KEYS, TOKEN_PATH
from storage.kv_store import KeyValueStore


logger = logging.getLogger("offline_sync.auth")


class AuthProvider(Protocol):
    async def authorization_header(self) -> Optional[str]: ...


class StoredTokenAuth:
    """Bearer token saved in the key-value store by the login flow."""

    def __init__(self, store: KeyValueStore, key: str = STORAGE_KEYS.auth_token):
        self.store = store
        self.key = key

    async def authorization_header(self) -> Optional[str]:
        try:
            token = await self.store.get(self.key)
        except StorageError as exc:
            logger.warning("Could not read stored auth token: %s", exc)
            return None
        if not token:
            return None
        return f"Bearer {token}"


class OAuthTokenAuth:
    """Authorised-user OAuth token file, refreshed when it has expired."""

    def __init__(self, token_path: str | Path = TOKEN_PATH, scopes: Optional[Sequence[str]] = None):
        self.token_path = Path(token_path)
        self.scopes = list(scopes) if scopes else None
        self.creds: Optional[Credentials] = None

    async def authorization_header(self) -> Optional[str]:
        creds = await asyncio.to_thread(self.ensure_credentials)
        if creds is None or not creds.token:
            return None
        return f"Bearer {creds.token}"

    def ensure_credentials(self) -> Optional[Credentials]:
        if self.creds and self.creds.valid:
            return self.creds

        if self.creds is None:
            if not self.token_path.exists():
                return None
            try:
                self.creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
            except (ValueError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load %s: %s", self.token_path, exc)
                return None

        if not self.creds.valid and self.creds.expired and self.creds.refresh_token:
            try:
                self.creds.refresh(Request())
            except RefreshError as exc:
                logger.warning("Token refresh failed: %s", exc)
                self.creds = None
                return None
            self._persist_credentials(self.creds)

        return self.creds if self.creds.valid else None

    def _persist_credentials(self, creds: Credentials) -> None:
        data = creds.to_json()
        tmp_path = self.token_path.with_suffix(".tmp")
        try:
            tmp_path.write_text(data, encoding="utf-8")
            os.replace(tmp_path, self.token_path)
        except OSError as exc:
            logger.warning("Failed to persist refreshed token: %s", exc)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass


__all__ = ["AuthProvider", "OAuthTokenAuth", "StoredTokenAuth"]
