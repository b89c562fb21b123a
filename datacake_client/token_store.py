from __future__ import annotations

import logging
import os
import threading
from typing import Any

from msal_extensions import FilePersistence, FilePersistenceWithDataProtection
from msal_extensions.persistence import PersistenceNotFound

from datacake_client.models import UNSET, AuthTokens

logger = logging.getLogger(__name__)

ACCESS_KEY = "datacake.access_token"
REFRESH_KEY = "datacake.refresh_token"


class TokenStore:
    """Durable storage for the access and refresh token.

    Each token is kept as a raw string in its own file named after its key.
    When the durable backend fails the store falls back to an in-process map
    for the rest of the process lifetime; callers never see storage errors.
    """

    def __init__(self, directory: str | None):
        self._lock = threading.Lock()
        self._fallback: dict[str, str] = {}
        self._persistences: dict[str, Any] | None = None
        if directory:
            self._persistences = self._build_persistences(directory)

    @property
    def is_durable(self) -> bool:
        return self._persistences is not None

    def get(self) -> AuthTokens | None:
        with self._lock:
            access_token = self._read(ACCESS_KEY)
            refresh_token = self._read(REFRESH_KEY)
        if not access_token and not refresh_token:
            return None
        return AuthTokens(access_token=access_token, refresh_token=refresh_token)

    def put(self, access_token: Any = UNSET, refresh_token: Any = UNSET) -> None:
        with self._lock:
            if access_token is not UNSET:
                self._write(ACCESS_KEY, access_token or None)
            if refresh_token is not UNSET:
                self._write(REFRESH_KEY, refresh_token or None)

    def put_tokens(self, tokens: AuthTokens) -> None:
        self.put(access_token=tokens.access_token, refresh_token=tokens.refresh_token)

    def clear(self) -> None:
        with self._lock:
            self._write(ACCESS_KEY, None)
            self._write(REFRESH_KEY, None)

    @staticmethod
    def _build_persistences(directory: str) -> dict[str, Any] | None:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as error:
            logger.warning("Token directory %s is unavailable, keeping tokens in memory: %s", directory, error)
            return None
        return {key: _build_persistence(os.path.join(directory, key)) for key in (ACCESS_KEY, REFRESH_KEY)}

    def _read(self, key: str) -> str | None:
        if self._persistences is not None:
            try:
                return self._persistences[key].load() or None
            except PersistenceNotFound:
                return None
            except (OSError, ValueError) as error:
                self._degrade("read", key, error)
        return self._fallback.get(key)

    def _write(self, key: str, value: str | None) -> None:
        if self._persistences is not None:
            try:
                persistence = self._persistences[key]
                if value is None:
                    _remove_file(persistence.get_location())
                else:
                    persistence.save(value)
                return
            except (OSError, ValueError) as error:
                self._degrade("write", key, error)
        if value is None:
            self._fallback.pop(key, None)
        else:
            self._fallback[key] = value

    def _degrade(self, operation: str, key: str, error: Exception) -> None:
        logger.warning("Token storage %s failed for %s, using in-memory storage: %s", operation, key, error)
        self._persistences = None


def _build_persistence(path: str):
    try:
        return FilePersistenceWithDataProtection(path)
    except Exception:
        return FilePersistence(path)


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        return
