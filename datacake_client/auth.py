from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from datacake_client.models import UNSET, AuthTokens
from datacake_client.token_store import TokenStore

logger = logging.getLogger(__name__)

UnauthorizedListener = Callable[[], None]


class AuthenticationError(RuntimeError):
    pass


class TokenRefreshError(AuthenticationError):
    pass


class AuthSession:
    """Single owner of the current tokens and the outgoing authorization.

    ``apply_authorization`` receives the access token (or ``None``) after every
    change so the transport's default ``Authorization`` header never drifts
    from the tokens held here.
    """

    def __init__(
        self,
        token_store: TokenStore,
        apply_authorization: Callable[[str | None], None],
    ):
        self._token_store = token_store
        self._apply_authorization = apply_authorization
        self._lock = threading.Lock()
        self._listeners: dict[UnauthorizedListener, None] = {}
        self._tokens = AuthTokens()
        self._hydrate()

    def get_tokens(self) -> AuthTokens:
        return self._tokens

    def set_tokens(self, access_token: Any = UNSET, refresh_token: Any = UNSET) -> AuthTokens:
        with self._lock:
            current = self._tokens
            tokens = AuthTokens(
                access_token=current.access_token if access_token is UNSET else access_token or None,
                refresh_token=current.refresh_token if refresh_token is UNSET else refresh_token or None,
            )
            self._tokens = tokens
            self._apply_authorization(tokens.access_token)
            if tokens.is_empty:
                self._token_store.clear()
            else:
                self._token_store.put_tokens(tokens)
        return tokens

    def clear(self) -> None:
        with self._lock:
            self._tokens = AuthTokens()
            self._apply_authorization(None)
            self._token_store.clear()

    def subscribe_unauthorized(self, listener: UnauthorizedListener) -> Callable[[], None]:
        with self._lock:
            self._listeners[listener] = None

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener, None)

        return unsubscribe

    def notify_unauthorized(self) -> None:
        self.clear()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.warning("Unauthorized listener failed", exc_info=True)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()

    def _hydrate(self) -> None:
        stored = self._token_store.get()
        if stored is not None:
            self._tokens = stored
        self._apply_authorization(self._tokens.access_token)
