from __future__ import annotations

from collections import deque
from concurrent.futures import Future
from dataclasses import replace
import logging
import threading
from typing import Callable, Iterable

from datacake_client.auth import AuthSession, TokenRefreshError
from datacake_client.http import ApiHttpError
from datacake_client.models import ApiRequest, ApiResponse

logger = logging.getLogger(__name__)

SendFunction = Callable[[ApiRequest], ApiResponse]

REFRESH_PATH = "auth/token/refresh/"
LOGIN_PATH = "auth/token/"
LOGOUT_PATH = "auth/logout/"
AUTH_CRITICAL_PATHS = (REFRESH_PATH, LOGOUT_PATH, LOGIN_PATH)


def normalize_path(path: str) -> str:
    return "/" + path.split("?", 1)[0].lstrip("/")


class TokenRefreshMiddleware:
    """Wraps a send function with transparent re-authentication.

    A 401 triggers at most one refresh call at a time. Requests failing while
    that call is outstanding wait for its outcome and are retried once, in the
    order they arrived. Failures that refreshing cannot fix end the session
    through :meth:`AuthSession.notify_unauthorized`.
    """

    def __init__(
        self,
        send: SendFunction,
        auth_session: AuthSession,
        refresh_path: str = REFRESH_PATH,
        auth_critical_paths: Iterable[str] = AUTH_CRITICAL_PATHS,
    ):
        self._send = send
        self._auth_session = auth_session
        self._refresh_path = refresh_path
        self._auth_critical_paths = tuple(normalize_path(path) for path in auth_critical_paths)
        self._lock = threading.Lock()
        self._in_flight = False
        self._waiters: deque[Future[None]] = deque()

    @property
    def refresh_in_flight(self) -> bool:
        return self._in_flight

    @property
    def waiting_requests(self) -> int:
        with self._lock:
            return len(self._waiters)

    def __call__(self, request: ApiRequest) -> ApiResponse:
        try:
            return self._send(request)
        except ApiHttpError as error:
            if error.status_code != 401:
                raise
            return self._recover(request, error)

    def is_auth_critical(self, path: str) -> bool:
        normalized = normalize_path(path)
        return any(normalized.endswith(endpoint) for endpoint in self._auth_critical_paths)

    def _recover(self, request: ApiRequest, error: ApiHttpError) -> ApiResponse:
        if request.retried or self.is_auth_critical(request.path):
            self._auth_session.notify_unauthorized()
            raise error

        with self._lock:
            if self._in_flight:
                waiter: Future[None] | None = Future()
                self._waiters.append(waiter)
            else:
                waiter = None
                self._in_flight = True

        retry = replace(request, retried=True)
        if waiter is not None:
            waiter.result()
            return self(retry)

        failure: BaseException | None = None
        try:
            self._refresh_tokens()
        except BaseException as refresh_error:
            failure = refresh_error
            raise
        finally:
            self._settle(failure)
            if failure is not None:
                logger.warning("Token refresh failed, ending session: %s", failure)
                self._auth_session.notify_unauthorized()
        return self(retry)

    def _refresh_tokens(self) -> None:
        current_refresh = self._auth_session.get_tokens().refresh_token
        if not current_refresh:
            raise TokenRefreshError("Refresh token missing")

        response = self._send(
            ApiRequest(method="POST", path=self._refresh_path, body={"refresh": current_refresh})
        )
        data = response.data if isinstance(response.data, dict) else {}
        access_token = data.get("access")
        if not access_token:
            raise TokenRefreshError("Refresh response did not include an access token")

        # Backends that do not rotate refresh tokens omit "refresh"; keep the current one.
        self._auth_session.set_tokens(
            access_token=access_token,
            refresh_token=data.get("refresh") or current_refresh,
        )

    def _settle(self, failure: BaseException | None) -> None:
        with self._lock:
            waiters = list(self._waiters)
            self._waiters.clear()
            self._in_flight = False
        for waiter in waiters:
            if failure is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(failure)
