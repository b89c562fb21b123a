"""Unit tests for the token refresh middleware state machine."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

import pytest

from datacake_client import refresh as refresh_module
from datacake_client.auth import AuthSession, TokenRefreshError
from datacake_client.http import ApiHttpError
from datacake_client.models import ApiRequest, ApiResponse, AuthTokens
from datacake_client.refresh import REFRESH_PATH, TokenRefreshMiddleware

from tests.helpers.concurrency import wait_until


class FakeBackend:
    """Send function accepting only ``valid_token`` on ordinary endpoints."""

    def __init__(self, auth: AuthSession, valid_token: str = "new-access"):
        self.auth = auth
        self.valid_token = valid_token
        self.requests: list[ApiRequest] = []
        self.refresh_calls = 0
        self.refresh_handler: Callable[[ApiRequest], ApiResponse] = lambda request: ApiResponse(
            200, {"access": "new-access"}
        )
        self.stale_hook: Callable[[], None] = lambda: None
        self._lock = threading.Lock()

    def __call__(self, request: ApiRequest) -> ApiResponse:
        with self._lock:
            self.requests.append(request)
        if request.path == REFRESH_PATH:
            with self._lock:
                self.refresh_calls += 1
            return self.refresh_handler(request)

        token = self.auth.get_tokens().access_token
        if token != self.valid_token:
            self.stale_hook()
            raise ApiHttpError(401, "HTTP 401: token expired", {"detail": "expired"}, request)
        return ApiResponse(200, {"path": request.path, "token": token})


@pytest.fixture()
def auth(memory_auth_session: AuthSession) -> AuthSession:
    memory_auth_session.set_tokens(access_token="old-access", refresh_token="refresh-1")
    return memory_auth_session


@pytest.fixture()
def backend(auth: AuthSession) -> FakeBackend:
    return FakeBackend(auth)


@pytest.fixture()
def middleware(backend: FakeBackend, auth: AuthSession) -> TokenRefreshMiddleware:
    return TokenRefreshMiddleware(backend, auth)


def _count_notifications(auth: AuthSession) -> list[int]:
    calls: list[int] = []
    auth.subscribe_unauthorized(lambda: calls.append(1))
    return calls


def test_success_passes_through(middleware: TokenRefreshMiddleware, auth: AuthSession, backend: FakeBackend) -> None:
    auth.set_tokens(access_token="new-access")

    response = middleware(ApiRequest("GET", "tasks/"))

    assert response.data == {"path": "tasks/", "token": "new-access"}
    assert backend.refresh_calls == 0


def test_non_401_errors_pass_through_untouched(auth: AuthSession) -> None:
    # Arrange
    error = ApiHttpError(500, "HTTP 500: boom")

    def send(request: ApiRequest) -> ApiResponse:
        raise error

    notifications = _count_notifications(auth)
    middleware = TokenRefreshMiddleware(send, auth)

    # Act
    with pytest.raises(ApiHttpError) as caught:
        middleware(ApiRequest("GET", "tasks/"))

    # Assert
    assert caught.value is error
    assert notifications == []
    assert auth.get_tokens().access_token == "old-access"


def test_single_401_refreshes_and_retries(
    middleware: TokenRefreshMiddleware, auth: AuthSession, backend: FakeBackend
) -> None:
    # Act
    response = middleware(ApiRequest("GET", "tasks/"))

    # Assert
    assert response.data == {"path": "tasks/", "token": "new-access"}
    assert backend.refresh_calls == 1
    refresh_request = next(request for request in backend.requests if request.path == REFRESH_PATH)
    assert refresh_request.body == {"refresh": "refresh-1"}
    assert backend.requests[-1].retried is True
    assert auth.get_tokens() == AuthTokens("new-access", "refresh-1")
    assert not middleware.refresh_in_flight


def test_rotated_refresh_token_is_stored(
    middleware: TokenRefreshMiddleware, auth: AuthSession, backend: FakeBackend
) -> None:
    backend.refresh_handler = lambda request: ApiResponse(200, {"access": "new-access", "refresh": "refresh-2"})

    middleware(ApiRequest("GET", "tasks/"))

    assert auth.get_tokens() == AuthTokens("new-access", "refresh-2")


def test_concurrent_401s_trigger_exactly_one_refresh(
    middleware: TokenRefreshMiddleware, auth: AuthSession, backend: FakeBackend
) -> None:
    # Arrange
    workers = 5
    barrier = threading.Barrier(workers)
    backend.stale_hook = lambda: barrier.wait(timeout=5)

    def slow_refresh(request: ApiRequest) -> ApiResponse:
        wait_until(lambda: middleware.waiting_requests == workers - 1)
        return ApiResponse(200, {"access": "new-access"})

    backend.refresh_handler = slow_refresh
    notifications = _count_notifications(auth)

    # Act
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(middleware, ApiRequest("GET", f"tasks/{index}/")) for index in range(workers)]
        responses = [future.result(timeout=10) for future in futures]

    # Assert
    assert backend.refresh_calls == 1
    assert [response.data for response in responses] == [
        {"path": f"tasks/{index}/", "token": "new-access"} for index in range(workers)
    ]
    assert notifications == []
    assert not middleware.refresh_in_flight
    assert middleware.waiting_requests == 0


def test_refresh_failure_rejects_all_and_notifies_once(
    middleware: TokenRefreshMiddleware, auth: AuthSession, backend: FakeBackend
) -> None:
    # Arrange
    workers = 4
    barrier = threading.Barrier(workers)
    backend.stale_hook = lambda: barrier.wait(timeout=5)
    refresh_error = ApiHttpError(401, "HTTP 401: refresh token expired")

    def failing_refresh(request: ApiRequest) -> ApiResponse:
        wait_until(lambda: middleware.waiting_requests == workers - 1)
        raise refresh_error

    backend.refresh_handler = failing_refresh
    notifications = _count_notifications(auth)

    def call(index: int) -> BaseException:
        with pytest.raises(ApiHttpError) as caught:
            middleware(ApiRequest("GET", f"tasks/{index}/"))
        return caught.value

    # Act
    with ThreadPoolExecutor(max_workers=workers) as pool:
        errors = list(pool.map(call, range(workers)))

    # Assert
    assert backend.refresh_calls == 1
    assert all(error is refresh_error for error in errors)
    assert notifications == [1]
    assert auth.get_tokens() == AuthTokens()
    assert not middleware.refresh_in_flight


def test_queued_requests_wait_for_refresh_outcome(auth: AuthSession, backend: FakeBackend) -> None:
    # Arrange
    refresh_started = threading.Event()
    release_refresh = threading.Event()
    retried_paths: list[str] = []

    def recording_send(request: ApiRequest) -> ApiResponse:
        if request.retried:
            retried_paths.append(request.path)
        return backend(request)

    def blocking_refresh(request: ApiRequest) -> ApiResponse:
        refresh_started.set()
        assert release_refresh.wait(5)
        return ApiResponse(200, {"access": "new-access"})

    backend.refresh_handler = blocking_refresh
    middleware = TokenRefreshMiddleware(recording_send, auth)

    # Act
    with ThreadPoolExecutor(max_workers=4) as pool:
        driver = pool.submit(middleware, ApiRequest("GET", "tasks/driver/"))
        assert refresh_started.wait(5)
        queued = [pool.submit(middleware, ApiRequest("GET", f"tasks/{index}/")) for index in range(3)]
        wait_until(lambda: middleware.waiting_requests == 3)
        retried_before_release = list(retried_paths)
        release_refresh.set()
        driver.result(timeout=5)
        for future in queued:
            future.result(timeout=5)

    # Assert
    assert retried_before_release == []
    assert backend.refresh_calls == 1
    assert sorted(retried_paths) == ["tasks/0/", "tasks/1/", "tasks/2/", "tasks/driver/"]


def test_waiters_are_released_in_arrival_order(
    auth: AuthSession, backend: FakeBackend, monkeypatch: pytest.MonkeyPatch
) -> None:
    # Arrange
    created: list[Future[None]] = []
    released: list[Future[None]] = []

    class RecordingFuture(Future):
        def __init__(self) -> None:
            super().__init__()
            created.append(self)

        def set_result(self, result: None) -> None:
            released.append(self)
            super().set_result(result)

    monkeypatch.setattr(refresh_module, "Future", RecordingFuture)
    refresh_started = threading.Event()
    release_refresh = threading.Event()

    def blocking_refresh(request: ApiRequest) -> ApiResponse:
        refresh_started.set()
        assert release_refresh.wait(5)
        return ApiResponse(200, {"access": "new-access"})

    backend.refresh_handler = blocking_refresh
    middleware = TokenRefreshMiddleware(backend, auth)

    # Act
    with ThreadPoolExecutor(max_workers=4) as pool:
        driver = pool.submit(middleware, ApiRequest("GET", "tasks/driver/"))
        assert refresh_started.wait(5)
        queued = []
        for index in range(3):
            queued.append(pool.submit(middleware, ApiRequest("GET", f"tasks/{index}/")))
            wait_until(lambda expected=index + 1: middleware.waiting_requests == expected)
        release_refresh.set()
        driver.result(timeout=5)
        results = [future.result(timeout=5) for future in queued]

    # Assert
    assert len(created) == 3
    assert released == created
    assert [result.data["path"] for result in results] == ["tasks/0/", "tasks/1/", "tasks/2/"]


def test_refresh_endpoint_401_never_refreshes_again(
    middleware: TokenRefreshMiddleware, auth: AuthSession, backend: FakeBackend
) -> None:
    # Arrange
    def rejecting_refresh(request: ApiRequest) -> ApiResponse:
        raise ApiHttpError(401, "HTTP 401: invalid refresh token", request=request)

    backend.refresh_handler = rejecting_refresh
    notifications = _count_notifications(auth)

    # Act
    with pytest.raises(ApiHttpError):
        middleware(ApiRequest("POST", REFRESH_PATH, {"refresh": "refresh-1"}))

    # Assert
    assert backend.refresh_calls == 1
    assert notifications == [1]
    assert auth.get_tokens() == AuthTokens()


@pytest.mark.parametrize("path", ["auth/token/", "auth/logout/", "/auth/token/refresh/"])
def test_auth_critical_401_fails_without_refresh(auth: AuthSession, path: str) -> None:
    # Arrange
    sent: list[ApiRequest] = []

    def send(request: ApiRequest) -> ApiResponse:
        sent.append(request)
        raise ApiHttpError(401, "HTTP 401: bad credentials", request=request)

    notifications = _count_notifications(auth)
    middleware = TokenRefreshMiddleware(send, auth)

    # Act
    with pytest.raises(ApiHttpError):
        middleware(ApiRequest("POST", path, {}))

    # Assert
    assert [request.path for request in sent] == [path]
    assert notifications == [1]


def test_retried_request_401_fails(auth: AuthSession, middleware: TokenRefreshMiddleware, backend: FakeBackend) -> None:
    # Arrange
    backend.valid_token = "never-valid"
    notifications = _count_notifications(auth)

    # Act
    with pytest.raises(ApiHttpError) as caught:
        middleware(ApiRequest("GET", "tasks/"))

    # Assert
    assert caught.value.status_code == 401
    assert backend.refresh_calls == 1
    assert [request.retried for request in backend.requests if request.path == "tasks/"] == [False, True]
    assert notifications == [1]
    assert auth.get_tokens() == AuthTokens()


def test_missing_refresh_token_fails_immediately(
    auth: AuthSession, middleware: TokenRefreshMiddleware, backend: FakeBackend
) -> None:
    auth.set_tokens(refresh_token=None)
    notifications = _count_notifications(auth)

    with pytest.raises(TokenRefreshError):
        middleware(ApiRequest("GET", "tasks/"))

    assert backend.refresh_calls == 0
    assert notifications == [1]
    assert not middleware.refresh_in_flight


def test_refresh_response_without_access_fails(
    auth: AuthSession, middleware: TokenRefreshMiddleware, backend: FakeBackend
) -> None:
    backend.refresh_handler = lambda request: ApiResponse(200, {"refresh": "refresh-2"})

    with pytest.raises(TokenRefreshError):
        middleware(ApiRequest("GET", "tasks/"))

    assert auth.get_tokens() == AuthTokens()


def test_new_cycle_can_start_after_failure(
    auth: AuthSession, middleware: TokenRefreshMiddleware, backend: FakeBackend
) -> None:
    # Arrange
    auth.set_tokens(refresh_token=None)
    with pytest.raises(TokenRefreshError):
        middleware(ApiRequest("GET", "tasks/"))

    # Act
    auth.set_tokens(access_token="old-access", refresh_token="refresh-9")
    response = middleware(ApiRequest("GET", "tasks/"))

    # Assert
    assert response.data["token"] == "new-access"
    assert backend.refresh_calls == 1
