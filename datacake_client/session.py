from __future__ import annotations

from typing import Any, Callable

from datacake_client.auth import AuthSession
from datacake_client.base_url import BaseUrlResolver, ProbeFunction
from datacake_client.config import AppSettings
from datacake_client.hints import EnvironmentHintsProvider, build_hints_provider
from datacake_client.http import HttpClient
from datacake_client.models import UNSET, ApiRequest, ApiResponse, AuthTokens, BaseUrlMeta
from datacake_client.refresh import TokenRefreshMiddleware
from datacake_client.token_store import TokenStore


class ApiSession:
    """One authenticated connection to the backend.

    Owns the resolver, token store, auth session and request pipeline for its
    lifetime; everything that issues requests receives this object.
    """

    def __init__(
        self,
        resolver: BaseUrlResolver,
        token_store: TokenStore,
        timeout_seconds: float = 10,
    ):
        self._resolver = resolver
        self._http_client = HttpClient(lambda: self._resolver.base_url, timeout_seconds)
        self._auth = AuthSession(token_store, self._http_client.set_authorization)
        self._send = TokenRefreshMiddleware(self._http_client.send, self._auth)
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        hints: EnvironmentHintsProvider | None = None,
        probe: ProbeFunction | None = None,
    ) -> "ApiSession":
        resolver = BaseUrlResolver.from_settings(
            settings,
            hints if hints is not None else build_hints_provider(settings),
            probe=probe,
        )
        return cls(
            resolver=resolver,
            token_store=TokenStore(settings.token_dir),
            timeout_seconds=settings.timeout_seconds,
        )

    @property
    def authorization(self) -> str | None:
        return self._http_client.authorization

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: dict[str, Any] | None = None,
    ) -> ApiResponse:
        if self._closed:
            raise RuntimeError("ApiSession is closed")
        return self._send(ApiRequest(method=method, path=path, body=body, query=query))

    def get_tokens(self) -> AuthTokens:
        return self._auth.get_tokens()

    def set_tokens(self, access_token: Any = UNSET, refresh_token: Any = UNSET) -> AuthTokens:
        return self._auth.set_tokens(access_token=access_token, refresh_token=refresh_token)

    def clear_tokens(self) -> None:
        self._auth.clear()

    def get_base_url_meta(self) -> BaseUrlMeta:
        return self._resolver.meta

    def ensure_base_url_resolved(self) -> BaseUrlMeta:
        return self._resolver.ensure_resolved()

    def set_base_url(self, url: str) -> BaseUrlMeta:
        return self._resolver.set_base_url(url, source="manual")

    def subscribe_unauthorized(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._auth.subscribe_unauthorized(listener)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._auth.close()
        self._http_client.close()

    def __enter__(self) -> "ApiSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
