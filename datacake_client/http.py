from __future__ import annotations

from typing import Any, Callable

import requests

from datacake_client.models import ApiRequest, ApiResponse


class ApiHttpError(RuntimeError):
    def __init__(
        self,
        status_code: int,
        message: str,
        payload: Any = None,
        request: ApiRequest | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        self.request = request

    @property
    def detail(self) -> str | None:
        return extract_error_message(self.payload)


def extract_error_message(payload: Any, fallback: str | None = None) -> str | None:
    if not payload:
        return fallback
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, str):
            return detail
        for value in payload.values():
            if isinstance(value, list) and value:
                return str(value[0])
            if isinstance(value, str):
                return value
    return fallback


class HttpClient:
    """Plain request function bound to the resolved base URL.

    Non-2xx responses raise :class:`ApiHttpError`; transport failures are the
    ``requests`` exceptions, left untouched.
    """

    def __init__(self, base_url: Callable[[], str], timeout_seconds: float = 10):
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    @property
    def authorization(self) -> str | None:
        return self._session.headers.get("Authorization")

    def set_authorization(self, access_token: str | None) -> None:
        if access_token:
            self._session.headers["Authorization"] = f"Bearer {access_token}"
        else:
            self._session.headers.pop("Authorization", None)

    def build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url()}/{path.lstrip('/')}"

    def send(self, request: ApiRequest) -> ApiResponse:
        response = self._session.request(
            request.method.upper(),
            self.build_url(request.path),
            json=request.body,
            params=request.query,
            timeout=self._timeout_seconds,
        )

        data = self._decode(response)
        if response.ok:
            return ApiResponse(
                status_code=response.status_code,
                data=data,
                headers=dict(response.headers),
            )

        message = response.text[:500]
        raise ApiHttpError(
            status_code=response.status_code,
            message=f"HTTP {response.status_code}: {message}",
            payload=data,
            request=request,
        )

    def close(self) -> None:
        self._session.close()

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
