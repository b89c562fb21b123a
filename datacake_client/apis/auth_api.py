from __future__ import annotations

import logging
from typing import Any

import requests

from datacake_client.auth import AuthenticationError
from datacake_client.http import ApiHttpError, extract_error_message
from datacake_client.refresh import LOGIN_PATH, LOGOUT_PATH
from datacake_client.session import ApiSession

logger = logging.getLogger(__name__)


class AuthApi:
    def __init__(self, session: ApiSession):
        self._session = session

    def login(self, identifier: str, password: str) -> None:
        identifier = identifier.strip()
        if not identifier or not password:
            raise AuthenticationError("Identifier and password are required")

        data = self._post(
            LOGIN_PATH,
            {"identifier": identifier, "password": password},
            "Could not sign in.",
        )
        if not isinstance(data, dict) or not data.get("access") or not data.get("refresh"):
            raise AuthenticationError("Incomplete login response.")

        self._session.set_tokens(access_token=data["access"], refresh_token=data["refresh"])

    def logout(self) -> None:
        try:
            self._session.request("POST", LOGOUT_PATH)
        except (ApiHttpError, requests.RequestException) as error:
            logger.warning("Logout request failed, clearing local session: %s", error)
        finally:
            self._session.clear_tokens()

    def me(self) -> dict[str, Any]:
        response = self._session.request("GET", "auth/me/")
        return response.data if isinstance(response.data, dict) else {}

    def register(self, username: str, email: str, password: str, confirm_password: str) -> dict[str, str]:
        self._post(
            "auth/register/",
            {
                "username": username,
                "email": email,
                "password": password,
                "confirm_password": confirm_password,
            },
            "Could not register.",
        )
        return {"email": email, "username": username}

    def verify_email(self, email: str, code: str) -> None:
        self._post("auth/verify/", {"email": email, "code": code}, "Invalid or expired code.")

    def resend_code(self, email: str) -> None:
        self._post("auth/resend/", {"email": email}, "Could not resend the code.")

    def request_password_reset(self, email: str) -> None:
        self._post("auth/password/reset/", {"email": email}, "Could not send the reset code.")

    def confirm_password_reset(self, email: str, code: str, password: str) -> None:
        self._post(
            "auth/password/confirm/",
            {"email": email, "code": code, "password": password},
            "Could not reset the password.",
        )

    def _post(self, path: str, payload: dict[str, Any], fallback_message: str) -> Any:
        try:
            return self._session.request("POST", path, payload).data
        except ApiHttpError as error:
            message = extract_error_message(error.payload, fallback_message) or fallback_message
            raise AuthenticationError(message) from error
