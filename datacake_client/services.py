from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

import requests

from datacake_client.apis import AuthApi, TasksApi
from datacake_client.http import ApiHttpError
from datacake_client.models import AuthState, BaseUrlMeta, ChecklistItem, Task
from datacake_client.session import ApiSession

logger = logging.getLogger(__name__)


class DatacakeService:
    def __init__(
        self,
        session: ApiSession,
        auth_api: AuthApi,
        tasks_api: TasksApi,
    ):
        self._session = session
        self._auth_api = auth_api
        self._tasks_api = tasks_api

    @classmethod
    def from_session(cls, session: ApiSession) -> "DatacakeService":
        return cls(session=session, auth_api=AuthApi(session), tasks_api=TasksApi(session))

    def base_url_meta(self) -> BaseUrlMeta:
        return self._session.get_base_url_meta()

    def detect_backend(self) -> BaseUrlMeta:
        return self._session.ensure_base_url_resolved()

    def configure_base_url(self, url: str) -> BaseUrlMeta:
        return self._session.set_base_url(url)

    def subscribe_unauthorized(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._session.subscribe_unauthorized(listener)

    def auth_state(self) -> AuthState:
        if not self._session.get_tokens().access_token:
            return AuthState(is_signed_in=False)
        try:
            profile = self._auth_api.me()
        except (ApiHttpError, requests.RequestException) as error:
            logger.info("Profile could not be loaded: %s", error)
            return AuthState(is_signed_in=False)
        return AuthState(
            is_signed_in=True,
            username=str(profile.get("username") or "").strip() or None,
            email=str(profile.get("email") or "").strip() or None,
        )

    def sign_in(self, identifier: str, password: str) -> AuthState:
        self._auth_api.login(identifier, password)
        return self.auth_state()

    def sign_out(self) -> None:
        self._auth_api.logout()

    def register(self, username: str, email: str, password: str, confirm_password: str) -> dict[str, str]:
        return self._auth_api.register(username, email, password, confirm_password)

    def verify_email(self, email: str, code: str) -> None:
        self._auth_api.verify_email(email, code)

    def resend_code(self, email: str) -> None:
        self._auth_api.resend_code(email)

    def request_password_reset(self, email: str) -> None:
        self._auth_api.request_password_reset(email)

    def confirm_password_reset(self, email: str, code: str, password: str) -> None:
        self._auth_api.confirm_password_reset(email, code, password)

    def list_tasks(self, filters: dict[str, Any] | None = None) -> list[Task]:
        return self._tasks_api.list_tasks(filters)

    def create_task(self, payload: dict[str, Any]) -> Task:
        return self._tasks_api.create(payload)

    def update_task(self, task_id: int, payload: dict[str, Any]) -> Task:
        return self._tasks_api.update(task_id, payload)

    def toggle_task(self, task_id: int) -> Task:
        return self._tasks_api.toggle(task_id)

    def delete_task(self, task_id: int) -> None:
        self._tasks_api.delete(task_id)

    def update_checklist(self, task_id: int, items: Sequence[ChecklistItem]) -> None:
        self._tasks_api.update_checklist(task_id, items)

    def close(self) -> None:
        self._session.close()
