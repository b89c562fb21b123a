from __future__ import annotations

from typing import Any, Sequence

from datacake_client.models import ChecklistItem, Task
from datacake_client.session import ApiSession

TASKS_PATH = "tasks/"

# Filter name -> query parameter understood by the backend.
TASK_FILTERS = {
    "status": "status",
    "importance": "importance",
    "category": "category",
    "date_from": "due_from",
    "date_to": "due_to",
}


class TasksApi:
    def __init__(self, session: ApiSession):
        self._session = session

    def list_tasks(self, filters: dict[str, Any] | None = None) -> list[Task]:
        response = self._session.request("GET", TASKS_PATH, query=self.build_query(filters or {}))
        data = response.data
        if isinstance(data, dict):
            data = data.get("results", [])
        if not isinstance(data, list):
            return []
        return [Task.from_payload(item) for item in data if isinstance(item, dict)]

    def create(self, payload: dict[str, Any]) -> Task:
        self._require_title(payload)
        response = self._session.request("POST", TASKS_PATH, payload)
        return Task.from_payload(response.data)

    def update(self, task_id: int, payload: dict[str, Any]) -> Task:
        if "title" in payload:
            self._require_title(payload)
        response = self._session.request("PATCH", f"{TASKS_PATH}{task_id}/", payload)
        return Task.from_payload(response.data)

    def toggle(self, task_id: int) -> Task:
        response = self._session.request("POST", f"{TASKS_PATH}{task_id}/toggle/")
        return Task.from_payload(response.data)

    def delete(self, task_id: int) -> None:
        self._session.request("DELETE", f"{TASKS_PATH}{task_id}/")

    def update_checklist(self, task_id: int, items: Sequence[ChecklistItem]) -> None:
        checklist = [item.to_payload(order) for order, item in enumerate(items)]
        self._session.request("PATCH", f"{TASKS_PATH}{task_id}/", {"checklist_items": checklist})

    @staticmethod
    def build_query(filters: dict[str, Any]) -> dict[str, Any]:
        query: dict[str, Any] = {}
        for name, param in TASK_FILTERS.items():
            value = filters.get(name)
            if value in (None, "", "all"):
                continue
            query[param] = value
        return query

    @staticmethod
    def _require_title(payload: dict[str, Any]) -> None:
        title = str(payload.get("title", "")).strip()
        if not title:
            raise ValueError("Task title is required")
