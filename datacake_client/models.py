from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class _Unset:
    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Marks a token field the caller did not pass, as opposed to one passed as None.
UNSET: Any = _Unset()


@dataclass(frozen=True)
class AuthTokens:
    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token


BASE_URL_SOURCES = ("env", "auto", "auto-probe", "fallback", "manual")


@dataclass(frozen=True)
class BaseUrlMeta:
    env_base_url: str | None
    auto_detected_base_url: str | None
    resolved_base_url: str
    source: str

    @property
    def needs_manual_configuration(self) -> bool:
        return self.source == "fallback"


@dataclass(frozen=True)
class ApiRequest:
    method: str
    path: str
    body: Any = None
    query: dict[str, Any] | None = None
    retried: bool = False


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthState:
    is_signed_in: bool
    username: str | None = None
    email: str | None = None


TASK_STATUS_PENDING = "pendente"
TASK_STATUS_DONE = "concluida"


@dataclass(frozen=True)
class ChecklistItem:
    label: str
    done: bool = False
    id: int | None = None

    def to_payload(self, order: int) -> dict[str, Any]:
        payload: dict[str, Any] = {"label": self.label, "done": self.done, "order": order}
        if self.id is not None:
            payload["id"] = self.id
        return payload


@dataclass(frozen=True)
class Task:
    id: int
    title: str
    description: str = ""
    status: str = TASK_STATUS_PENDING
    importance: str | None = None
    category: str | None = None
    tags: tuple[str, ...] = ()
    due_date: str | None = None
    created_at: str | None = None
    checklist_items: tuple[ChecklistItem, ...] = ()

    @property
    def is_completed(self) -> bool:
        return self.status == TASK_STATUS_DONE

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "Task":
        raw_items = payload.get("checklist_items")
        items: list[tuple[int, ChecklistItem]] = []
        if isinstance(raw_items, list):
            for position, raw_item in enumerate(raw_items):
                if not isinstance(raw_item, dict):
                    continue
                label = str(raw_item.get("label", "")).strip()
                if not label:
                    continue
                item_id = raw_item.get("id")
                order = raw_item.get("order")
                items.append(
                    (
                        order if isinstance(order, int) else position,
                        ChecklistItem(
                            label=label,
                            done=bool(raw_item.get("done", False)),
                            id=item_id if isinstance(item_id, int) else None,
                        ),
                    )
                )
        items.sort(key=lambda entry: entry[0])

        raw_tags = payload.get("tags")
        tags = tuple(str(tag) for tag in raw_tags) if isinstance(raw_tags, list) else ()

        return Task(
            id=int(payload["id"]),
            title=str(payload.get("title", "")).strip(),
            description=str(payload.get("description") or "").strip(),
            status=str(payload.get("status") or TASK_STATUS_PENDING),
            importance=payload.get("importance") or None,
            category=payload.get("category") or None,
            tags=tags,
            due_date=payload.get("due_date") or None,
            created_at=payload.get("created_at") or None,
            checklist_items=tuple(item for _, item in items),
        )
