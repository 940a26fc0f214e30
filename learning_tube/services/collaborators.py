from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
TIMED_OUT = "TIMED_OUT"
CLOSED = "CLOSED"

ChangeCallback = Callable[[Mapping[str, Any]], None]
StatusCallback = Callable[[str, Exception | None], None]
UserListener = Callable[["AuthUser | None"], None]


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None = None


class AuthProvider(Protocol):
    def current_user(self) -> AuthUser | None:
        ...

    def on_user_change(self, listener: UserListener) -> Callable[[], None]:
        ...


class ChangeSubscription(Protocol):
    @property
    def name(self) -> str:
        ...


class CategoryBackend(Protocol):
    async def list_categories(self, user_id: str) -> list[dict[str, Any]]:
        ...

    async def insert_category(self, row: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def update_category(
        self,
        category_id: str,
        *,
        user_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        ...

    async def delete_category(self, category_id: str, *, user_id: str) -> None:
        ...

    async def subscribe_to_changes(
        self,
        *,
        channel_name: str,
        table: str,
        row_filter: str,
        on_change: ChangeCallback,
        on_status: StatusCallback,
    ) -> ChangeSubscription:
        ...

    async def remove_subscription(self, subscription: ChangeSubscription) -> None:
        ...
