from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

from supabase import AsyncClient, acreate_client

from learning_tube.errors import ProviderError
from learning_tube.services.collaborators import (
    AuthUser,
    ChangeCallback,
    ChangeSubscription,
    StatusCallback,
    UserListener,
)

LOGGER = logging.getLogger("learning_tube.supabase")

SIGNED_OUT_EVENTS: frozenset[str] = frozenset({"SIGNED_OUT", "USER_DELETED"})


@dataclass(frozen=True)
class SupabaseChannelSubscription:
    name: str
    channel: Any


async def create_supabase_client(url: str, key: str) -> AsyncClient:
    if not url.strip() or not key.strip():
        raise ProviderError(
            "Missing Supabase configuration. Set LEARNING_TUBE_SUPABASE_URL and "
            "LEARNING_TUBE_SUPABASE_KEY."
        )
    return await acreate_client(url, key)


class SupabaseAuthProvider:
    """Tracks the signed-in user and fans auth changes out to listeners."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client
        self._current_user: AuthUser | None = None
        self._listeners: list[UserListener] = []
        self._auth_subscription: Any | None = None

    def current_user(self) -> AuthUser | None:
        return self._current_user

    def on_user_change(self, listener: UserListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def start(self) -> None:
        if self._auth_subscription is not None:
            return
        self._auth_subscription = self._client.auth.on_auth_state_change(self._handle_auth_event)

    def stop(self) -> None:
        subscription = self._auth_subscription
        self._auth_subscription = None
        if subscription is not None:
            subscription.unsubscribe()
        self._listeners.clear()

    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        try:
            response = await self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as exc:
            raise ProviderError(f"Sign-in failed: {exc}", status_code=401) from exc

        user = _to_auth_user(getattr(response, "user", None))
        if user is None:
            raise ProviderError("Sign-in did not return a user", status_code=401)
        self._set_user(user)
        return user

    async def refresh_user(self) -> AuthUser | None:
        try:
            response = await self._client.auth.get_user()
        except Exception:
            LOGGER.warning("supabase auth get_user failed", exc_info=True)
            self._set_user(None)
            return None
        user = _to_auth_user(getattr(response, "user", None)) if response is not None else None
        self._set_user(user)
        return user

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        finally:
            self._set_user(None)

    def _handle_auth_event(self, event: Any, session: Any) -> None:
        event_name = str(getattr(event, "value", event)).upper()
        if event_name in SIGNED_OUT_EVENTS:
            self._set_user(None)
            return
        user = _to_auth_user(getattr(session, "user", None)) if session is not None else None
        if user is not None:
            self._set_user(user)

    def _set_user(self, user: AuthUser | None) -> None:
        previous_id = self._current_user.id if self._current_user is not None else None
        next_id = user.id if user is not None else None
        self._current_user = user
        if previous_id == next_id:
            return
        LOGGER.info("auth user changed previous_user_id=%s user_id=%s", previous_id, next_id)
        for listener in list(self._listeners):
            listener(user)


class SupabaseCategoryBackend:
    def __init__(self, client: AsyncClient, *, table: str = "categories", schema: str = "public") -> None:
        self._client = client
        self._table = table
        self._schema = schema

    async def list_categories(self, user_id: str) -> list[dict[str, Any]]:
        try:
            response = await (
                self._client.table(self._table)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise ProviderError(_postgrest_message(exc, fallback="Failed to fetch categories")) from exc
        return _rows(response)

    async def insert_category(self, row: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.table(self._table).insert(dict(row)).execute()
        except Exception as exc:
            raise ProviderError(_postgrest_message(exc, fallback="Failed to create category")) from exc
        return _first_row(response, fallback="Failed to create category")

    async def update_category(
        self,
        category_id: str,
        *,
        user_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        try:
            response = await (
                self._client.table(self._table)
                .update(dict(patch))
                .eq("id", category_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            raise ProviderError(_postgrest_message(exc, fallback="Failed to update category")) from exc
        return _first_row(response, fallback="Category not found")

    async def delete_category(self, category_id: str, *, user_id: str) -> None:
        try:
            await (
                self._client.table(self._table)
                .delete()
                .eq("id", category_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            raise ProviderError(_postgrest_message(exc, fallback="Failed to delete category")) from exc

    async def subscribe_to_changes(
        self,
        *,
        channel_name: str,
        table: str,
        row_filter: str,
        on_change: ChangeCallback,
        on_status: StatusCallback,
    ) -> ChangeSubscription:
        channel = self._client.channel(channel_name)
        channel.on_postgres_changes(
            "*",
            schema=self._schema,
            table=table,
            filter=row_filter,
            callback=on_change,
        )

        def _status_callback(state: Any, error: Exception | None = None) -> None:
            on_status(str(getattr(state, "value", state)).upper(), error)

        try:
            await channel.subscribe(_status_callback)
        except Exception as exc:
            raise ProviderError(f"Failed to open realtime channel {channel_name}: {exc}") from exc
        return SupabaseChannelSubscription(name=channel_name, channel=channel)

    async def remove_subscription(self, subscription: ChangeSubscription) -> None:
        channel = getattr(subscription, "channel", None)
        if channel is None:
            return
        await self._client.remove_channel(channel)


def _to_auth_user(raw_user: Any) -> AuthUser | None:
    if raw_user is None:
        return None
    raw_id = getattr(raw_user, "id", None)
    if raw_id is None and isinstance(raw_user, Mapping):
        raw_id = cast(Mapping[str, Any], raw_user).get("id")
    if raw_id is None or not str(raw_id).strip():
        return None
    email = getattr(raw_user, "email", None)
    return AuthUser(id=str(raw_id), email=email if isinstance(email, str) else None)


def _rows(response: Any) -> list[dict[str, Any]]:
    data = getattr(response, "data", None)
    if not isinstance(data, list):
        return []
    return [cast(dict[str, Any], row) for row in cast(list[Any], data) if isinstance(row, dict)]


def _first_row(response: Any, *, fallback: str) -> dict[str, Any]:
    rows = _rows(response)
    if not rows:
        raise ProviderError(fallback, status_code=404)
    return rows[0]


def _postgrest_message(exc: Exception, *, fallback: str) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message.strip()
    raw = str(exc).strip()
    return raw or fallback
