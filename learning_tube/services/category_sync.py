from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass
from typing import Any, cast

from learning_tube.errors import LearningTubeError, SyncError
from learning_tube.models.category import (
    CATEGORIES_TABLE,
    SyncEvent,
    parse_sync_event_type,
    utc_timestamp,
)
from learning_tube.services.category_store import CategoryStore
from learning_tube.services.collaborators import (
    CHANNEL_ERROR,
    CLOSED,
    SUBSCRIBED,
    TIMED_OUT,
    AuthProvider,
    AuthUser,
    CategoryBackend,
    ChangeSubscription,
)
from learning_tube.telemetry import TelemetryClient

LOGGER = logging.getLogger("learning_tube.sync")

SyncEventCallback = Callable[[SyncEvent], None]
SyncErrorCallback = Callable[[SyncError], None]

FAILED_STATUSES: frozenset[str] = frozenset({CHANNEL_ERROR, TIMED_OUT})


@dataclass(frozen=True)
class SyncConnectionStatus:
    connected: bool
    has_channel: bool
    user_id: str | None
    channel_name: str | None
    last_sync_at: str | None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "has_channel": self.has_channel,
            "user_id": self.user_id,
            "channel_name": self.channel_name,
            "last_sync_at": self.last_sync_at,
        }


def channel_name_for(user_id: str) -> str:
    return f"categories_{user_id}"


def row_filter_for(user_id: str) -> str:
    return f"user_id=eq.{user_id}"


def parse_change_payload(
    payload: Mapping[str, Any],
    *,
    default_table: str = CATEGORIES_TABLE,
) -> SyncEvent | None:
    """
    Normalize a postgres change notification into a `SyncEvent`.

    Accepts the realtime-py envelope (`{"data": {"type", "record", "old_record"}}`),
    the JS client shape (`eventType`/`new`/`old`) and a flat
    `type`/`record`/`old_record` mapping. Unknown event types yield `None`.
    """
    body: Mapping[str, Any] = payload
    nested = payload.get("data")
    if isinstance(nested, Mapping):
        body = cast(Mapping[str, Any], nested)

    event_type = parse_sync_event_type(body.get("eventType", body.get("type")))
    if event_type is None:
        return None

    new_record = _record_or_none(body.get("new", body.get("record")))
    old_record = _record_or_none(body.get("old", body.get("old_record")))
    table = body.get("table")
    timestamp = body.get("commit_timestamp")
    return SyncEvent(
        type=event_type,
        table=table if isinstance(table, str) and table else default_table,
        event_timestamp=timestamp if isinstance(timestamp, str) and timestamp else utc_timestamp(),
        old=old_record,
        new=new_record,
    )


class CategorySyncAdapter:
    """Keeps a `CategoryStore` in step with the backend's per-user change feed."""

    def __init__(
        self,
        store: CategoryStore,
        backend: CategoryBackend,
        auth: AuthProvider,
        *,
        auto_sync: bool = True,
        on_sync_event: SyncEventCallback | None = None,
        on_error: SyncErrorCallback | None = None,
        telemetry: TelemetryClient | None = None,
        table: str = CATEGORIES_TABLE,
    ) -> None:
        self._store = store
        self._backend = backend
        self._auth = auth
        self._auto_sync = auto_sync
        self._on_sync_event = on_sync_event
        self._on_error = on_error
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._table = table
        self._lock = asyncio.Lock()
        self._subscription: ChangeSubscription | None = None
        self._connected = False
        self._user_id: str | None = None
        self._pending_tasks: set[asyncio.Task[Any]] = set()
        self._remove_user_listener: Callable[[], None] | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        if self._remove_user_listener is not None:
            return
        self._remove_user_listener = self._auth.on_user_change(
            lambda user: self._spawn(self.handle_user_change(user))
        )

    async def subscribe(self) -> bool:
        async with self._lock:
            if self._connected or self._subscription is not None:
                return True
            user = self._auth.current_user()
            if user is None:
                LOGGER.info("realtime subscribe skipped; no authenticated user")
                return False

            channel_name = channel_name_for(user.id)
            try:
                subscription = await self._backend.subscribe_to_changes(
                    channel_name=channel_name,
                    table=self._table,
                    row_filter=row_filter_for(user.id),
                    on_change=self._handle_change,
                    on_status=self._handle_status,
                )
            except Exception as exc:
                LOGGER.warning("realtime subscribe failed channel=%s", channel_name, exc_info=True)
                self._report_error(SyncError(f"Failed to subscribe to category changes: {exc}"))
                return False

            self._subscription = subscription
            self._user_id = user.id
            LOGGER.info("realtime channel opened channel=%s", channel_name)
            self._telemetry.emit("category.sync.subscribed", channel=channel_name)

        if self._auto_sync:
            await self._store.fetch_categories()
        return True

    async def unsubscribe(self) -> None:
        async with self._lock:
            subscription = self._subscription
            self._subscription = None
            self._connected = False
            self._user_id = None
            if subscription is None:
                return
            try:
                await self._backend.remove_subscription(subscription)
            except Exception:
                LOGGER.warning(
                    "realtime channel removal failed channel=%s",
                    subscription.name,
                    exc_info=True,
                )
            LOGGER.info("realtime channel closed channel=%s", subscription.name)
            self._telemetry.emit("category.sync.unsubscribed", channel=subscription.name)

    async def handle_user_change(self, user: AuthUser | None) -> None:
        next_user_id = user.id if user is not None else None
        if next_user_id is not None and next_user_id == self._user_id and self._subscription is not None:
            return

        previous_user_id = self._user_id
        await self.unsubscribe()
        if previous_user_id is not None and previous_user_id != next_user_id:
            self._store.reset()
        if user is not None:
            await self.subscribe()

    async def force_sync(self) -> bool:
        ok = await self._store.fetch_categories()
        LOGGER.info("category force sync finished ok=%s", ok)
        self._telemetry.emit(
            "category.sync.force_sync",
            ok=ok,
            categories=len(self._store.categories),
        )
        return ok

    def connection_status(self) -> SyncConnectionStatus:
        subscription = self._subscription
        return SyncConnectionStatus(
            connected=self._connected,
            has_channel=subscription is not None,
            user_id=self._user_id,
            channel_name=subscription.name if subscription is not None else None,
            last_sync_at=self._store.last_sync_at,
        )

    async def close(self) -> None:
        remove_listener = self._remove_user_listener
        self._remove_user_listener = None
        if remove_listener is not None:
            remove_listener()
        for task in list(self._pending_tasks):
            task.cancel()
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
        self._pending_tasks.clear()
        await self.unsubscribe()

    def _handle_change(self, payload: Mapping[str, Any]) -> None:
        event = parse_change_payload(payload, default_table=self._table)
        if event is None:
            LOGGER.warning("realtime payload ignored; unknown event type")
            return
        try:
            self._store.sync_from_realtime(event)
        except LearningTubeError:
            LOGGER.warning("realtime event rejected type=%s", event.type, exc_info=True)
            return

        LOGGER.debug("realtime event applied type=%s table=%s", event.type, event.table)
        self._telemetry.emit("category.sync.event", event_type=event.type, table=event.table)
        if self._on_sync_event is not None:
            self._on_sync_event(event)

    def _handle_status(self, status: str, error: Exception | None) -> None:
        if status == SUBSCRIBED:
            self._connected = True
            return
        if status == CLOSED:
            self._connected = False
            return
        if status not in FAILED_STATUSES:
            LOGGER.debug("realtime status ignored status=%s", status)
            return

        self._connected = False
        detail = f": {error}" if error is not None else ""
        LOGGER.warning("realtime channel failed status=%s", status)
        self._telemetry.emit("category.sync.channel_error", status=status)
        self._report_error(SyncError(f"Realtime channel {status.lower()}{detail}"))
        self._spawn(self.force_sync())

    def _report_error(self, error: SyncError) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)


def _record_or_none(raw_value: object) -> Mapping[str, Any] | None:
    if isinstance(raw_value, Mapping) and raw_value:
        return cast(Mapping[str, Any], raw_value)
    return None
