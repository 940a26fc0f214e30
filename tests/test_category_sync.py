from __future__ import annotations

import asyncio

from fakes import USER, CaptureTelemetrySink, FakeAuth, FakeBackend, make_row

from learning_tube.errors import ProviderError, SyncError
from learning_tube.models.category import SyncEvent
from learning_tube.services.category_store import CategoryStore
from learning_tube.services.category_sync import CategorySyncAdapter, parse_change_payload
from learning_tube.services.collaborators import CHANNEL_ERROR, CLOSED, TIMED_OUT, AuthUser
from learning_tube.telemetry import TelemetryClient


def _adapter(
    backend: FakeBackend,
    auth: FakeAuth,
    **kwargs: object,
) -> tuple[CategoryStore, CategorySyncAdapter]:
    store = CategoryStore(backend, auth)
    return store, CategorySyncAdapter(store, backend, auth, **kwargs)  # type: ignore[arg-type]


def test_parse_change_payload_accepts_realtime_envelope() -> None:
    event = parse_change_payload(
        {
            "data": {
                "type": "INSERT",
                "table": "categories",
                "record": {"id": "cat-9", "name": "Chess"},
                "old_record": None,
                "commit_timestamp": "2026-03-01T10:00:00Z",
            },
            "ids": [1],
        }
    )

    assert event is not None
    assert event.type == "INSERT"
    assert event.record == {"id": "cat-9", "name": "Chess"}
    assert event.event_timestamp == "2026-03-01T10:00:00Z"


def test_parse_change_payload_accepts_event_type_shape() -> None:
    event = parse_change_payload({"eventType": "delete", "old": {"id": "cat-1"}, "new": {}})

    assert event is not None
    assert event.type == "DELETE"
    assert event.record == {"id": "cat-1"}
    assert event.table == "categories"


def test_parse_change_payload_ignores_unknown_types() -> None:
    assert parse_change_payload({"eventType": "TRUNCATE"}) is None
    assert parse_change_payload({}) is None


def test_subscribe_opens_user_scoped_channel_and_fetches(backend: FakeBackend, auth: FakeAuth) -> None:
    store, adapter = _adapter(backend, auth)

    assert asyncio.run(adapter.subscribe()) is True

    assert len(backend.subscriptions) == 1
    subscription = backend.subscriptions[0]
    assert subscription.name == "categories_user-1"
    assert subscription.table == "categories"
    assert subscription.row_filter == "user_id=eq.user-1"
    assert len(store.categories) == 2
    status = adapter.connection_status()
    assert status.connected is True
    assert status.has_channel is True
    assert status.user_id == "user-1"


def test_subscribe_is_idempotent(backend: FakeBackend, auth: FakeAuth) -> None:
    _, adapter = _adapter(backend, auth)

    async def _run() -> None:
        await adapter.subscribe()
        await adapter.subscribe()
        await asyncio.gather(adapter.subscribe(), adapter.subscribe())

    asyncio.run(_run())
    assert len(backend.subscriptions) == 1


def test_subscribe_without_user_is_noop(backend: FakeBackend) -> None:
    _, adapter = _adapter(backend, FakeAuth(user=None))

    assert asyncio.run(adapter.subscribe()) is False
    assert backend.subscriptions == []


def test_subscribe_without_auto_sync_skips_fetch(backend: FakeBackend, auth: FakeAuth) -> None:
    store, adapter = _adapter(backend, auth, auto_sync=False)

    asyncio.run(adapter.subscribe())

    assert store.categories == ()
    assert "list" not in backend.calls


def test_subscribe_failure_reports_sync_error(backend: FakeBackend, auth: FakeAuth) -> None:
    errors: list[SyncError] = []
    _, adapter = _adapter(backend, auth, on_error=errors.append)
    backend.fail("subscribe", ProviderError("socket closed"))

    assert asyncio.run(adapter.subscribe()) is False
    assert len(errors) == 1
    assert "socket closed" in str(errors[0])
    assert adapter.connection_status().has_channel is False


def test_change_feed_applies_insert_update_delete(backend: FakeBackend, auth: FakeAuth) -> None:
    events: list[SyncEvent] = []
    store, adapter = _adapter(backend, auth, on_sync_event=events.append)
    asyncio.run(adapter.subscribe())
    store.select_category("cat-1")

    backend.push({"eventType": "INSERT", "new": make_row("cat-3", "Chess"), "old": {}})
    backend.push({"eventType": "INSERT", "new": make_row("cat-3", "Chess"), "old": {}})
    assert [category.id for category in store.categories] == ["cat-2", "cat-1", "cat-3"]

    backend.push({"eventType": "UPDATE", "new": make_row("cat-1", "Soups"), "old": {}})
    assert store.selected_category is not None
    assert store.selected_category.name == "Soups"
    assert [category.id for category in store.categories] == ["cat-2", "cat-1", "cat-3"]

    backend.push({"eventType": "DELETE", "new": {}, "old": {"id": "cat-1"}})
    backend.push({"eventType": "DELETE", "new": {}, "old": {"id": "missing"}})
    assert [category.id for category in store.categories] == ["cat-2", "cat-3"]
    assert store.selected_category is None

    assert [event.type for event in events] == ["INSERT", "INSERT", "UPDATE", "DELETE", "DELETE"]


def test_update_for_unknown_row_is_appended(backend: FakeBackend, auth: FakeAuth) -> None:
    store, adapter = _adapter(backend, auth)
    asyncio.run(adapter.subscribe())

    backend.push({"data": {"type": "UPDATE", "record": make_row("cat-7", "Drawing")}})

    assert store.categories[-1].id == "cat-7"


def test_channel_error_reports_and_forces_sync(
    backend: FakeBackend,
    auth: FakeAuth,
    telemetry_sink: CaptureTelemetrySink,
) -> None:
    errors: list[SyncError] = []
    store, adapter = _adapter(
        backend,
        auth,
        on_error=errors.append,
        telemetry=TelemetryClient(enabled=True, sink=telemetry_sink),
    )

    async def _run() -> None:
        await adapter.subscribe()
        backend.rows.append(make_row("cat-5", "Woodworking"))
        backend.status(CHANNEL_ERROR, RuntimeError("boom"))
        assert adapter.connected is False
        await asyncio.sleep(0.01)

    asyncio.run(_run())

    assert len(errors) == 1
    assert "channel_error" in str(errors[0])
    assert store.get_category_by_id("cat-5") is not None
    assert "category.sync.channel_error" in telemetry_sink.names()
    assert "category.sync.force_sync" in telemetry_sink.names()


def test_timed_out_and_closed_statuses_drop_connected_flag(backend: FakeBackend, auth: FakeAuth) -> None:
    errors: list[SyncError] = []
    _, adapter = _adapter(backend, auth, on_error=errors.append)

    async def _run() -> None:
        await adapter.subscribe()
        backend.status(CLOSED)
        assert adapter.connected is False
        backend.status(TIMED_OUT)
        await asyncio.sleep(0.01)

    asyncio.run(_run())
    assert len(errors) == 1


def test_unsubscribe_releases_channel(backend: FakeBackend, auth: FakeAuth) -> None:
    _, adapter = _adapter(backend, auth)

    async def _run() -> None:
        await adapter.subscribe()
        await adapter.unsubscribe()
        await adapter.unsubscribe()

    asyncio.run(_run())

    assert [subscription.name for subscription in backend.removed] == ["categories_user-1"]
    status = adapter.connection_status()
    assert status.connected is False
    assert status.has_channel is False


def test_user_change_resubscribes_for_new_user(backend: FakeBackend, auth: FakeAuth) -> None:
    other = AuthUser(id="user-2")
    backend.rows.append(make_row("cat-8", "Running", user_id="user-2"))
    store, adapter = _adapter(backend, auth)

    async def _run() -> None:
        adapter.start()
        await adapter.subscribe()
        auth.set_user(other)
        await asyncio.sleep(0.01)

    asyncio.run(_run())

    assert [subscription.name for subscription in backend.subscriptions] == [
        "categories_user-1",
        "categories_user-2",
    ]
    assert [subscription.name for subscription in backend.removed] == ["categories_user-1"]
    assert [category.id for category in store.categories] == ["cat-8"]


def test_sign_out_unsubscribes_and_clears_store(backend: FakeBackend, auth: FakeAuth) -> None:
    store, adapter = _adapter(backend, auth)

    async def _run() -> None:
        await adapter.subscribe()
        await adapter.handle_user_change(None)

    asyncio.run(_run())

    assert len(backend.removed) == 1
    assert store.categories == ()
    assert adapter.connection_status().user_id is None


def test_same_user_change_keeps_channel(backend: FakeBackend, auth: FakeAuth) -> None:
    _, adapter = _adapter(backend, auth)

    async def _run() -> None:
        await adapter.subscribe()
        await adapter.handle_user_change(USER)

    asyncio.run(_run())
    assert len(backend.subscriptions) == 1
    assert backend.removed == []


def test_force_sync_replaces_local_state(backend: FakeBackend, auth: FakeAuth) -> None:
    store, adapter = _adapter(backend, auth)
    asyncio.run(adapter.subscribe())
    backend.rows = [make_row("cat-9", "Only")]

    assert asyncio.run(adapter.force_sync()) is True
    assert [category.id for category in store.categories] == ["cat-9"]


def test_close_detaches_listener_and_channel(backend: FakeBackend, auth: FakeAuth) -> None:
    _, adapter = _adapter(backend, auth)

    async def _run() -> None:
        adapter.start()
        await adapter.subscribe()
        await adapter.close()

    asyncio.run(_run())
    assert auth.listeners == []
    assert len(backend.removed) == 1
