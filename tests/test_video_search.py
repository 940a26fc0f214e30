from __future__ import annotations

import asyncio
from pathlib import Path

from fakes import (
    CaptureNotifications,
    CaptureTelemetrySink,
    FakeAuth,
    FakeBackend,
    FakeSearchProvider,
    make_page,
)

from learning_tube.errors import ProviderError
from learning_tube.models.video import SearchOptions
from learning_tube.repositories.analysis_cache_repository import AnalysisCacheRepository
from learning_tube.repositories.database import Database
from learning_tube.services.category_store import CategoryStore
from learning_tube.services.video_search import VideoSearchController
from learning_tube.telemetry import TelemetryClient


def _controller(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
    **kwargs: object,
) -> tuple[CategoryStore, VideoSearchController]:
    store = CategoryStore(backend, auth)
    asyncio.run(store.fetch_categories())
    controller = VideoSearchController(provider, store, notifications, **kwargs)  # type: ignore[arg-type]
    return store, controller


def test_blank_query_resets_without_provider_call(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)

    asyncio.run(controller.search_videos("   "))

    assert provider.calls == []
    assert controller.status == "idle"
    assert controller.videos == ()
    assert controller.search_query == ""
    assert notifications.items == []


def test_search_merges_defaults_and_stores_unenhanced_query(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    store, controller = _controller(backend, auth, provider, notifications)
    store.select_category("cat-1")
    provider.queue(make_page("v1", "v2", total_results=1234, next_page_token="NEXT"))

    asyncio.run(controller.search_videos("leek", SearchOptions(order="date")))

    query, options = provider.calls[0]
    assert query == "leek soup knife skills"
    assert options.max_results == 25
    assert options.type == "video"
    assert options.order == "date"
    assert options.video_duration == "any"
    assert controller.status == "success"
    assert controller.search_query == "leek"
    assert [video.id for video in controller.videos] == ["v1", "v2"]
    assert controller.total_results == 1234
    assert controller.has_next_page is True
    assert controller.has_prev_page is False
    assert controller.current_page == 1
    assert notifications.items[-1].title == "Search completed"
    assert notifications.items[-1].description == "Found 1,234 videos"


def test_search_without_selected_category_sends_query_as_is(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)

    asyncio.run(controller.search_videos("leek"))

    assert provider.calls[0][0] == "leek"


def test_empty_results_do_not_notify(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)
    provider.queue(make_page(total_results=0))

    asyncio.run(controller.search_videos("nothing here"))

    assert controller.status == "success"
    assert controller.videos == ()
    assert notifications.items == []


def test_search_failure_clears_videos_and_notifies(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)
    provider.queue(make_page("v1"), ProviderError("quotaExceeded", status_code=403))

    asyncio.run(controller.search_videos("leek"))
    asyncio.run(controller.search_videos("leek soup"))

    assert controller.status == "error"
    assert controller.videos == ()
    assert controller.error == "YouTube API quota exceeded. Try again later."
    assert notifications.items[-1].title == "Search failed"
    assert notifications.items[-1].variant == "destructive"


def test_search_failure_without_message_uses_fallback(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)
    provider.queue(RuntimeError())

    asyncio.run(controller.search_videos("leek"))

    assert controller.error == "Failed to search videos"


def test_pagination_walks_tokens_and_page_numbers(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    store, controller = _controller(backend, auth, provider, notifications)
    store.select_category("cat-2")
    provider.queue(
        make_page("v1", next_page_token="P2"),
        make_page("v2", next_page_token="P3", prev_page_token="P1"),
        make_page("v1", next_page_token="P2"),
    )

    async def _run() -> None:
        await controller.search_videos("generators")
        await controller.load_next_page()
        assert controller.current_page == 2
        assert controller.has_prev_page is True
        await controller.load_prev_page()

    asyncio.run(_run())

    assert [call[1].page_token for call in provider.calls] == [None, "P2", "P1"]
    # Page requests reuse the query that produced the tokens.
    assert {call[0] for call in provider.calls} == {"generators asyncio typing"}
    assert controller.current_page == 1
    assert [video.id for video in controller.videos] == ["v1"]


def test_load_page_without_token_is_noop(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)

    async def _run() -> None:
        await controller.load_next_page()
        await controller.search_videos("leek")
        await controller.load_next_page()
        await controller.load_prev_page()

    asyncio.run(_run())
    assert len(provider.calls) == 1


def test_failed_next_page_keeps_current_videos(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)
    provider.queue(make_page("v1", next_page_token="P2"), RuntimeError(""))

    async def _run() -> None:
        await controller.search_videos("leek")
        await controller.load_next_page()

    asyncio.run(_run())

    assert [video.id for video in controller.videos] == ["v1"]
    assert controller.error == "Failed to load next page"
    assert controller.status == "error"
    assert controller.current_page == 1
    assert notifications.items[-1].title == "Failed to load next page"


def test_refetch_reissues_stored_query_and_options(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)

    async def _run() -> None:
        await controller.refetch_current_search()
        await controller.search_videos("leek", SearchOptions(max_results=5))
        await controller.refetch_current_search()

    asyncio.run(_run())

    assert len(provider.calls) == 2
    assert provider.calls[0] == provider.calls[1]


def test_clear_results_resets_state_synchronously(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    _, controller = _controller(backend, auth, provider, notifications)
    provider.queue(make_page("v1", next_page_token="P2"))
    asyncio.run(controller.search_videos("leek"))

    controller.clear_results()

    assert controller.status == "idle"
    assert controller.videos == ()
    assert controller.search_query == ""
    assert controller.has_next_page is False
    assert controller.total_results == 0


def test_stale_response_is_discarded(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
    telemetry_sink: CaptureTelemetrySink,
) -> None:
    _, controller = _controller(
        backend,
        auth,
        provider,
        notifications,
        telemetry=TelemetryClient(enabled=True, sink=telemetry_sink),
    )
    provider.queue(make_page("slow"), make_page("fast"))

    async def _run() -> None:
        gate = asyncio.Event()
        provider.gates[0] = gate
        slow = asyncio.create_task(controller.search_videos("first"))
        await asyncio.sleep(0)
        await controller.search_videos("second")
        gate.set()
        await slow

    asyncio.run(_run())

    assert controller.search_query == "second"
    assert [video.id for video in controller.videos] == ["fast"]
    assert controller.is_loading is False
    assert len(notifications.items) == 1
    assert "search.request.discarded" in telemetry_sink.names()


def test_category_change_triggers_one_refetch(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    store, controller = _controller(backend, auth, provider, notifications)

    async def _run() -> None:
        store.select_category("cat-1")
        await asyncio.sleep(0.01)
        assert provider.calls == []

        await controller.search_videos("leek")
        store.select_category("cat-2")
        await asyncio.sleep(0.01)
        store.select_category("cat-2")
        store.clear_error()
        await asyncio.sleep(0.01)
        store.select_category(None)
        await asyncio.sleep(0.01)

    asyncio.run(_run())

    assert [call[0] for call in provider.calls] == ["leek soup knife skills", "leek asyncio typing"]


def test_category_refetch_can_be_disabled(
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    store, controller = _controller(
        backend,
        auth,
        provider,
        notifications,
        refetch_on_category_change=False,
    )

    async def _run() -> None:
        await controller.search_videos("leek")
        store.select_category("cat-2")
        await asyncio.sleep(0.01)

    asyncio.run(_run())
    assert len(provider.calls) == 1


def test_cached_analysis_overrides_heuristics(
    tmp_path: Path,
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    db = Database(tmp_path / "state.db")
    db.initialize()
    cache = AnalysisCacheRepository(db)
    cache.put(video_id="v1", relevance_score=91, key_points=("Covers stocks",), category_id="cat-1")
    store, controller = _controller(backend, auth, provider, notifications, analysis_cache=cache)
    store.select_category("cat-1")
    provider.queue(make_page("v1", "v2"))

    asyncio.run(controller.search_videos("leek"))

    first, second = controller.videos
    assert first.relevance_score == 91
    assert first.key_points == ("Covers stocks",)
    assert first.analysis_cached is True
    assert second.analysis_cached is False


def test_unreadable_analysis_cache_falls_back_to_heuristics(
    tmp_path: Path,
    backend: FakeBackend,
    auth: FakeAuth,
    provider: FakeSearchProvider,
    notifications: CaptureNotifications,
) -> None:
    db = Database(tmp_path / "state.db")
    db.initialize()
    with db.connection() as conn:
        conn.execute("DROP TABLE analysis_cache")
    _, controller = _controller(
        backend,
        auth,
        provider,
        notifications,
        analysis_cache=AnalysisCacheRepository(db),
    )
    provider.queue(make_page("v1"))

    asyncio.run(controller.search_videos("leek"))

    assert controller.status == "success"
    assert [video.analysis_cached for video in controller.videos] == [False]
