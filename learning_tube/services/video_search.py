from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Literal

from learning_tube.errors import describe_provider_error
from learning_tube.models.category import Category
from learning_tube.models.video import DEFAULT_SEARCH_OPTIONS, SearchOptions, SearchPage, VideoUI
from learning_tube.repositories.analysis_cache_repository import AnalysisCacheRepository, CachedAnalysis
from learning_tube.services.category_store import CategoryStore
from learning_tube.services.notifications import Notification, NotificationSink
from learning_tube.services.query_enhancement import append_category_keywords
from learning_tube.services.video_transformers import extract_video_id, transform_video_to_ui
from learning_tube.services.youtube_search_provider import SearchProvider
from learning_tube.telemetry import TelemetryClient

LOGGER = logging.getLogger("learning_tube.search")

SearchStatus = Literal["idle", "searching", "success", "error"]
PageDirection = Literal["next", "prev"]

SEARCH_FAILED_MESSAGE = "Failed to search videos"
NEXT_PAGE_FAILED_MESSAGE = "Failed to load next page"
PREV_PAGE_FAILED_MESSAGE = "Failed to load previous page"


@dataclass(frozen=True)
class SearchState:
    query: str
    dispatched_query: str
    options: SearchOptions
    page: SearchPage
    page_number: int = 1


@dataclass(frozen=True)
class SearchSnapshot:
    status: SearchStatus
    query: str
    videos: tuple[VideoUI, ...]
    error: str | None
    is_loading: bool
    page_number: int
    total_results: int
    has_next_page: bool
    has_prev_page: bool
    options: SearchOptions | None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "query": self.query,
            "videos": [video.to_public_dict() for video in self.videos],
            "error": self.error,
            "is_loading": self.is_loading,
            "page_number": self.page_number,
            "total_results": self.total_results,
            "has_next_page": self.has_next_page,
            "has_prev_page": self.has_prev_page,
            "options": self.options.to_public_dict() if self.options is not None else None,
        }


class VideoSearchController:
    """
    Owns the search results list, the stored search and the pagination cursor.

    Every dispatched request is tagged with a generation; a response is applied
    only if no newer request (or `clear_results`) happened meanwhile.
    """

    def __init__(
        self,
        provider: SearchProvider,
        store: CategoryStore,
        notifications: NotificationSink,
        *,
        default_options: SearchOptions = DEFAULT_SEARCH_OPTIONS,
        analysis_cache: AnalysisCacheRepository | None = None,
        telemetry: TelemetryClient | None = None,
        refetch_on_category_change: bool = True,
    ) -> None:
        self._provider = provider
        self._store = store
        self._notifications = notifications
        self._default_options = default_options
        self._analysis_cache = analysis_cache
        self._telemetry = telemetry or TelemetryClient.disabled()

        self._status: SearchStatus = "idle"
        self._videos: tuple[VideoUI, ...] = ()
        self._error: str | None = None
        self._search_state: SearchState | None = None
        self._in_flight = 0
        self._generation = 0
        self._refetch_tasks: set[asyncio.Task[None]] = set()
        self._refetch_on_category_change = refetch_on_category_change

        selected = store.selected_category
        self._observed_category_id = selected.id if selected is not None else None
        self._unsubscribe_store = store.subscribe(self._on_store_change)

    @property
    def status(self) -> SearchStatus:
        return self._status

    @property
    def videos(self) -> tuple[VideoUI, ...]:
        return self._videos

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def search_query(self) -> str:
        return self._search_state.query if self._search_state is not None else ""

    @property
    def has_next_page(self) -> bool:
        return self._search_state is not None and self._search_state.page.next_page_token is not None

    @property
    def has_prev_page(self) -> bool:
        return self._search_state is not None and self._search_state.page.prev_page_token is not None

    @property
    def current_page(self) -> int:
        return self._search_state.page_number if self._search_state is not None else 1

    @property
    def total_results(self) -> int:
        return self._search_state.page.total_results if self._search_state is not None else 0

    def set_refetch_on_category_change(self, enabled: bool) -> None:
        self._refetch_on_category_change = enabled

    def snapshot(self) -> SearchSnapshot:
        return SearchSnapshot(
            status=self._status,
            query=self.search_query,
            videos=self._videos,
            error=self._error,
            is_loading=self.is_loading,
            page_number=self.current_page,
            total_results=self.total_results,
            has_next_page=self.has_next_page,
            has_prev_page=self.has_prev_page,
            options=self._search_state.options if self._search_state is not None else None,
        )

    async def search_videos(self, query: str, options: SearchOptions | None = None) -> None:
        if not query.strip():
            self._generation += 1
            self._videos = ()
            self._search_state = None
            self._error = None
            self._status = "idle"
            return

        merged_options = (options or SearchOptions()).merged_over(self._default_options)
        category = self._store.selected_category
        dispatched_query = query
        if category is not None and category.keywords:
            dispatched_query = append_category_keywords(query, category)

        generation = self._begin()
        self._status = "searching"
        started_at = time.monotonic()
        self._telemetry.emit(
            "search.request.started",
            kind="search",
            generation=generation,
            category_id=category.id if category is not None else None,
            query_length=len(dispatched_query),
        )
        try:
            page = await self._provider.search(dispatched_query, merged_options)
        except Exception as exc:
            if self._finish(generation):
                return
            message = describe_provider_error(exc, fallback=SEARCH_FAILED_MESSAGE)
            LOGGER.warning("video search failed generation=%s error=%s", generation, message)
            self._videos = ()
            self._error = message
            self._status = "error"
            self._emit_failure("search", generation, started_at)
            self._notifications.notify(Notification("Search failed", message, variant="destructive"))
            return

        if self._finish(generation):
            return
        analyses = await self._lookup_analyses(page, category)
        if self._is_stale(generation):
            return
        self._videos = self._transform(page, category, analyses)
        self._search_state = SearchState(
            query=query,
            dispatched_query=dispatched_query,
            options=merged_options,
            page=page,
        )
        self._error = None
        self._status = "success"
        LOGGER.info(
            "video search completed generation=%s videos=%s total_results=%s",
            generation,
            len(self._videos),
            page.total_results,
        )
        self._emit_success("search", generation, started_at, page)
        if self._videos:
            self._notifications.notify(
                Notification("Search completed", f"Found {page.total_results:,} videos")
            )

    async def load_next_page(self) -> None:
        await self._load_page("next")

    async def load_prev_page(self) -> None:
        await self._load_page("prev")

    async def refetch_current_search(self) -> None:
        state = self._search_state
        if state is None or not state.query:
            return
        await self.search_videos(state.query, state.options)

    def clear_results(self) -> None:
        self._generation += 1
        self._videos = ()
        self._search_state = None
        self._error = None
        self._status = "idle"

    async def close(self) -> None:
        self._unsubscribe_store()
        tasks = list(self._refetch_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _load_page(self, direction: PageDirection) -> None:
        state = self._search_state
        if state is None or not state.query:
            return
        token = state.page.next_page_token if direction == "next" else state.page.prev_page_token
        if token is None:
            return

        fallback = NEXT_PAGE_FAILED_MESSAGE if direction == "next" else PREV_PAGE_FAILED_MESSAGE
        category = self._store.selected_category
        generation = self._begin()
        started_at = time.monotonic()
        self._telemetry.emit("search.request.started", kind=direction, generation=generation)
        try:
            page = await self._provider.search(state.dispatched_query, state.options.with_page_token(token))
        except Exception as exc:
            if self._finish(generation):
                return
            message = describe_provider_error(exc, fallback=fallback)
            LOGGER.warning(
                "video page load failed direction=%s generation=%s error=%s",
                direction,
                generation,
                message,
            )
            # Current page stays visible alongside the error.
            self._error = message
            self._status = "error"
            self._emit_failure(direction, generation, started_at)
            self._notifications.notify(Notification(fallback, message, variant="destructive"))
            return

        if self._finish(generation):
            return
        analyses = await self._lookup_analyses(page, category)
        if self._is_stale(generation):
            return
        page_number = state.page_number + 1 if direction == "next" else max(1, state.page_number - 1)
        self._videos = self._transform(page, category, analyses)
        self._search_state = replace(state, page=page, page_number=page_number)
        self._error = None
        self._status = "success"
        self._emit_success(direction, generation, started_at, page)

    def _begin(self) -> int:
        self._generation += 1
        self._in_flight += 1
        self._error = None
        return self._generation

    def _finish(self, generation: int) -> bool:
        """Returns True when the response belongs to a superseded request."""
        self._in_flight = max(0, self._in_flight - 1)
        return self._is_stale(generation)

    def _is_stale(self, generation: int) -> bool:
        if generation == self._generation:
            return False
        LOGGER.debug("stale search response discarded generation=%s latest=%s", generation, self._generation)
        self._telemetry.emit("search.request.discarded", generation=generation, latest=self._generation)
        return True

    async def _lookup_analyses(
        self,
        page: SearchPage,
        category: Category | None,
    ) -> dict[str, CachedAnalysis]:
        cache = self._analysis_cache
        if cache is None:
            return {}
        video_ids = [
            video_id for video_id in map(extract_video_id, page.items) if video_id is not None
        ]
        if not video_ids:
            return {}
        try:
            return await asyncio.to_thread(
                cache.get_many,
                video_ids,
                category_id=category.id if category is not None else None,
            )
        except sqlite3.Error:
            LOGGER.warning("analysis cache lookup failed; using heuristic scores", exc_info=True)
            return {}

    def _transform(
        self,
        page: SearchPage,
        category: Category | None,
        analyses: Mapping[str, CachedAnalysis],
    ) -> tuple[VideoUI, ...]:
        videos: list[VideoUI] = []
        for item in page.items:
            video_id = extract_video_id(item)
            analysis = analyses.get(video_id) if video_id is not None else None
            videos.append(transform_video_to_ui(item, category=category, analysis=analysis))
        return tuple(videos)

    def _emit_success(self, kind: str, generation: int, started_at: float, page: SearchPage) -> None:
        self._telemetry.emit(
            "search.request.succeeded",
            kind=kind,
            generation=generation,
            items=len(page.items),
            total_results=page.total_results,
            duration_ms=round((time.monotonic() - started_at) * 1000, 2),
        )

    def _emit_failure(self, kind: str, generation: int, started_at: float) -> None:
        self._telemetry.emit(
            "search.request.failed",
            kind=kind,
            generation=generation,
            duration_ms=round((time.monotonic() - started_at) * 1000, 2),
        )

    def _on_store_change(self, store: CategoryStore) -> None:
        selected = store.selected_category
        selected_id = selected.id if selected is not None else None
        if selected_id == self._observed_category_id:
            return
        self._observed_category_id = selected_id
        if selected_id is None or not self.search_query or not self._refetch_on_category_change:
            return

        LOGGER.info("selected category changed; refetching category_id=%s", selected_id)
        task = asyncio.get_running_loop().create_task(self.refetch_current_search())
        self._refetch_tasks.add(task)
        task.add_done_callback(self._refetch_tasks.discard)
