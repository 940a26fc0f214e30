from __future__ import annotations

import logging

from learning_tube.models.video import DEFAULT_SEARCH_OPTIONS, SearchOptions
from learning_tube.services.category_store import CategoryStore
from learning_tube.services.debounce import Debouncer
from learning_tube.services.query_enhancement import append_category_tags, generate_category_query
from learning_tube.services.video_search import VideoSearchController

LOGGER = logging.getLogger("learning_tube.category_search")

DEFAULT_CATEGORY_DEBOUNCE_SECONDS = 0.5
DEFAULT_QUERY_DEBOUNCE_SECONDS = 0.8

CATEGORY_SEARCH_OPTIONS = SearchOptions(region_code="US", relevance_language="en").merged_over(
    DEFAULT_SEARCH_OPTIONS
)


class CategorySearchCoordinator:
    """
    Category-aware searching on top of a `VideoSearchController`.

    Two inputs drive automatic searches: the selected category id (from the
    store) and the search query set through `set_search_query`. Each has its
    own debouncer, so a burst of changes on either input yields one search
    with the latest values. With `auto_search` on, the coordinator takes over
    the controller's own refetch-on-category-change.
    """

    def __init__(
        self,
        store: CategoryStore,
        controller: VideoSearchController,
        *,
        auto_search: bool = True,
        search_options: SearchOptions | None = None,
        category_debounce_seconds: float = DEFAULT_CATEGORY_DEBOUNCE_SECONDS,
        query_debounce_seconds: float = DEFAULT_QUERY_DEBOUNCE_SECONDS,
    ) -> None:
        self._store = store
        self._controller = controller
        self._auto_search = auto_search
        self._search_options = (search_options or SearchOptions()).merged_over(CATEGORY_SEARCH_OPTIONS)
        self._category_debouncer = Debouncer(category_debounce_seconds, name="category")
        self._query_debouncer = Debouncer(query_debounce_seconds, name="query")
        self._search_query = ""
        # Bumped on every external query change; stale searches must not overwrite it.
        self._query_revision = 0

        selected = store.selected_category
        self._observed_category_id = selected.id if selected is not None else None
        self._unsubscribe_store = store.subscribe(self._on_store_change)
        if auto_search:
            controller.set_refetch_on_category_change(False)

    @property
    def search_query(self) -> str:
        return self._search_query

    @property
    def current_search_category(self) -> str | None:
        selected = self._store.selected_category
        return selected.id if selected is not None else None

    @property
    def auto_search(self) -> bool:
        return self._auto_search

    @property
    def search_options(self) -> SearchOptions:
        return self._search_options

    def generate_category_query_for_id(self, category_id: str, user_query: str | None = None) -> str:
        return generate_category_query(self._store.get_category_by_id(category_id), user_query)

    async def search_by_category(self, category_id: str, query: str | None = None) -> bool:
        category = self._store.get_category_by_id(category_id)
        if category is None:
            LOGGER.warning("category search skipped; category not found category_id=%s", category_id)
            return False

        enhanced_query = generate_category_query(category, query)
        if not enhanced_query:
            LOGGER.warning("category search skipped; empty query category_id=%s", category_id)
            return False

        revision = self._query_revision
        await self._controller.search_videos(
            append_category_tags(enhanced_query, category),
            self._search_options,
        )
        # Internal update: must not re-arm the query debouncer.
        self._record_searched_query(enhanced_query, revision)
        return True

    async def search_with_current_category(self, query: str) -> None:
        selected = self._store.selected_category
        if selected is None:
            revision = self._query_revision
            await self._controller.search_videos(query)
            self._record_searched_query(query, revision)
            return
        await self.search_by_category(selected.id, query)

    def set_search_query(self, query: str) -> None:
        if query == self._search_query:
            return
        self._search_query = query
        self._query_revision += 1
        if not self._auto_search or not query or self._store.selected_category is None:
            self._query_debouncer.cancel()
            return
        self._query_debouncer.trigger(lambda: self.search_with_current_category(query))

    def set_auto_search(self, enabled: bool) -> None:
        self._auto_search = enabled
        self._controller.set_refetch_on_category_change(not enabled)
        if not enabled:
            self._category_debouncer.cancel()
            self._query_debouncer.cancel()

    async def close(self) -> None:
        self._unsubscribe_store()
        await self._category_debouncer.close()
        await self._query_debouncer.close()

    def _record_searched_query(self, query: str, revision: int) -> None:
        if revision != self._query_revision:
            LOGGER.debug("searched query superseded; keeping newer query revision=%s", revision)
            return
        self._search_query = query

    def _on_store_change(self, store: CategoryStore) -> None:
        selected = store.selected_category
        selected_id = selected.id if selected is not None else None
        if selected_id == self._observed_category_id:
            return
        self._observed_category_id = selected_id
        if not self._auto_search or selected_id is None or not self._search_query:
            self._category_debouncer.cancel()
            return

        category_id = selected_id
        self._category_debouncer.trigger(
            lambda: self.search_by_category(category_id, self._search_query)
        )
