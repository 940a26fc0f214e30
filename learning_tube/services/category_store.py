from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from learning_tube.errors import ValidationError, describe_provider_error
from learning_tube.models.category import (
    Category,
    CategoryDraft,
    CategoryFilter,
    CategoryPatch,
    SyncEvent,
    SyncEventType,
    utc_timestamp,
)
from learning_tube.services.collaborators import AuthProvider, CategoryBackend

LOGGER = logging.getLogger("learning_tube.categories")

StoreListener = Callable[["CategoryStore"], None]

NOT_AUTHENTICATED_MESSAGE = "User not authenticated"


class CategoryStore:
    """
    In-memory cache of the signed-in user's categories.

    Every remote call goes through the injected backend; local state changes
    only after the backend succeeds. Failures leave the categories untouched
    and populate `error`. Listeners run synchronously after each change.
    """

    def __init__(self, backend: CategoryBackend, auth: AuthProvider) -> None:
        self._backend = backend
        self._auth = auth
        self._categories: tuple[Category, ...] = ()
        self._selected_category: Category | None = None
        self._is_loading = False
        self._error: str | None = None
        self._last_sync_at: str | None = None
        self._listeners: list[StoreListener] = []

    @property
    def categories(self) -> tuple[Category, ...]:
        return self._categories

    @property
    def selected_category(self) -> Category | None:
        return self._selected_category

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def last_sync_at(self) -> str | None:
        return self._last_sync_at

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def fetch_categories(self) -> bool:
        user = self._auth.current_user()
        if user is None:
            self._fail(NOT_AUTHENTICATED_MESSAGE)
            return False

        self._begin()
        try:
            rows = await self._backend.list_categories(user.id)
            categories = tuple(Category.from_row(row) for row in rows)
        except Exception as exc:
            LOGGER.warning("category fetch failed user_id=%s", user.id, exc_info=True)
            self._fail(describe_provider_error(exc, fallback="Failed to fetch categories"))
            return False

        self._categories = categories
        self._selected_category = _refresh_selection(self._selected_category, categories)
        self._last_sync_at = utc_timestamp()
        self._is_loading = False
        LOGGER.info("categories fetched user_id=%s count=%s", user.id, len(categories))
        self._notify()
        return True

    async def add_category(self, draft: CategoryDraft) -> Category | None:
        user = self._auth.current_user()
        if user is None:
            self._fail(NOT_AUTHENTICATED_MESSAGE)
            return None

        try:
            row = draft.to_row(user_id=user.id)
        except ValidationError as exc:
            self._fail(str(exc))
            return None

        self._begin()
        try:
            created = Category.from_row(await self._backend.insert_category(row))
        except Exception as exc:
            LOGGER.warning("category create failed name=%s", draft.name, exc_info=True)
            self._fail(describe_provider_error(exc, fallback="Failed to create category"))
            return None

        # The change feed may already have delivered this row.
        remaining = tuple(category for category in self._categories if category.id != created.id)
        self._categories = (created, *remaining)
        self._is_loading = False
        self._notify()
        return created

    async def update_category(self, category_id: str, patch: CategoryPatch) -> Category | None:
        user = self._auth.current_user()
        if user is None:
            self._fail(NOT_AUTHENTICATED_MESSAGE)
            return None

        try:
            patch_row = patch.to_row()
        except ValidationError as exc:
            self._fail(str(exc))
            return None

        self._begin()
        try:
            updated = Category.from_row(
                await self._backend.update_category(category_id, user_id=user.id, patch=patch_row)
            )
        except Exception as exc:
            LOGGER.warning("category update failed category_id=%s", category_id, exc_info=True)
            self._fail(describe_provider_error(exc, fallback="Failed to update category"))
            return None

        self._categories, self._selected_category = reduce_categories(
            self._categories,
            self._selected_category,
            event_type="UPDATE",
            category=updated,
        )
        self._is_loading = False
        self._notify()
        return updated

    async def toggle_category(self, category_id: str) -> bool:
        current = self.get_category_by_id(category_id)
        if current is None:
            self._fail(f"Category {category_id} not found")
            return False
        updated = await self.update_category(category_id, CategoryPatch(is_active=not current.is_active))
        return updated is not None

    async def delete_category(self, category_id: str) -> bool:
        user = self._auth.current_user()
        if user is None:
            self._fail(NOT_AUTHENTICATED_MESSAGE)
            return False

        self._begin()
        try:
            await self._backend.delete_category(category_id, user_id=user.id)
        except Exception as exc:
            LOGGER.warning("category delete failed category_id=%s", category_id, exc_info=True)
            self._fail(describe_provider_error(exc, fallback="Failed to delete category"))
            return False

        self._categories, self._selected_category = _remove(
            self._categories,
            self._selected_category,
            category_id,
        )
        self._is_loading = False
        self._notify()
        return True

    def sync_from_realtime(self, event: SyncEvent) -> None:
        record = event.record
        if record is None:
            LOGGER.warning("realtime event without record type=%s", event.type)
            return

        if event.type == "DELETE":
            raw_id = record.get("id")
            if raw_id is None:
                return
            self._categories, self._selected_category = _remove(
                self._categories,
                self._selected_category,
                str(raw_id),
            )
        else:
            category = _merge_record(self.get_category_by_id(str(record.get("id"))), record)
            self._categories, self._selected_category = reduce_categories(
                self._categories,
                self._selected_category,
                event_type=event.type,
                category=category,
            )
        self._last_sync_at = event.event_timestamp
        self._notify()

    def select_category(self, category: Category | str | None) -> Category | None:
        if isinstance(category, str):
            resolved = self.get_category_by_id(category)
            if resolved is None:
                raise ValidationError(f"Category {category} not found")
            category = resolved
        self._selected_category = category
        self._notify()
        return category

    def clear_error(self) -> None:
        self._error = None
        self._notify()

    def get_category_by_id(self, category_id: str) -> Category | None:
        for category in self._categories:
            if category.id == category_id:
                return category
        return None

    def filtered_categories(self, *, query: str = "", active: bool | None = None) -> list[Category]:
        category_filter = CategoryFilter(query=query, active=active)
        return [category for category in self._categories if category_filter.matches(category)]

    def active_categories_count(self) -> int:
        return sum(1 for category in self._categories if category.is_active)

    def reset(self) -> None:
        self._categories = ()
        self._selected_category = None
        self._is_loading = False
        self._error = None
        self._last_sync_at = None
        self._notify()

    def _begin(self) -> None:
        self._is_loading = True
        self._error = None
        self._notify()

    def _fail(self, message: str) -> None:
        self._is_loading = False
        self._error = message
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)


def reduce_categories(
    categories: tuple[Category, ...],
    selected: Category | None,
    *,
    event_type: SyncEventType,
    category: Category,
) -> tuple[tuple[Category, ...], Category | None]:
    """INSERT appends when absent; UPDATE replaces in place or appends; DELETE removes."""
    if event_type == "DELETE":
        return _remove(categories, selected, category.id)

    existing_index = next(
        (index for index, current in enumerate(categories) if current.id == category.id),
        None,
    )
    if existing_index is None:
        next_categories = (*categories, category)
    elif event_type == "INSERT":
        next_categories = categories
    else:
        next_categories = (
            *categories[:existing_index],
            category,
            *categories[existing_index + 1 :],
        )

    if event_type == "UPDATE" and selected is not None and selected.id == category.id:
        selected = category
    return next_categories, selected


def _remove(
    categories: tuple[Category, ...],
    selected: Category | None,
    category_id: str,
) -> tuple[tuple[Category, ...], Category | None]:
    remaining = tuple(category for category in categories if category.id != category_id)
    if selected is not None and selected.id == category_id:
        selected = None
    return remaining, selected


def _refresh_selection(
    selected: Category | None,
    categories: tuple[Category, ...],
) -> Category | None:
    if selected is None:
        return None
    return next((category for category in categories if category.id == selected.id), None)


def _merge_record(existing: Category | None, record: Mapping[str, Any]) -> Category:
    # Partial UPDATE payloads keep the cached values for columns they omit.
    if existing is None:
        return Category.from_row(record)
    merged: dict[str, Any] = {
        "id": existing.id,
        "user_id": existing.user_id,
        "name": existing.name,
        "description": existing.description,
        "keywords": list(existing.keywords),
        "tags": list(existing.tags),
        "color": existing.color,
        "icon": existing.icon,
        "is_active": existing.is_active,
        "video_count": existing.video_count,
        "created_at": existing.created_at,
        "updated_at": existing.updated_at,
    }
    merged.update(record)
    return Category.from_row(merged)
