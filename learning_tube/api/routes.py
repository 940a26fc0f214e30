from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from learning_tube.dependencies import get_session
from learning_tube.errors import ValidationError
from learning_tube.models.api_contracts import (
    AnalysisOut,
    AnalysisStatsResponse,
    AnalysisUpsertRequest,
    CategoryCreateRequest,
    CategoryListResponse,
    CategoryOut,
    CategorySearchRequest,
    CategorySelectionRequest,
    CategoryUpdateRequest,
    NotificationOut,
    NotificationsResponse,
    QueryPreviewResponse,
    SearchQueryUpdateRequest,
    SearchRequest,
    SearchResponse,
    SyncResponse,
    SyncStatusResponse,
)
from learning_tube.repositories.analysis_cache_repository import AnalysisCacheRepository
from learning_tube.services.category_store import CategoryStore
from learning_tube.session import LearningTubeSession

router = APIRouter()

SessionDep = Annotated[LearningTubeSession, Depends(get_session)]


def _category_list(store: CategoryStore, categories: list[CategoryOut]) -> CategoryListResponse:
    selected = store.selected_category
    return CategoryListResponse(
        categories=categories,
        selected_category_id=selected.id if selected is not None else None,
        active_count=store.active_categories_count(),
        is_loading=store.is_loading,
        error=store.error,
        last_sync_at=store.last_sync_at,
    )


def _require_category(store: CategoryStore, category_id: str) -> None:
    if store.get_category_by_id(category_id) is None:
        raise HTTPException(status_code=404, detail=f"Category {category_id} not found")


def _store_failure(store: CategoryStore) -> HTTPException:
    return HTTPException(status_code=502, detail=store.error or "Category backend request failed")


def _search_response(session: LearningTubeSession) -> SearchResponse:
    return SearchResponse.model_validate(session.search.snapshot().to_public_dict())


def _sync_status(session: LearningTubeSession) -> SyncStatusResponse:
    return SyncStatusResponse.model_validate(session.sync.connection_status().to_public_dict())


def _require_analysis_cache(session: LearningTubeSession) -> AnalysisCacheRepository:
    if session.analysis_cache is None:
        raise HTTPException(status_code=503, detail="Analysis cache is not configured")
    return session.analysis_cache


@router.get(
    "/categories",
    response_model=CategoryListResponse,
    tags=["categories"],
    operation_id="categories_list",
)
async def categories_list(
    session: SessionDep,
    q: Annotated[str, Query(max_length=200)] = "",
    active: bool | None = None,
) -> CategoryListResponse:
    store = session.store
    matching = store.filtered_categories(query=q, active=active)
    return _category_list(store, [CategoryOut.from_category(category) for category in matching])


@router.post(
    "/categories",
    response_model=CategoryOut,
    status_code=201,
    tags=["categories"],
    operation_id="categories_create",
)
async def categories_create(request: CategoryCreateRequest, session: SessionDep) -> CategoryOut:
    created = await session.store.add_category(request.to_draft())
    if created is None:
        raise _store_failure(session.store)
    return CategoryOut.from_category(created)


@router.patch(
    "/categories/{category_id}",
    response_model=CategoryOut,
    tags=["categories"],
    operation_id="categories_update",
)
async def categories_update(
    category_id: str,
    request: CategoryUpdateRequest,
    session: SessionDep,
) -> CategoryOut:
    _require_category(session.store, category_id)
    updated = await session.store.update_category(category_id, request.to_patch())
    if updated is None:
        raise _store_failure(session.store)
    return CategoryOut.from_category(updated)


@router.delete(
    "/categories/{category_id}",
    status_code=204,
    tags=["categories"],
    operation_id="categories_delete",
)
async def categories_delete(category_id: str, session: SessionDep) -> None:
    _require_category(session.store, category_id)
    if not await session.store.delete_category(category_id):
        raise _store_failure(session.store)
    if session.analysis_cache is not None:
        await asyncio.to_thread(session.analysis_cache.invalidate_category, category_id)


@router.post(
    "/categories/{category_id}/toggle",
    response_model=CategoryOut,
    tags=["categories"],
    operation_id="categories_toggle",
)
async def categories_toggle(category_id: str, session: SessionDep) -> CategoryOut:
    _require_category(session.store, category_id)
    if not await session.store.toggle_category(category_id):
        raise _store_failure(session.store)
    toggled = session.store.get_category_by_id(category_id)
    if toggled is None:
        raise HTTPException(status_code=404, detail=f"Category {category_id} not found")
    return CategoryOut.from_category(toggled)


@router.post(
    "/categories/selection",
    response_model=CategoryListResponse,
    tags=["categories"],
    operation_id="categories_select",
)
async def categories_select(request: CategorySelectionRequest, session: SessionDep) -> CategoryListResponse:
    store = session.store
    try:
        store.select_category(request.category_id)
    except ValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _category_list(store, [CategoryOut.from_category(category) for category in store.categories])


@router.post(
    "/categories/sync",
    response_model=SyncResponse,
    tags=["categories"],
    operation_id="categories_force_sync",
)
async def categories_force_sync(session: SessionDep) -> SyncResponse:
    ok = await session.sync.force_sync()
    return SyncResponse(
        ok=ok,
        categories=len(session.store.categories),
        error=session.store.error,
        status=_sync_status(session),
    )


@router.get(
    "/categories/sync",
    response_model=SyncStatusResponse,
    tags=["categories"],
    operation_id="categories_sync_status",
)
async def categories_sync_status(session: SessionDep) -> SyncStatusResponse:
    return _sync_status(session)


@router.get(
    "/search",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_state",
)
async def search_state(session: SessionDep) -> SearchResponse:
    return _search_response(session)


@router.post(
    "/search",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_videos",
)
async def search_videos(request: SearchRequest, session: SessionDep) -> SearchResponse:
    options = request.options.to_options() if request.options is not None else None
    if request.use_category and options is None:
        await session.category_search.search_with_current_category(request.query)
    else:
        await session.search.search_videos(request.query, options)
    return _search_response(session)


@router.post(
    "/search/category",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_by_category",
)
async def search_by_category(request: CategorySearchRequest, session: SessionDep) -> SearchResponse:
    _require_category(session.store, request.category_id)
    await session.category_search.search_by_category(request.category_id, request.query)
    return _search_response(session)


@router.put(
    "/search/query",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_set_query",
)
async def search_set_query(request: SearchQueryUpdateRequest, session: SessionDep) -> SearchResponse:
    session.category_search.set_search_query(request.query)
    return _search_response(session)


@router.post(
    "/search/next",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_next_page",
)
async def search_next_page(session: SessionDep) -> SearchResponse:
    await session.search.load_next_page()
    return _search_response(session)


@router.post(
    "/search/prev",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_prev_page",
)
async def search_prev_page(session: SessionDep) -> SearchResponse:
    await session.search.load_prev_page()
    return _search_response(session)


@router.post(
    "/search/refetch",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_refetch",
)
async def search_refetch(session: SessionDep) -> SearchResponse:
    await session.search.refetch_current_search()
    return _search_response(session)


@router.delete(
    "/search",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_clear",
)
async def search_clear(session: SessionDep) -> SearchResponse:
    session.search.clear_results()
    return _search_response(session)


@router.get(
    "/search/query-preview",
    response_model=QueryPreviewResponse,
    tags=["search"],
    operation_id="search_query_preview",
)
async def search_query_preview(
    session: SessionDep,
    category_id: str,
    query: str | None = None,
) -> QueryPreviewResponse:
    _require_category(session.store, category_id)
    return QueryPreviewResponse(
        category_id=category_id,
        query=query,
        enhanced_query=session.category_search.generate_category_query_for_id(category_id, query),
    )


@router.get(
    "/analysis/stats",
    response_model=AnalysisStatsResponse,
    tags=["analysis"],
    operation_id="analysis_stats",
)
def analysis_stats(session: SessionDep) -> AnalysisStatsResponse:
    stats = _require_analysis_cache(session).stats()
    return AnalysisStatsResponse(
        entries=stats.entries,
        expired_entries=stats.expired_entries,
        total_hits=stats.total_hits,
        oldest_cached_at=stats.oldest_cached_at,
    )


@router.put(
    "/analysis/{video_id}",
    response_model=AnalysisOut,
    tags=["analysis"],
    operation_id="analysis_put",
)
def analysis_put(video_id: str, request: AnalysisUpsertRequest, session: SessionDep) -> AnalysisOut:
    """Stores relevance analysis computed elsewhere; later searches show it instead of heuristics."""
    cached = _require_analysis_cache(session).put(
        video_id=video_id,
        relevance_score=request.relevance_score,
        key_points=tuple(request.key_points),
        category_id=request.category_id,
        model=request.model,
        ttl_seconds=request.ttl_seconds,
    )
    return AnalysisOut.from_cached(cached)


@router.get(
    "/analysis/{video_id}",
    response_model=AnalysisOut,
    tags=["analysis"],
    operation_id="analysis_get",
)
def analysis_get(video_id: str, session: SessionDep, category_id: str | None = None) -> AnalysisOut:
    cached = _require_analysis_cache(session).get(video_id=video_id, category_id=category_id)
    if cached is None:
        raise HTTPException(status_code=404, detail=f"No cached analysis for {video_id}")
    return AnalysisOut.from_cached(cached)


@router.delete(
    "/analysis/{video_id}",
    status_code=204,
    tags=["analysis"],
    operation_id="analysis_delete",
)
def analysis_delete(video_id: str, session: SessionDep, category_id: str | None = None) -> None:
    if not _require_analysis_cache(session).invalidate(video_id=video_id, category_id=category_id):
        raise HTTPException(status_code=404, detail=f"No cached analysis for {video_id}")

@router.get(
    "/notifications",
    response_model=NotificationsResponse,
    tags=["system"],
    operation_id="notifications_drain",
)
async def notifications_drain(session: SessionDep) -> NotificationsResponse:
    return NotificationsResponse(
        notifications=[
            NotificationOut(
                title=notification.title,
                description=notification.description,
                variant=notification.variant,
            )
            for notification in session.notifications.drain()
        ]
    )
