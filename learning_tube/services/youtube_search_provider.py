from __future__ import annotations

import asyncio
import logging
from importlib import import_module
from typing import Any, Protocol, cast

from learning_tube.errors import ProviderError
from learning_tube.models.video import SearchOptions, SearchPage
from learning_tube.services.video_transformers import extract_video_id

LOGGER = logging.getLogger("learning_tube.youtube")

SEARCH_LIST_UNITS = 100
VIDEOS_LIST_UNITS = 1
MAX_RESULTS_PER_PAGE = 50
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 503})


class SearchProvider(Protocol):
    async def search(self, query: str, options: SearchOptions) -> SearchPage:
        ...


class YouTubeSearchProvider:
    def __init__(
        self,
        api_key: str | None,
        *,
        client: Any | None = None,
        enrich_details: bool = True,
        http_timeout_seconds: float = 10.0,
    ) -> None:
        self._api_key = api_key.strip() if isinstance(api_key, str) and api_key.strip() else None
        self._client = client
        self._enrich_details = enrich_details
        self._http_timeout_seconds = max(1.0, http_timeout_seconds)

    @property
    def configured(self) -> bool:
        return self._client is not None or self._api_key is not None

    async def search(self, query: str, options: SearchOptions) -> SearchPage:
        return await asyncio.to_thread(self._search_blocking, query, options)

    def _search_blocking(self, query: str, options: SearchOptions) -> SearchPage:
        client = self._get_client()
        params = options.to_provider_params()
        max_results = params.get("maxResults")
        if isinstance(max_results, int):
            params["maxResults"] = max(1, min(MAX_RESULTS_PER_PAGE, max_results))

        try:
            response = cast(
                dict[str, Any],
                client.search().list(part="snippet", q=query, **params).execute(),
            )
        except Exception as exc:
            raise _to_provider_error(exc) from exc

        items = [_as_dict(item) for item in _as_list(response.get("items"))]
        estimated_api_units = SEARCH_LIST_UNITS
        if self._enrich_details and items:
            items = self._merge_video_details(client, items)
            estimated_api_units += VIDEOS_LIST_UNITS

        page_info = _as_dict(response.get("pageInfo"))
        page = SearchPage(
            items=tuple(items),
            total_results=_coerce_int(page_info.get("totalResults")),
            next_page_token=_coerce_token(response.get("nextPageToken")),
            prev_page_token=_coerce_token(response.get("prevPageToken")),
            results_per_page=_coerce_int(page_info.get("resultsPerPage")),
        )
        LOGGER.info(
            "youtube search completed items=%s total_results=%s has_next=%s estimated_api_units=%s",
            len(page.items),
            page.total_results,
            page.next_page_token is not None,
            estimated_api_units,
        )
        return page

    def _merge_video_details(
        self,
        client: Any,
        items: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        video_ids = [video_id for item in items if (video_id := extract_video_id(item))]
        if not video_ids:
            return items

        try:
            response = cast(
                dict[str, Any],
                client.videos()
                .list(
                    part="snippet,contentDetails,statistics",
                    id=",".join(video_ids),
                    maxResults=MAX_RESULTS_PER_PAGE,
                )
                .execute(),
            )
        except Exception:
            # Search results alone still render; counts and durations stay empty.
            LOGGER.warning("youtube videos.list enrichment failed", exc_info=True)
            return items

        details_by_id: dict[str, dict[str, Any]] = {}
        for raw_detail in _as_list(response.get("items")):
            detail = _as_dict(raw_detail)
            detail_id = extract_video_id(detail)
            if detail_id is not None:
                details_by_id[detail_id] = detail

        merged: list[dict[str, Any]] = []
        for item in items:
            item_id = extract_video_id(item)
            detail = details_by_id.get(item_id) if item_id is not None else None
            merged.append(detail if detail is not None else item)
        return merged

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if self._api_key is None:
            raise ProviderError(
                "No YouTube API key available. Please configure your API key in settings.",
                status_code=401,
            )
        self._client = _build_youtube_client(self._api_key, timeout_seconds=self._http_timeout_seconds)
        return self._client


def _build_youtube_client(api_key: str, *, timeout_seconds: float) -> Any:
    try:
        discovery_module = import_module("googleapiclient.discovery")
        httplib2_module = import_module("httplib2")
    except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
        raise ProviderError(
            "YouTube search requires the google-api-python-client dependency"
        ) from exc

    build_fn: Any = discovery_module.build
    http = httplib2_module.Http(timeout=timeout_seconds)
    return build_fn("youtube", "v3", developerKey=api_key, http=http, cache_discovery=False)


def _to_provider_error(exc: Exception) -> ProviderError:
    status_code = _extract_status_code(exc)
    message = _extract_error_reason(exc)
    return ProviderError(
        message,
        status_code=status_code,
        retryable=status_code in RETRYABLE_STATUS_CODES if status_code is not None else False,
    )


def _extract_status_code(exc: Exception) -> int | None:
    response = getattr(exc, "resp", None)
    status = getattr(response, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(status, str) and status.isdigit():
        return int(status)
    return None


def _extract_error_reason(exc: Exception) -> str:
    reason = getattr(exc, "reason", None)
    if isinstance(reason, str) and reason.strip():
        return reason.strip()
    raw = str(exc).strip()
    return raw or exc.__class__.__name__


def _coerce_token(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _coerce_int(raw_value: object) -> int:
    if isinstance(raw_value, bool):
        return 0
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, str):
        try:
            return int(raw_value)
        except ValueError:
            return 0
    return 0


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        return {key: item for key, item in raw_dict.items() if isinstance(key, str)}
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(cast(list[Any], value))
    return []
