from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Literal

SearchOrder = Literal["relevance", "date", "rating", "viewCount", "title"]
VideoDuration = Literal["any", "short", "medium", "long"]
VideoQuality = Literal["low", "medium", "high", "excellent"]

PLACEHOLDER_THUMBNAIL_URL = "/placeholder-thumbnail.jpg"


@dataclass(frozen=True)
class SearchOptions:
    """Search parameters; `None` means "not set" so overrides can be layered."""

    max_results: int | None = None
    type: str | None = None
    order: SearchOrder | None = None
    video_duration: VideoDuration | None = None
    page_token: str | None = None
    region_code: str | None = None
    relevance_language: str | None = None
    safe_search: str | None = None

    def merged_over(self, base: SearchOptions) -> SearchOptions:
        overrides = {
            option.name: getattr(self, option.name)
            for option in fields(self)
            if getattr(self, option.name) is not None
        }
        return replace(base, **overrides)

    def with_page_token(self, page_token: str | None) -> SearchOptions:
        return replace(self, page_token=page_token)

    def to_provider_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "maxResults": self.max_results,
            "type": self.type,
            "order": self.order,
            "videoDuration": self.video_duration,
            "pageToken": self.page_token,
            "regionCode": self.region_code,
            "relevanceLanguage": self.relevance_language,
            "safeSearch": self.safe_search,
        }
        return {key: value for key, value in params.items() if value is not None}

    def to_public_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


DEFAULT_SEARCH_OPTIONS = SearchOptions(
    max_results=25,
    type="video",
    order="relevance",
    video_duration="any",
)


@dataclass(frozen=True)
class SearchPage:
    items: tuple[dict[str, Any], ...]
    total_results: int
    next_page_token: str | None = None
    prev_page_token: str | None = None
    results_per_page: int = 0


@dataclass(frozen=True)
class EngagementMetrics:
    like_to_view_ratio: float
    comment_to_view_ratio: float
    engagement_rate: float


@dataclass(frozen=True)
class VideoUI:
    id: str
    title: str
    channel_title: str
    thumbnail_url: str
    published_at: str
    view_count: int
    relevance_score: int
    key_points: tuple[str, ...]
    duration: str
    description: str | None = None
    channel_id: str | None = None
    like_count: int = 0
    comment_count: int = 0
    tags: tuple[str, ...] = ()
    language: str | None = None
    has_captions: bool = False
    quality: VideoQuality = "medium"
    thumbnails: dict[str, str] | None = None
    engagement: EngagementMetrics | None = None
    analysis_cached: bool = False

    def to_public_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["key_points"] = list(self.key_points)
        payload["tags"] = list(self.tags)
        return payload
