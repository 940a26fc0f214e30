from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from learning_tube.models.category import DEFAULT_CATEGORY_COLOR, Category, CategoryDraft, CategoryPatch
from learning_tube.models.video import SearchOptions, SearchOrder, VideoDuration
from learning_tube.repositories.analysis_cache_repository import CachedAnalysis


def _default_terms() -> list[str]:
    return []


def _strip_required_name(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError("Category name must not be blank.")
        return stripped
    return value


class CategoryOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    user_id: str
    name: str
    description: str
    keywords: list[str]
    tags: list[str]
    color: str
    icon: str
    is_active: bool
    video_count: int
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_category(cls, category: Category) -> CategoryOut:
        return cls.model_validate(category.to_public_dict())


class CategoryListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    categories: list[CategoryOut]
    selected_category_id: str | None = None
    active_count: int
    is_loading: bool
    error: str | None = None
    last_sync_at: str | None = None


class CategoryCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    keywords: list[str] = Field(default_factory=_default_terms)
    tags: list[str] = Field(default_factory=_default_terms)
    color: str = DEFAULT_CATEGORY_COLOR
    icon: str = ""
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, value: Any) -> Any:
        return _strip_required_name(value)

    def to_draft(self) -> CategoryDraft:
        return CategoryDraft(
            name=self.name,
            description=self.description,
            keywords=tuple(self.keywords),
            tags=tuple(self.tags),
            color=self.color,
            icon=self.icon,
            is_active=self.is_active,
        )


class CategoryUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    keywords: list[str] | None = None
    tags: list[str] | None = None
    color: str | None = None
    icon: str | None = None
    is_active: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, value: Any) -> Any:
        return _strip_required_name(value)

    def to_patch(self) -> CategoryPatch:
        return CategoryPatch(
            name=self.name,
            description=self.description,
            keywords=tuple(self.keywords) if self.keywords is not None else None,
            tags=tuple(self.tags) if self.tags is not None else None,
            color=self.color,
            icon=self.icon,
            is_active=self.is_active,
        )


class CategorySelectionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: str | None = None


class SyncStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    connected: bool
    has_channel: bool
    user_id: str | None = None
    channel_name: str | None = None
    last_sync_at: str | None = None


class SyncResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    categories: int
    error: str | None = None
    status: SyncStatusResponse


class SearchOptionsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_results: int | None = Field(default=None, ge=1, le=50)
    type: str | None = None
    order: SearchOrder | None = None
    video_duration: VideoDuration | None = None
    page_token: str | None = None
    region_code: str | None = Field(default=None, min_length=2, max_length=2)
    relevance_language: str | None = None
    safe_search: str | None = None

    def to_options(self) -> SearchOptions:
        return SearchOptions(**self.model_dump())


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str
    options: SearchOptionsModel | None = None
    use_category: bool = Field(
        default=True,
        description="Enhance the query with the selected category, as a category search does.",
    )


class CategorySearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: str
    query: str | None = None


class SearchQueryUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str


class SearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str
    query: str
    videos: list[dict[str, Any]]
    error: str | None = None
    is_loading: bool
    page_number: int
    total_results: int
    has_next_page: bool
    has_prev_page: bool
    options: dict[str, Any] | None = None


class QueryPreviewResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: str
    query: str | None = None
    enhanced_query: str


class NotificationOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str
    variant: str


class NotificationsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notifications: list[NotificationOut]


class AnalysisUpsertRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: str | None = Field(
        default=None,
        description="Category the analysis was made for; omitted means it applies to any category.",
    )
    relevance_score: int = Field(ge=0, le=100)
    key_points: list[str] = Field(default_factory=_default_terms, max_length=20)
    model: str | None = None
    ttl_seconds: int | None = Field(default=None, ge=1)


class AnalysisOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    category_id: str
    relevance_score: int
    key_points: list[str]
    model: str | None = None
    hits: int
    cached_at: datetime
    expires_at: datetime

    @classmethod
    def from_cached(cls, cached: CachedAnalysis) -> AnalysisOut:
        return cls(
            video_id=cached.video_id,
            category_id=cached.category_id,
            relevance_score=cached.relevance_score,
            key_points=list(cached.key_points),
            model=cached.model,
            hits=cached.hits,
            cached_at=cached.cached_at,
            expires_at=cached.expires_at,
        )


class AnalysisStatsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entries: int
    expired_entries: int
    total_hits: int
    oldest_cached_at: datetime | None = None
