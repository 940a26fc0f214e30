from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, cast

from learning_tube.models.category import Category
from learning_tube.models.video import (
    PLACEHOLDER_THUMBNAIL_URL,
    EngagementMetrics,
    VideoQuality,
    VideoUI,
)
from learning_tube.repositories.analysis_cache_repository import CachedAnalysis

DEFAULT_RELEVANCE_SCORE = 50
DEFAULT_KEY_POINTS: tuple[str, ...] = (
    "Educational content for skill development",
    "Practical examples and demonstrations",
    "Clear explanations suitable for learning",
)
THUMBNAIL_PREFERENCE: tuple[str, ...] = ("maxres", "standard", "high", "medium", "default")
ISO8601_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def transform_video_to_ui(
    raw_video: Mapping[str, Any],
    *,
    category: Category | None = None,
    analysis: CachedAnalysis | None = None,
) -> VideoUI:
    snippet = _as_dict(raw_video.get("snippet"))
    statistics = _as_dict(raw_video.get("statistics"))
    content_details = _as_dict(raw_video.get("contentDetails"))

    video_id = extract_video_id(raw_video) or "unknown"
    thumbnails = _extract_thumbnail_urls(snippet)
    view_count = _coerce_count(statistics.get("viewCount"))
    like_count = _coerce_count(statistics.get("likeCount"))
    comment_count = _coerce_count(statistics.get("commentCount"))
    title = _nonempty_text(snippet.get("title")) or "Untitled Video"
    description = _nonempty_text(snippet.get("description"))
    tags = _string_tuple(snippet.get("tags"))

    if analysis is not None:
        relevance_score = analysis.relevance_score
        key_points = analysis.key_points or _derive_key_points(title, description)
    else:
        relevance_score = (
            score_category_relevance(title=title, description=description, tags=tags, category=category)
            if category is not None
            else score_popularity(view_count, like_count, comment_count)
        )
        key_points = _derive_key_points(title, description)

    return VideoUI(
        id=video_id,
        title=title,
        channel_title=_nonempty_text(snippet.get("channelTitle")) or "Unknown Channel",
        thumbnail_url=_best_thumbnail(thumbnails) or PLACEHOLDER_THUMBNAIL_URL,
        published_at=_nonempty_text(snippet.get("publishedAt")) or datetime.now(UTC).isoformat(),
        view_count=view_count,
        relevance_score=relevance_score,
        key_points=key_points,
        duration=format_duration(content_details.get("duration")),
        description=description,
        channel_id=_nonempty_text(snippet.get("channelId")),
        like_count=like_count,
        comment_count=comment_count,
        tags=tags,
        language=_nonempty_text(snippet.get("defaultLanguage")),
        has_captions=content_details.get("caption") == "true",
        quality=_determine_quality(content_details),
        thumbnails=thumbnails or None,
        engagement=_engagement_metrics(view_count, like_count, comment_count),
        analysis_cached=analysis is not None,
    )


def extract_video_id(raw_video: Mapping[str, Any]) -> str | None:
    raw_id = raw_video.get("id")
    if isinstance(raw_id, str) and raw_id.strip():
        return raw_id
    # search.list wraps the id: {"kind": "youtube#video", "videoId": "..."}
    id_envelope = _as_dict(raw_id)
    video_id = id_envelope.get("videoId")
    if isinstance(video_id, str) and video_id.strip():
        return video_id
    return None


def format_duration(raw_value: object) -> str:
    if not isinstance(raw_value, str):
        return "0:00"
    matched = ISO8601_DURATION_PATTERN.match(raw_value.strip())
    if matched is None:
        return "0:00"

    hours = int(matched.group("days") or 0) * 24 + int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def score_popularity(view_count: int, like_count: int, comment_count: int) -> int:
    if view_count <= 0:
        return DEFAULT_RELEVANCE_SCORE
    engagement_rate = (like_count + comment_count) / view_count
    popularity_score = min(math.log10(view_count) * 10, 50)
    engagement_score = min(engagement_rate * 1000, 50)
    return round(popularity_score + engagement_score)


def score_category_relevance(
    *,
    title: str,
    description: str | None,
    tags: tuple[str, ...],
    category: Category,
) -> int:
    lowered_title = title.lower()
    lowered_description = (description or "").lower()
    terms = [term.lower() for term in (category.name, *category.keywords) if term.strip()]

    score = 0
    if any(term in lowered_title for term in terms):
        score += 40
    if any(term in lowered_description for term in terms):
        score += 30

    category_tags = [tag.lower() for tag in category.tags if tag.strip()]
    matching_tags = [
        tag
        for tag in tags
        if any(tag.lower() in category_tag or category_tag in tag.lower() for category_tag in category_tags)
    ]
    if matching_tags:
        score += min(len(matching_tags) * 10, 30)
    return min(score, 100)


def _derive_key_points(title: str, description: str | None) -> tuple[str, ...]:
    lowered_title = title.lower()
    key_points: list[str] = []
    if "tutorial" in lowered_title:
        key_points.append("Step-by-step tutorial format")
    if "beginner" in lowered_title:
        key_points.append("Suitable for beginners")
    if "advanced" in lowered_title:
        key_points.append("Advanced concepts covered")
    if description is not None and len(description) > 500:
        key_points.append("Comprehensive content with detailed explanation")
    return tuple(key_points) if key_points else DEFAULT_KEY_POINTS


def _engagement_metrics(view_count: int, like_count: int, comment_count: int) -> EngagementMetrics:
    if view_count <= 0:
        return EngagementMetrics(like_to_view_ratio=0.0, comment_to_view_ratio=0.0, engagement_rate=0.0)
    return EngagementMetrics(
        like_to_view_ratio=like_count / view_count * 100,
        comment_to_view_ratio=comment_count / view_count * 100,
        engagement_rate=(like_count + comment_count) / view_count * 100,
    )


def _determine_quality(content_details: dict[str, Any]) -> VideoQuality:
    is_hd = content_details.get("definition") == "hd"
    has_captions = content_details.get("caption") == "true"
    if is_hd and has_captions:
        return "excellent"
    if is_hd:
        return "high"
    return "medium"


def _best_thumbnail(thumbnails: dict[str, str]) -> str | None:
    for quality in THUMBNAIL_PREFERENCE:
        url = thumbnails.get(quality)
        if url:
            return url
    return None


def _extract_thumbnail_urls(snippet: dict[str, Any]) -> dict[str, str]:
    thumbnails = _as_dict(snippet.get("thumbnails"))
    urls: dict[str, str] = {}
    for quality, payload in thumbnails.items():
        url_value = _as_dict(payload).get("url")
        if isinstance(url_value, str) and url_value.strip():
            urls[quality] = url_value
    return urls


def _coerce_count(raw_value: object) -> int:
    if isinstance(raw_value, bool):
        return 0
    if isinstance(raw_value, int):
        return max(0, raw_value)
    if isinstance(raw_value, str):
        try:
            return max(0, int(raw_value.strip()))
        except ValueError:
            return 0
    return 0


def _nonempty_text(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _string_tuple(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, list):
        return ()
    return tuple(item for item in cast(list[Any], raw_value) if isinstance(item, str) and item.strip())


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        return {key: item for key, item in raw_dict.items() if isinstance(key, str)}
    return {}
