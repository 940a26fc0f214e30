from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fakes import make_category, make_video

from learning_tube.models.video import PLACEHOLDER_THUMBNAIL_URL
from learning_tube.repositories.analysis_cache_repository import CachedAnalysis
from learning_tube.services.video_transformers import (
    DEFAULT_KEY_POINTS,
    extract_video_id,
    format_duration,
    score_category_relevance,
    score_popularity,
    transform_video_to_ui,
)


def _detailed_video() -> dict[str, object]:
    return {
        "kind": "youtube#video",
        "id": "abc123",
        "snippet": {
            "title": "Beginner soup tutorial",
            "description": "A cooking walkthrough",
            "channelTitle": "Kitchen Lab",
            "channelId": "UC1",
            "publishedAt": "2026-01-05T12:00:00Z",
            "tags": ["Food", "travel", ""],
            "defaultLanguage": "en",
            "thumbnails": {
                "default": {"url": "https://i.ytimg.com/default.jpg"},
                "high": {"url": "https://i.ytimg.com/high.jpg"},
            },
        },
        "statistics": {"viewCount": "1000", "likeCount": "50", "commentCount": "10"},
        "contentDetails": {"duration": "PT1H2M3S", "definition": "hd", "caption": "true"},
    }


def test_extract_video_id_handles_both_id_shapes() -> None:
    assert extract_video_id({"id": "abc"}) == "abc"
    assert extract_video_id(make_video("xyz")) == "xyz"
    assert extract_video_id({"id": {"kind": "youtube#channel", "channelId": "UC1"}}) is None
    assert extract_video_id({}) is None


def test_format_duration() -> None:
    assert format_duration("PT1H2M3S") == "1:02:03"
    assert format_duration("PT4M5S") == "4:05"
    assert format_duration("PT45S") == "0:45"
    assert format_duration("P1DT1M") == "24:01:00"
    assert format_duration("garbage") == "0:00"
    assert format_duration(None) == "0:00"


def test_score_popularity() -> None:
    assert score_popularity(0, 10, 10) == 50
    assert score_popularity(1000, 50, 10) == 80
    assert score_popularity(1000, 0, 0) == 30


def test_score_category_relevance_counts_title_description_and_tags() -> None:
    category = make_category(name="Cooking", keywords=["soup"], tags=["food"])

    assert (
        score_category_relevance(
            title="Easy soup",
            description="A cooking video",
            tags=("Food", "travel"),
            category=category,
        )
        == 80
    )
    assert score_category_relevance(title="Chess", description=None, tags=(), category=category) == 0


def test_transform_video_to_ui_maps_detailed_video() -> None:
    video = transform_video_to_ui(_detailed_video())

    assert video.id == "abc123"
    assert video.title == "Beginner soup tutorial"
    assert video.channel_title == "Kitchen Lab"
    assert video.thumbnail_url == "https://i.ytimg.com/high.jpg"
    assert video.view_count == 1000
    assert video.duration == "1:02:03"
    assert video.tags == ("Food", "travel")
    assert video.quality == "excellent"
    assert video.has_captions is True
    assert video.relevance_score == 80
    assert video.key_points == ("Step-by-step tutorial format", "Suitable for beginners")
    assert video.engagement is not None
    assert video.engagement.engagement_rate == pytest.approx(6.0)
    assert video.analysis_cached is False


def test_transform_video_to_ui_scores_against_category() -> None:
    category = make_category(name="Cooking", keywords=["soup"], tags=["food"])

    video = transform_video_to_ui(_detailed_video(), category=category)

    assert video.relevance_score == 80


def test_transform_video_to_ui_fills_defaults_for_sparse_search_result() -> None:
    video = transform_video_to_ui({"id": {"kind": "youtube#video", "videoId": "v1"}})

    assert video.id == "v1"
    assert video.title == "Untitled Video"
    assert video.channel_title == "Unknown Channel"
    assert video.thumbnail_url == PLACEHOLDER_THUMBNAIL_URL
    assert video.duration == "0:00"
    assert video.view_count == 0
    assert video.relevance_score == 50
    assert video.key_points == DEFAULT_KEY_POINTS
    assert video.quality == "medium"
    assert video.thumbnails is None


def test_transform_video_to_ui_prefers_cached_analysis() -> None:
    analysis = CachedAnalysis(
        video_id="abc123",
        category_id="*",
        relevance_score=12,
        key_points=(),
        model=None,
        hits=1,
        cached_at=datetime(2026, 1, 1, tzinfo=UTC),
        expires_at=datetime(2026, 1, 8, tzinfo=UTC),
    )

    video = transform_video_to_ui(_detailed_video(), analysis=analysis)

    assert video.relevance_score == 12
    assert video.key_points == ("Step-by-step tutorial format", "Suitable for beginners")
    assert video.analysis_cached is True
