from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from learning_tube.repositories.analysis_cache_repository import AnalysisCacheRepository
from learning_tube.repositories.database import Database


def _cache(tmp_path: Path, **kwargs: int) -> tuple[Database, AnalysisCacheRepository]:
    db = Database(tmp_path / "nested" / "state.db")
    db.initialize()
    return db, AnalysisCacheRepository(db, **kwargs)


def test_database_initialize_creates_parent_directory(tmp_path: Path) -> None:
    db, _ = _cache(tmp_path)

    assert db.path.exists()
    with db.connection() as conn:
        tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert "analysis_cache" in tables


def test_analysis_cache_put_get_counts_hits(tmp_path: Path) -> None:
    _, cache = _cache(tmp_path)
    cache.put(video_id="v1", relevance_score=140, key_points=("One", " ", "Two"), model="gpt")

    first = cache.get(video_id="v1")
    second = cache.get(video_id="v1")

    assert first is not None
    assert first.relevance_score == 100
    assert first.key_points == ("One", "Two")
    assert first.model == "gpt"
    assert first.category_id == "*"
    assert first.hits == 1
    assert second is not None
    assert second.hits == 2


def test_analysis_cache_is_scoped_per_category(tmp_path: Path) -> None:
    _, cache = _cache(tmp_path)
    cache.put(video_id="v1", relevance_score=70, category_id="cat-1")

    assert cache.get(video_id="v1") is None
    assert cache.get(video_id="v1", category_id="cat-2") is None
    cached = cache.get(video_id="v1", category_id="cat-1")
    assert cached is not None
    assert cached.relevance_score == 70


def test_analysis_cache_put_overwrites_and_resets_hits(tmp_path: Path) -> None:
    _, cache = _cache(tmp_path)
    cache.put(video_id="v1", relevance_score=10)
    cache.get(video_id="v1")

    cache.put(video_id="v1", relevance_score=20)

    cached = cache.get(video_id="v1")
    assert cached is not None
    assert cached.relevance_score == 20
    assert cached.hits == 1


def test_analysis_cache_expired_rows_are_misses_and_purged(tmp_path: Path) -> None:
    db, cache = _cache(tmp_path)
    cache.put(video_id="old", relevance_score=10)
    cache.put(video_id="fresh", relevance_score=10)
    with db.connection() as conn:
        conn.execute(
            "UPDATE analysis_cache SET expires_at = ? WHERE video_id = ?",
            ("2020-01-01T00:00:00+00:00", "old"),
        )

    assert cache.get(video_id="old") is None
    assert cache.stats().expired_entries == 1
    assert cache.purge_expired() == 1
    stats = cache.stats()
    assert stats.entries == 1
    assert stats.expired_entries == 0


def test_analysis_cache_invalidation(tmp_path: Path) -> None:
    _, cache = _cache(tmp_path)
    cache.put(video_id="v1", relevance_score=10, category_id="cat-1")
    cache.put(video_id="v2", relevance_score=10, category_id="cat-1")
    cache.put(video_id="v1", relevance_score=10)

    assert cache.invalidate(video_id="v1") is True
    assert cache.invalidate(video_id="v1") is False
    assert cache.invalidate_category("cat-1") == 2
    assert cache.stats().entries == 0


def test_analysis_cache_tolerates_corrupt_key_points(tmp_path: Path) -> None:
    db, cache = _cache(tmp_path)
    cache.put(video_id="v1", relevance_score=55)
    with db.connection() as conn:
        conn.execute("UPDATE analysis_cache SET key_points_json = 'not json'")

    cached = cache.get(video_id="v1")
    assert cached is not None
    assert cached.key_points == ()


def test_analysis_cache_stats_on_empty_table(tmp_path: Path) -> None:
    _, cache = _cache(tmp_path)

    stats = cache.stats()

    assert stats.entries == 0
    assert stats.total_hits == 0
    assert stats.oldest_cached_at is None


def test_database_connection_rolls_back_on_error(tmp_path: Path) -> None:
    db, cache = _cache(tmp_path)

    with pytest.raises(sqlite3.OperationalError), db.connection() as conn:
        conn.execute("INSERT INTO analysis_cache VALUES ('v1', '*', 1, '[]', NULL, 0, 'x', 'y')")
        conn.execute("INSERT INTO missing_table VALUES (1)")

    assert cache.stats().entries == 0


def test_analysis_cache_get_many_reads_live_entries_in_one_pass(tmp_path: Path) -> None:
    db, cache = _cache(tmp_path)
    cache.put(video_id="v1", relevance_score=70, category_id="cat-1")
    cache.put(video_id="v2", relevance_score=40, category_id="cat-1")
    cache.put(video_id="v3", relevance_score=90, category_id="cat-2")
    cache.put(video_id="v4", relevance_score=20, category_id="cat-1")
    with db.connection() as conn:
        conn.execute(
            "UPDATE analysis_cache SET expires_at = ? WHERE video_id = 'v4'",
            ("2000-01-01T00:00:00+00:00",),
        )

    found = cache.get_many(["v1", "v2", "v1", "v3", "v4", "v9"], category_id="cat-1")

    assert sorted(found) == ["v1", "v2"]
    assert found["v1"].relevance_score == 70
    assert found["v1"].hits == 1
    assert cache.get_many([], category_id="cat-1") == {}
    assert cache.stats().total_hits == 2
