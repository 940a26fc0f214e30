from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import cast

from learning_tube.repositories.database import Database

# Category-independent analysis rows use this sentinel category id.
GLOBAL_CATEGORY_ID = "*"


@dataclass(frozen=True)
class CachedAnalysis:
    video_id: str
    category_id: str
    relevance_score: int
    key_points: tuple[str, ...]
    model: str | None
    hits: int
    cached_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AnalysisCacheStats:
    entries: int
    expired_entries: int
    total_hits: int
    oldest_cached_at: datetime | None


class AnalysisCacheRepository:
    def __init__(self, db: Database, *, ttl_seconds: int = 7 * 86_400) -> None:
        self._db = db
        self._ttl_seconds = max(1, ttl_seconds)

    def get(self, *, video_id: str, category_id: str | None = None) -> CachedAnalysis | None:
        return self.get_many([video_id], category_id=category_id).get(video_id)

    def get_many(
        self,
        video_ids: Sequence[str],
        *,
        category_id: str | None = None,
    ) -> dict[str, CachedAnalysis]:
        """Live entries for `video_ids` under one connection; each returned entry counts a hit."""
        unique_ids = list(dict.fromkeys(video_ids))
        if not unique_ids:
            return {}
        resolved_category_id = category_id or GLOBAL_CATEGORY_ID
        placeholders = ", ".join("?" for _ in unique_ids)
        now = datetime.now(UTC)
        found: dict[str, CachedAnalysis] = {}
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    video_id,
                    category_id,
                    relevance_score,
                    key_points_json,
                    model,
                    hits,
                    cached_at,
                    expires_at
                FROM analysis_cache
                WHERE category_id = ? AND video_id IN ({placeholders})
                """,
                (resolved_category_id, *unique_ids),
            ).fetchall()
            for row in rows:
                expires_at = _parse_timestamp(row["expires_at"])
                cached_at = _parse_timestamp(row["cached_at"])
                if expires_at is None or cached_at is None or expires_at <= now:
                    continue
                video_id = str(row["video_id"])
                found[video_id] = CachedAnalysis(
                    video_id=video_id,
                    category_id=str(row["category_id"]),
                    relevance_score=_clamp_score(row["relevance_score"]),
                    key_points=_decode_key_points(row["key_points_json"]),
                    model=row["model"] if isinstance(row["model"], str) else None,
                    hits=int(row["hits"]) + 1,
                    cached_at=cached_at,
                    expires_at=expires_at,
                )
            if found:
                conn.executemany(
                    """
                    UPDATE analysis_cache
                    SET hits = hits + 1
                    WHERE video_id = ? AND category_id = ?
                    """,
                    [(video_id, resolved_category_id) for video_id in found],
                )
        return found

    def put(
        self,
        *,
        video_id: str,
        relevance_score: int,
        key_points: tuple[str, ...] = (),
        category_id: str | None = None,
        model: str | None = None,
        ttl_seconds: int | None = None,
    ) -> CachedAnalysis:
        now = datetime.now(UTC)
        ttl = self._ttl_seconds if ttl_seconds is None else max(1, ttl_seconds)
        entry = CachedAnalysis(
            video_id=video_id,
            category_id=category_id or GLOBAL_CATEGORY_ID,
            relevance_score=_clamp_score(relevance_score),
            key_points=tuple(point for point in key_points if point.strip()),
            model=model,
            hits=0,
            cached_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO analysis_cache
                (
                    video_id,
                    category_id,
                    relevance_score,
                    key_points_json,
                    model,
                    hits,
                    cached_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(video_id, category_id) DO UPDATE SET
                    relevance_score = excluded.relevance_score,
                    key_points_json = excluded.key_points_json,
                    model = excluded.model,
                    hits = 0,
                    cached_at = excluded.cached_at,
                    expires_at = excluded.expires_at
                """,
                (
                    entry.video_id,
                    entry.category_id,
                    entry.relevance_score,
                    json.dumps(list(entry.key_points)),
                    entry.model,
                    entry.cached_at.isoformat(),
                    entry.expires_at.isoformat(),
                ),
            )
        return entry

    def invalidate(self, *, video_id: str, category_id: str | None = None) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM analysis_cache WHERE video_id = ? AND category_id = ?",
                (video_id, category_id or GLOBAL_CATEGORY_ID),
            )
            return cursor.rowcount > 0

    def invalidate_category(self, category_id: str) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM analysis_cache WHERE category_id = ?",
                (category_id,),
            )
            return cursor.rowcount

    def purge_expired(self) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM analysis_cache WHERE expires_at <= ?",
                (_utc_now_iso(),),
            )
            return cursor.rowcount

    def stats(self) -> AnalysisCacheStats:
        now_iso = _utc_now_iso()
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS entries,
                    SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END) AS expired_entries,
                    COALESCE(SUM(hits), 0) AS total_hits,
                    MIN(cached_at) AS oldest_cached_at
                FROM analysis_cache
                """,
                (now_iso,),
            ).fetchone()

        return AnalysisCacheStats(
            entries=int(row["entries"] or 0),
            expired_entries=int(row["expired_entries"] or 0),
            total_hits=int(row["total_hits"] or 0),
            oldest_cached_at=_parse_timestamp(row["oldest_cached_at"]),
        )


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _clamp_score(raw_value: object) -> int:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        return 0
    return max(0, min(100, int(raw_value)))


def _decode_key_points(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, str):
        return ()
    try:
        parsed = cast(object, json.loads(raw_value))
    except json.JSONDecodeError:
        return ()
    if not isinstance(parsed, list):
        return ()

    key_points: list[str] = []
    for item in cast(list[object], parsed):
        if isinstance(item, str) and item.strip():
            key_points.append(item)
    return tuple(key_points)


def _parse_timestamp(raw_value: object) -> datetime | None:
    if not isinstance(raw_value, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw_value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
