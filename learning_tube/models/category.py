from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal, cast

from learning_tube.errors import ValidationError

DEFAULT_CATEGORY_COLOR = "#3b82f6"
CATEGORIES_TABLE = "categories"

SyncEventType = Literal["INSERT", "UPDATE", "DELETE"]
SYNC_EVENT_TYPES: frozenset[str] = frozenset({"INSERT", "UPDATE", "DELETE"})


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Category:
    id: str
    user_id: str
    name: str
    description: str = ""
    keywords: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    color: str = DEFAULT_CATEGORY_COLOR
    icon: str = ""
    is_active: bool = True
    video_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Category:
        raw_id = row.get("id")
        if raw_id is None or not str(raw_id).strip():
            raise ValidationError("Category row is missing an id")
        return cls(
            id=str(raw_id),
            user_id=str(row.get("user_id") or ""),
            name=str(row.get("name") or ""),
            description=_text_or_empty(row.get("description")),
            keywords=_string_tuple(row.get("keywords")),
            tags=_string_tuple(row.get("tags")),
            color=_text_or_empty(row.get("color")) or DEFAULT_CATEGORY_COLOR,
            icon=_text_or_empty(row.get("icon")),
            is_active=_coerce_bool(row.get("is_active"), default=True),
            video_count=max(0, _coerce_int(row.get("video_count"))),
            created_at=_text_or_none(row.get("created_at")),
            updated_at=_text_or_none(row.get("updated_at")),
        )

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "keywords": list(self.keywords),
            "tags": list(self.tags),
            "color": self.color,
            "icon": self.icon,
            "is_active": self.is_active,
            "video_count": self.video_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class CategoryDraft:
    name: str
    description: str = ""
    keywords: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    color: str = DEFAULT_CATEGORY_COLOR
    icon: str = ""
    is_active: bool = True

    def to_row(self, *, user_id: str) -> dict[str, Any]:
        name = self.name.strip()
        if not name:
            raise ValidationError("Category name is required")
        return {
            "user_id": user_id,
            "name": name,
            "description": self.description.strip() or None,
            "keywords": _clean_terms(self.keywords),
            "tags": _clean_terms(self.tags),
            "color": self.color or DEFAULT_CATEGORY_COLOR,
            "icon": self.icon or None,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class CategoryPatch:
    name: str | None = None
    description: str | None = None
    keywords: tuple[str, ...] | None = None
    tags: tuple[str, ...] | None = None
    color: str | None = None
    icon: str | None = None
    is_active: bool | None = None

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        if self.name is not None:
            name = self.name.strip()
            if not name:
                raise ValidationError("Category name cannot be empty")
            row["name"] = name
        if self.description is not None:
            row["description"] = self.description.strip() or None
        if self.keywords is not None:
            row["keywords"] = _clean_terms(self.keywords)
        if self.tags is not None:
            row["tags"] = _clean_terms(self.tags)
        if self.color is not None:
            row["color"] = self.color or DEFAULT_CATEGORY_COLOR
        if self.icon is not None:
            row["icon"] = self.icon or None
        if self.is_active is not None:
            row["is_active"] = self.is_active
        return row


@dataclass(frozen=True)
class SyncEvent:
    type: SyncEventType
    table: str
    event_timestamp: str
    old: Mapping[str, Any] | None = None
    new: Mapping[str, Any] | None = None

    @property
    def record(self) -> Mapping[str, Any] | None:
        # DELETE payloads only carry the old row.
        if self.type == "DELETE":
            return self.old
        return self.new


@dataclass(frozen=True)
class CategoryFilter:
    query: str = ""
    active: bool | None = None

    def matches(self, category: Category) -> bool:
        if self.active is not None and category.is_active != self.active:
            return False
        needle = self.query.strip().lower()
        if not needle:
            return True
        if needle in category.name.lower() or needle in category.description.lower():
            return True
        if any(needle in keyword.lower() for keyword in category.keywords):
            return True
        return any(needle in tag.lower() for tag in category.tags)


def parse_sync_event_type(raw_value: object) -> SyncEventType | None:
    if not isinstance(raw_value, str):
        return None
    normalized = raw_value.strip().upper()
    if normalized not in SYNC_EVENT_TYPES:
        return None
    return cast(SyncEventType, normalized)


def _clean_terms(values: tuple[str, ...]) -> list[str]:
    cleaned: list[str] = []
    for value in values:
        stripped = value.strip()
        if stripped and stripped not in cleaned:
            cleaned.append(stripped)
    return cleaned


def _string_tuple(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, list | tuple):
        return ()
    values: list[str] = []
    for item in cast(list[Any], list(raw_value)):
        if isinstance(item, str) and item.strip():
            values.append(item)
    return tuple(values)


def _text_or_empty(raw_value: object) -> str:
    if isinstance(raw_value, str):
        return raw_value
    return ""


def _text_or_none(raw_value: object) -> str | None:
    if raw_value is None:
        return None
    text = str(raw_value).strip()
    return text or None


def _coerce_bool(raw_value: object, *, default: bool) -> bool:
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, str):
        normalized = raw_value.strip().lower()
        if normalized in {"1", "true", "t", "yes", "on"}:
            return True
        if normalized in {"0", "false", "f", "no", "off"}:
            return False
    return default


def _coerce_int(raw_value: object) -> int:
    if isinstance(raw_value, bool):
        return int(raw_value)
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, str):
        try:
            return int(raw_value.strip())
        except ValueError:
            return 0
    return 0
