from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from learning_tube.models.video import DEFAULT_SEARCH_OPTIONS, SearchOptions

DEFAULT_DATA_DIR = Path(".learning-tube")
# Local state that follows `data_dir` unless configured on its own.
_STATE_LOCATIONS: dict[str, str] = {
    "db_path": "state.db",
    "log_dir": "logs",
}
_FLAG_WORDS: dict[str, bool] = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}
_FLAG_FIELDS = ("realtime_auto_sync", "auto_search", "telemetry_enabled")
_OPTIONAL_TEXT_FIELDS = (
    "supabase_email",
    "supabase_password",
    "youtube_api_key",
    "search_region_code",
    "search_relevance_language",
)


def _state_field(name: str, description: str) -> Any:
    location = _STATE_LOCATIONS[name]
    return Field(
        default=DEFAULT_DATA_DIR / location,
        description=f"{description} Falls back to `$LEARNING_TUBE_DATA_DIR/{location}`.",
    )


def _coerce_flag(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value) if value in (0, 1) else fallback
    if isinstance(value, str):
        return _FLAG_WORDS.get(value.strip().lower(), fallback)
    return fallback


class AppSettings(BaseSettings):
    """
    Runtime configuration, read from `LEARNING_TUBE_*` environment variables
    and an optional `.env` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEARNING_TUBE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Local state.
    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Root runtime directory for the analysis cache and logs.",
    )
    db_path: Path = _state_field("db_path", "SQLite file for the analysis cache.")

    # Hosted backend.
    supabase_url: str = Field(
        default="",
        description="Supabase project URL.",
    )
    supabase_key: str = Field(
        default="",
        description="Supabase anon key; row-level security scopes rows to the signed-in user.",
    )
    supabase_email: str | None = Field(
        default=None,
        description="Account used to sign in at startup. Without it the session starts signed out.",
    )
    supabase_password: str | None = Field(
        default=None,
        description="Password for `supabase_email`.",
    )
    realtime_auto_sync: bool = Field(
        default=True,
        description="Fetch the full category list whenever the realtime channel is opened.",
    )

    # YouTube search.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API v3 key.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for YouTube Data API calls.",
    )
    search_default_max_results: int = Field(
        default=25,
        ge=1,
        le=50,
        description="Results per page when a search does not set `max_results`.",
    )
    search_region_code: str | None = Field(
        default="US",
        description="Region code applied to category searches.",
    )
    search_relevance_language: str | None = Field(
        default="en",
        description="Relevance language applied to category searches.",
    )
    auto_search: bool = Field(
        default=True,
        description="Re-run searches automatically when the selected category or query changes.",
    )
    category_debounce_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Quiet period before a category change re-runs the search.",
    )
    query_debounce_seconds: float = Field(
        default=0.8,
        ge=0.0,
        description="Quiet period before a query change re-runs the search.",
    )
    analysis_cache_ttl_seconds: int = Field(
        default=7 * 86_400,
        ge=1,
        description="Lifetime of cached video relevance analysis.",
    )

    # Logging and telemetry.
    log_dir: Path = _state_field("log_dir", "Directory for log files.")
    log_level: str = Field(
        default="INFO",
        description="Console log level. File logs always capture DEBUG.",
    )
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="`log` emits structured telemetry locally; `none` disables sink output.",
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("LEARNING_TUBE_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("LEARNING_TUBE_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("supabase_url", mode="before")
    @classmethod
    def _normalize_supabase_url(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("LEARNING_TUBE_SUPABASE_URL must be a string.")
        return value.strip().rstrip("/")

    @field_validator("data_dir", *_STATE_LOCATIONS, mode="before")
    @classmethod
    def _expand_user_paths(cls, value: Any) -> Any:
        if isinstance(value, str | Path):
            return Path(value).expanduser()
        return value

    @field_validator(*_FLAG_FIELDS, mode="before")
    @classmethod
    def _parse_flags(cls, value: Any, info: ValidationInfo) -> bool:
        # Unrecognized values fall back to the field default.
        fallback = cls.model_fields[str(info.field_name)].default
        return _coerce_flag(value, bool(fallback))

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _blank_text_to_none(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        return value.strip() or None

    def default_search_options(self) -> SearchOptions:
        return SearchOptions(max_results=self.search_default_max_results).merged_over(
            DEFAULT_SEARCH_OPTIONS
        )

    def category_search_options(self) -> SearchOptions:
        return SearchOptions(
            region_code=self.search_region_code,
            relevance_language=self.search_relevance_language,
        ).merged_over(self.default_search_options())


def load_settings() -> AppSettings:
    """Reads the environment, then anchors unset state paths under `data_dir`."""
    settings = AppSettings()
    data_dir = settings.data_dir.resolve()
    paths: dict[str, Path] = {"data_dir": data_dir}
    for name, location in _STATE_LOCATIONS.items():
        configured: Path = getattr(settings, name)
        if name not in settings.model_fields_set:
            configured = data_dir / location
        paths[name] = configured.resolve()
    return settings.model_copy(update=paths)
