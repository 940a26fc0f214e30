from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException, Request

from learning_tube.config import AppSettings, load_settings
from learning_tube.session import LearningTubeSession
from learning_tube.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def get_session(request: Request) -> LearningTubeSession:
    # Built asynchronously in the app lifespan, so it lives on app.state instead of a cache.
    session = getattr(request.app.state, "session", None)
    if not isinstance(session, LearningTubeSession):
        raise HTTPException(status_code=503, detail="Session is not available")
    return session


def reset_cached_dependencies() -> None:
    get_telemetry.cache_clear()
    get_settings.cache_clear()
