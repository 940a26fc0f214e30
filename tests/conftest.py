from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fakes import (
    CaptureNotifications,
    CaptureTelemetrySink,
    FakeAuth,
    FakeBackend,
    FakeSearchProvider,
    make_row,
)
from fastapi.testclient import TestClient

from learning_tube.dependencies import reset_cached_dependencies
from learning_tube.main import create_app
from learning_tube.repositories.analysis_cache_repository import AnalysisCacheRepository
from learning_tube.repositories.database import Database
from learning_tube.session import LearningTubeSession
from learning_tube.telemetry import TelemetryClient


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(
        rows=[
            make_row("cat-2", "Python", keywords=["asyncio", "typing"], tags=["programming"]),
            make_row("cat-1", "Cooking", keywords=["soup", "knife skills"], tags=["food", "recipes"]),
        ]
    )


@pytest.fixture
def provider() -> FakeSearchProvider:
    return FakeSearchProvider()


@pytest.fixture
def notifications() -> CaptureNotifications:
    return CaptureNotifications()


@pytest.fixture
def telemetry_sink() -> CaptureTelemetrySink:
    return CaptureTelemetrySink()


@pytest.fixture
def telemetry(telemetry_sink: CaptureTelemetrySink) -> TelemetryClient:
    return TelemetryClient(enabled=True, sink=telemetry_sink)


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    auth: FakeAuth,
    backend: FakeBackend,
    provider: FakeSearchProvider,
) -> Iterator[TestClient]:
    monkeypatch.setenv("LEARNING_TUBE_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("LEARNING_TUBE_TELEMETRY_SINK", "none")
    monkeypatch.setenv("LEARNING_TUBE_CATEGORY_DEBOUNCE_SECONDS", "0")
    monkeypatch.setenv("LEARNING_TUBE_QUERY_DEBOUNCE_SECONDS", "0")
    reset_cached_dependencies()

    async def _open_fake_session(settings: Any, *, telemetry: TelemetryClient) -> LearningTubeSession:
        database = Database(settings.db_path)
        database.initialize()
        return LearningTubeSession(
            auth=auth,
            backend=backend,
            search_provider=provider,
            analysis_cache=AnalysisCacheRepository(database),
            telemetry=telemetry,
            default_options=settings.default_search_options(),
            category_search_options=settings.category_search_options(),
            category_debounce_seconds=settings.category_debounce_seconds,
            query_debounce_seconds=settings.query_debounce_seconds,
        )

    monkeypatch.setattr("learning_tube.main.open_session", _open_fake_session)

    with TestClient(create_app()) as test_client:
        yield test_client

    reset_cached_dependencies()
