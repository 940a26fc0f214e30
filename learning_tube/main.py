from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from learning_tube.api.routes import router
from learning_tube.dependencies import get_settings, get_telemetry
from learning_tube.errors import LearningTubeError
from learning_tube.logging_config import configure_application_logging
from learning_tube.session import LearningTubeSession, open_session
from learning_tube.telemetry import pseudonymize

LOGGER = logging.getLogger("learning_tube.app")

REQUEST_ID_HEADER = "X-Request-ID"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    try:
        session = await open_session(settings, telemetry=get_telemetry())
    except LearningTubeError as exc:
        LOGGER.error("session could not be opened error=%s", exc)
        raise
    app.state.session = session
    await session.start()
    try:
        yield
    finally:
        await session.stop()
        app.state.session = None


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER)
    if isinstance(incoming, str) and incoming.strip():
        return incoming.strip()
    return str(uuid4())


def _session_user_digest(request: Request) -> str | None:
    session = getattr(request.app.state, "session", None)
    if not isinstance(session, LearningTubeSession):
        return None
    user = session.auth.current_user()
    return pseudonymize(user.id) if user is not None else None


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Binds request id and (pseudonymized) user into log context and reports timings."""
    telemetry = get_telemetry()
    request_id = _request_id(request)
    user_digest = _session_user_digest(request)
    context_tokens = bind_contextvars(
        http_request_id=request_id,
        http_method=request.method,
        http_path=request.url.path,
        user=user_digest,
    )
    started_at = perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        telemetry.emit(
            "http.request.error",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            user=user_digest,
            duration_ms=int((perf_counter() - started_at) * 1000),
            error_type=type(exc).__name__,
        )
        raise
    else:
        response.headers[REQUEST_ID_HEADER] = request_id
        telemetry.emit(
            "http.request.finish",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            user=user_digest,
            duration_ms=int((perf_counter() - started_at) * 1000),
            status_code=response.status_code,
        )
        return response
    finally:
        reset_contextvars(**context_tokens)


def create_app() -> FastAPI:
    app = FastAPI(title="Learning Tube API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_context_middleware)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
