from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from learning_tube.config import AppSettings
from learning_tube.errors import SyncError
from learning_tube.models.category import SyncEvent
from learning_tube.models.video import DEFAULT_SEARCH_OPTIONS, SearchOptions
from learning_tube.repositories.analysis_cache_repository import AnalysisCacheRepository
from learning_tube.repositories.database import Database
from learning_tube.services.category_search import CategorySearchCoordinator
from learning_tube.services.category_store import CategoryStore
from learning_tube.services.category_sync import CategorySyncAdapter
from learning_tube.services.collaborators import AuthProvider, CategoryBackend
from learning_tube.services.notifications import (
    LogNotificationSink,
    Notification,
    RecentNotificationsSink,
)
from learning_tube.services.supabase_backend import (
    SupabaseAuthProvider,
    SupabaseCategoryBackend,
    create_supabase_client,
)
from learning_tube.services.video_search import VideoSearchController
from learning_tube.services.youtube_search_provider import SearchProvider, YouTubeSearchProvider
from learning_tube.telemetry import TelemetryClient

LOGGER = logging.getLogger("learning_tube.session")

CloseHook = Callable[[], Awaitable[None]]


class LearningTubeSession:
    """Wires the category store, realtime sync and search for one signed-in user."""

    def __init__(
        self,
        *,
        auth: AuthProvider,
        backend: CategoryBackend,
        search_provider: SearchProvider,
        notifications: RecentNotificationsSink | None = None,
        analysis_cache: AnalysisCacheRepository | None = None,
        telemetry: TelemetryClient | None = None,
        auto_sync: bool = True,
        auto_search: bool = True,
        default_options: SearchOptions = DEFAULT_SEARCH_OPTIONS,
        category_search_options: SearchOptions | None = None,
        category_debounce_seconds: float = 0.5,
        query_debounce_seconds: float = 0.8,
        close_hooks: tuple[CloseHook, ...] = (),
    ) -> None:
        self.auth = auth
        self.notifications = notifications or RecentNotificationsSink(forward_to=LogNotificationSink())
        self.analysis_cache = analysis_cache
        self.telemetry = telemetry or TelemetryClient.disabled()
        self.store = CategoryStore(backend, auth)
        self.sync = CategorySyncAdapter(
            self.store,
            backend,
            auth,
            auto_sync=auto_sync,
            on_sync_event=self._on_sync_event,
            on_error=self._on_sync_error,
            telemetry=self.telemetry,
        )
        self.search = VideoSearchController(
            search_provider,
            self.store,
            self.notifications,
            default_options=default_options,
            analysis_cache=analysis_cache,
            telemetry=self.telemetry,
        )
        self.category_search = CategorySearchCoordinator(
            self.store,
            self.search,
            auto_search=auto_search,
            search_options=category_search_options,
            category_debounce_seconds=category_debounce_seconds,
            query_debounce_seconds=query_debounce_seconds,
        )
        self._close_hooks = close_hooks
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self.analysis_cache is not None:
            purged = self.analysis_cache.purge_expired()
            if purged:
                LOGGER.info("expired analysis cache entries purged count=%s", purged)
        self.sync.start()
        await self.sync.subscribe()
        user = self.auth.current_user()
        LOGGER.info("session started user_id=%s", user.id if user is not None else None)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.category_search.close()
        await self.search.close()
        await self.sync.close()
        for hook in self._close_hooks:
            try:
                await hook()
            except Exception:
                LOGGER.warning("session close hook failed", exc_info=True)
        LOGGER.info("session stopped")

    def _on_sync_event(self, event: SyncEvent) -> None:
        LOGGER.debug("category change applied type=%s", event.type)

    def _on_sync_error(self, error: SyncError) -> None:
        self.notifications.notify(Notification("Sync error", str(error), variant="destructive"))


async def open_session(settings: AppSettings, *, telemetry: TelemetryClient) -> LearningTubeSession:
    """Connect to Supabase, sign in when credentials are configured and build the session."""
    client = await create_supabase_client(settings.supabase_url, settings.supabase_key)
    auth = SupabaseAuthProvider(client)
    auth.start()
    if settings.supabase_email is not None and settings.supabase_password is not None:
        await auth.sign_in_with_password(settings.supabase_email, settings.supabase_password)
    else:
        await auth.refresh_user()

    database = Database(settings.db_path)
    database.initialize()

    async def _stop_auth() -> None:
        auth.stop()

    return LearningTubeSession(
        auth=auth,
        backend=SupabaseCategoryBackend(client),
        search_provider=YouTubeSearchProvider(
            settings.youtube_api_key,
            http_timeout_seconds=settings.youtube_http_timeout_seconds,
        ),
        analysis_cache=AnalysisCacheRepository(database, ttl_seconds=settings.analysis_cache_ttl_seconds),
        telemetry=telemetry,
        auto_sync=settings.realtime_auto_sync,
        auto_search=settings.auto_search,
        default_options=settings.default_search_options(),
        category_search_options=settings.category_search_options(),
        category_debounce_seconds=settings.category_debounce_seconds,
        query_debounce_seconds=settings.query_debounce_seconds,
        close_hooks=(_stop_auth,),
    )
