from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

LOGGER = logging.getLogger("learning_tube.debounce")

DebouncedAction = Callable[[], Awaitable[Any]]


class Debouncer:
    """
    Runs the most recently triggered action once the window has been quiet.

    Re-triggering while the window is open restarts it and drops the earlier
    action. Once an action has started it runs to completion; superseding it
    is up to the action itself.
    """

    def __init__(self, delay_seconds: float, *, name: str = "debounce") -> None:
        self._delay_seconds = max(0.0, delay_seconds)
        self._name = name
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def delay_seconds(self) -> float:
        return self._delay_seconds

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self, action: DebouncedAction) -> None:
        self.cancel()
        timer = asyncio.get_running_loop().create_task(self._run_after_delay(action))
        self._timer = timer
        self._running.add(timer)
        timer.add_done_callback(self._running.discard)

    def cancel(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()

    async def close(self) -> None:
        self.cancel()
        tasks = list(self._running)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_after_delay(self, action: DebouncedAction) -> None:
        await asyncio.sleep(self._delay_seconds)
        # Past this point a new trigger no longer cancels the running action.
        self._timer = None
        try:
            await action()
        except Exception:
            LOGGER.exception("debounced action failed debouncer=%s", self._name)
