from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

NotificationVariant = Literal["default", "destructive"]

LOGGER = logging.getLogger("learning_tube.notifications")


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: NotificationVariant = "default"


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class LogNotificationSink:
    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.variant == "destructive" else logging.INFO
        LOGGER.log(
            level,
            "notification title=%s description=%s",
            notification.title,
            notification.description,
        )


class RecentNotificationsSink:
    """Keeps the latest notifications so a UI can poll them."""

    def __init__(self, *, max_items: int = 20, forward_to: NotificationSink | None = None) -> None:
        self._max_items = max(1, max_items)
        self._forward_to = forward_to
        self._items: list[Notification] = []

    @property
    def items(self) -> tuple[Notification, ...]:
        return tuple(self._items)

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)
        del self._items[: -self._max_items]
        if self._forward_to is not None:
            self._forward_to.notify(notification)

    def drain(self) -> list[Notification]:
        drained = list(self._items)
        self._items.clear()
        return drained
