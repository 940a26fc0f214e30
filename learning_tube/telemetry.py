from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

TelemetryValue = bool | int | float | str | None

# Attribute keys containing any of these are never exported.
_REDACTED_KEY_TOKENS: frozenset[str] = frozenset(
    {
        "api_key",
        "authorization",
        "cookie",
        "email",
        "password",
        "record",
        "secret",
        "session",
        "token",
    }
)
# Realtime channels are named after the user, so both are exported as stable digests.
_PSEUDONYMIZED_KEYS: frozenset[str] = frozenset({"user_id", "channel", "channel_name"})
_MAX_STRING_LENGTH = 160
_DIGEST_LENGTH = 12


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        return


class StructuredLogTelemetrySink:
    """Writes each event to the `learning_tube.telemetry` logger, tagged with its component."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("learning_tube.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info(
            "telemetry",
            telemetry_event=event_name,
            component=event_component(event_name),
            **dict(attributes),
        )


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=_sanitize_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger("learning_tube.telemetry").warning(
        "unknown telemetry sink; telemetry disabled sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def event_component(event_name: str) -> str:
    """`search.request.started` -> `search`; `category.sync.event` -> `category`."""
    component, _, _ = event_name.partition(".")
    return component or "unknown"


def pseudonymize(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]


def _sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _REDACTED_KEY_TOKENS):
            sanitized[key] = "[redacted]"
        elif key in _PSEUDONYMIZED_KEYS and isinstance(raw_value, str) and raw_value:
            sanitized[key] = pseudonymize(raw_value)
        else:
            sanitized[key] = _compact_value(raw_value)
    return sanitized


def _compact_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    if isinstance(value, tuple | list | set | frozenset):
        return len(value)
    return type(value).__name__
