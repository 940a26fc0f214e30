from __future__ import annotations


class LearningTubeError(Exception):
    pass


class ValidationError(LearningTubeError):
    pass


class ProviderError(LearningTubeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class SyncError(LearningTubeError):
    pass


QUOTA_MARKERS: tuple[str, ...] = (
    "quotaexceeded",
    "dailylimitexceeded",
    "ratelimitexceeded",
    "userratelimitexceeded",
    "quota exceeded",
    "rate limit exceeded",
    "too many requests",
)
INVALID_KEY_MARKERS: tuple[str, ...] = (
    "keyinvalid",
    "api key not valid",
    "api_key_invalid",
    "invalid api key",
)
NETWORK_MARKERS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "connection refused",
    "connection reset",
    "name or service not known",
    "temporary failure in name resolution",
)


def describe_provider_error(exc: BaseException, *, fallback: str) -> str:
    """Turn a collaborator failure into a message fit for a notification."""
    raw = str(exc).strip()
    normalized = raw.lower()
    if any(marker in normalized for marker in QUOTA_MARKERS):
        return "YouTube API quota exceeded. Try again later."
    if any(marker in normalized for marker in INVALID_KEY_MARKERS):
        return "YouTube API key is invalid. Check your API key configuration."
    if any(marker in normalized for marker in NETWORK_MARKERS):
        return "Network error while contacting the provider. Check your connection."
    if isinstance(exc, LearningTubeError) and raw:
        return raw
    if raw:
        return _truncate(raw)
    return fallback


def _truncate(message: str, *, max_length: int = 400) -> str:
    if len(message) <= max_length:
        return message
    return f"{message[: max_length - 3]}..."
