"""Service layer helpers (backend protocol, settings, persistence, providers)."""

from .backend_types import (
    Backend,
    BackendError,
    ProviderError,
    STREAM_CHANNEL_NAME,
    ScreenshotError,
    StreamSubscription,
    ThreadNotFoundError,
)

__all__ = [
    "Backend",
    "BackendError",
    "ProviderError",
    "STREAM_CHANNEL_NAME",
    "ScreenshotError",
    "StreamSubscription",
    "ThreadNotFoundError",
]
