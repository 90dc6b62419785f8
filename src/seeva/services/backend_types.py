"""Protocols shared between the session layer and backend implementations."""

from __future__ import annotations

from typing import AsyncIterator, Protocol, Sequence, runtime_checkable

from ..ui.models.chat_models import Message, ScreenContext, StreamEvent, Thread
from ..ui.models.credential_models import CredentialValidation

STREAM_CHANNEL_NAME = "chat-stream"


class BackendError(RuntimeError):
    """Raised by backend implementations when a request cannot be fulfilled."""


class ThreadNotFoundError(BackendError):
    """Raised when a request references a thread that does not exist."""


class ProviderError(BackendError):
    """Raised when a language-model provider rejects or fails a request."""


class ScreenshotError(BackendError):
    """Raised when the screen could not be captured."""


class ContextDetectionError(BackendError):
    """Raised when the active window could not be identified."""


@runtime_checkable
class StreamSubscription(Protocol):
    """Ordered queue of stream events for one subscriber.

    Consumers iterate the subscription and acknowledge each event with
    :meth:`task_done`; :meth:`join` resolves once every event published so far
    has been acknowledged.
    """

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        ...

    def task_done(self) -> None:
        ...

    async def join(self) -> None:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class Backend(Protocol):
    """Asynchronous collaborator that owns persistence and provider access."""

    async def create_thread(self, name: str) -> Thread:
        ...

    async def list_threads(self) -> Sequence[Thread]:
        ...

    async def get_current_thread_id(self) -> str | None:
        ...

    async def switch_thread(self, thread_id: str) -> None:
        ...

    async def delete_thread(self, thread_id: str) -> None:
        ...

    async def rename_thread(self, thread_id: str, name: str) -> Thread:
        ...

    async def send_message(
        self,
        thread_id: str,
        content: str,
        attachments: Sequence[str],
        provider: str,
        credential: str,
        model: str,
        token_budget: int,
        enable_context_augmentation: bool,
        *,
        context: ScreenContext | None = None,
    ) -> Message:
        ...

    async def get_messages(self, thread_id: str) -> Sequence[Message]:
        ...

    async def delete_message(self, message_id: str) -> None:
        ...

    async def validate_credential(self, provider: str, key: str) -> CredentialValidation:
        ...

    async def capture_screenshot(self) -> str:
        ...

    def subscribe_stream(self) -> StreamSubscription:
        ...


__all__ = [
    "Backend",
    "BackendError",
    "ContextDetectionError",
    "ProviderError",
    "STREAM_CHANNEL_NAME",
    "ScreenshotError",
    "StreamSubscription",
    "ThreadNotFoundError",
]
