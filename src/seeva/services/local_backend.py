"""In-process backend: SQLite persistence, provider streaming and screen capture."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Sequence

from ..ui.models.chat_models import (
    ContentDelta,
    Message,
    MessageStop,
    ScreenContext,
    StreamErrorEvent,
    Thread,
    TokenUsage,
    now_ms,
)
from ..ui.models.credential_models import CredentialValidation
from .backend_types import BackendError, ProviderError, ThreadNotFoundError
from .database import ThreadDatabase
from .provider_catalog import provider_info
from .providers import ProviderClient, ProviderClientSettings, build_chat_messages
from .screenshot import ScreenGrabber
from .settings import DEFAULT_SYSTEM_PROMPT, Settings
from .stream_channel import ChannelSubscription, StreamChannel

__all__ = ["LocalBackend", "DEFAULT_THREAD_NAME"]

LOGGER = logging.getLogger(__name__)
DEFAULT_THREAD_NAME = "New Conversation"

ClientFactory = Callable[[ProviderClientSettings], ProviderClient]


class LocalBackend:
    """Backend implementation that runs entirely inside the application process.

    Stream events for a reply are published on :attr:`channel` (named
    ``chat-stream``) while :meth:`send_message` is awaiting the provider; the
    coroutine itself resolves with the stored assistant message.
    """

    def __init__(
        self,
        database: ThreadDatabase,
        *,
        settings: Settings | None = None,
        channel: StreamChannel | None = None,
        grabber: ScreenGrabber | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._db = database
        self._settings = settings or Settings()
        self._channel = channel or StreamChannel()
        self._grabber = grabber or ScreenGrabber()
        self._client_factory = client_factory or ProviderClient
        self._last_timestamp = 0

    @property
    def channel(self) -> StreamChannel:
        return self._channel

    def subscribe_stream(self) -> ChannelSubscription:
        return self._channel.subscribe()

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def create_thread(self, name: str) -> Thread:
        label = (name or "").strip() or DEFAULT_THREAD_NAME
        timestamp = now_ms()
        thread = Thread(id=str(uuid.uuid4()), name=label, created_at=timestamp, updated_at=timestamp)
        created = await self._run_blocking(self._db.create_thread, thread)
        await self._run_blocking(self._db.set_current_thread_id, created.id)
        LOGGER.info("Created thread %s (%s)", created.id, created.name)
        return created

    async def list_threads(self) -> list[Thread]:
        return await self._run_blocking(self._db.list_threads)

    async def get_current_thread_id(self) -> str | None:
        return await self._run_blocking(self._db.get_current_thread_id)

    async def switch_thread(self, thread_id: str) -> None:
        await self._require_thread(thread_id)
        await self._run_blocking(self._db.set_current_thread_id, thread_id)
        LOGGER.debug("Current thread is now %s", thread_id)

    async def delete_thread(self, thread_id: str) -> None:
        deleted = await self._run_blocking(self._db.delete_thread, thread_id)
        if not deleted:
            raise ThreadNotFoundError(f"Thread not found: {thread_id}")
        current = await self._run_blocking(self._db.get_current_thread_id)
        if current == thread_id:
            await self._run_blocking(self._db.set_current_thread_id, None)
        LOGGER.info("Deleted thread %s", thread_id)

    async def rename_thread(self, thread_id: str, name: str) -> Thread:
        label = (name or "").strip()
        if not label:
            raise BackendError("Thread name cannot be empty")
        renamed = await self._run_blocking(self._db.rename_thread, thread_id, label, now_ms())
        if not renamed:
            raise ThreadNotFoundError(f"Thread not found: {thread_id}")
        return await self._require_thread(thread_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_messages(self, thread_id: str) -> list[Message]:
        await self._require_thread(thread_id)
        return await self._run_blocking(self._db.get_messages, thread_id)

    async def delete_message(self, message_id: str) -> None:
        deleted = await self._run_blocking(self._db.delete_message, message_id)
        if not deleted:
            raise BackendError(f"Message not found: {message_id}")

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
        """Store the user message, stream the reply, then store and return the assistant message."""

        await self._require_thread(thread_id)
        try:
            info = provider_info(provider)
        except KeyError as exc:
            raise BackendError(f"Unsupported provider: {provider}") from exc

        user_message = Message(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            role="user",
            content=content,
            images=tuple(attachments),
            created_at=self._next_timestamp(),
        )
        await self._run_blocking(self._db.create_message, user_message)
        history = await self._run_blocking(self._db.get_messages, thread_id)
        system_prompt = self._system_prompt(context if enable_context_augmentation else None)
        LOGGER.info(
            "Sending message to %s using model %s (thread=%s, %d chars, %d image(s))",
            info.id,
            model,
            thread_id,
            len(content),
            len(attachments),
        )

        provider_settings = self._settings.provider(info.id)
        client = self._client_factory(
            ProviderClientSettings(
                provider=info.id,
                api_key=credential,
                base_url=provider_settings.base_url,
                request_timeout=self._settings.request_timeout,
                max_retries=self._settings.max_retries,
                retry_min_seconds=self._settings.retry_min_seconds,
                retry_max_seconds=self._settings.retry_max_seconds,
                debug_logging=self._settings.debug_logging,
            )
        )
        parts: list[str] = []
        usage: TokenUsage | None = None
        try:
            async for event in client.stream_reply(
                build_chat_messages(history, system_prompt=system_prompt),
                model=model,
                max_tokens=token_budget,
                temperature=provider_settings.temperature,
            ):
                self._channel.publish(event)
                if isinstance(event, ContentDelta):
                    parts.append(event.delta)
                elif isinstance(event, MessageStop):
                    usage = event.usage
        except ProviderError as exc:
            self._channel.publish(StreamErrorEvent(reason=str(exc)))
            raise
        finally:
            await client.aclose()

        metadata: dict[str, Any] = {"model": model, "provider": info.id}
        if usage is not None:
            metadata["tokens"] = {"input": usage.input_tokens, "output": usage.output_tokens}
        assistant = Message(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            role="assistant",
            content="".join(parts),
            created_at=self._next_timestamp(),
            metadata=metadata,
        )
        await self._run_blocking(self._db.create_message, assistant)
        LOGGER.info("Received complete response (%d chars)", len(assistant.content))
        return assistant

    # ------------------------------------------------------------------
    # Credentials & capture
    # ------------------------------------------------------------------

    async def validate_credential(self, provider: str, key: str) -> CredentialValidation:
        try:
            info = provider_info(provider)
        except KeyError as exc:
            raise BackendError(f"Provider {provider} validation not implemented") from exc
        if not (key or "").strip():
            return CredentialValidation(valid=False, error="API key is empty")

        provider_settings = self._settings.provider(info.id)
        client = self._client_factory(
            ProviderClientSettings(
                provider=info.id,
                api_key=key.strip(),
                base_url=provider_settings.base_url,
                request_timeout=self._settings.request_timeout,
                max_retries=self._settings.max_retries,
                retry_min_seconds=self._settings.retry_min_seconds,
                retry_max_seconds=self._settings.retry_max_seconds,
            )
        )
        try:
            valid = await client.validate(model=info.default_model)
        finally:
            await client.aclose()
        if not valid:
            return CredentialValidation(valid=False, error="Invalid API key")
        return CredentialValidation(
            valid=True,
            available_models=info.models,
            default_model=info.models[0] if info.models else info.default_model,
        )

    async def capture_screenshot(self) -> str:
        return await self._grabber.capture()

    async def aclose(self) -> None:
        self._channel.close()
        await self._run_blocking(self._db.close)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _system_prompt(self, context: ScreenContext | None) -> str:
        prompt = self._settings.system_prompt or DEFAULT_SYSTEM_PROMPT
        if context is None:
            return prompt
        return (
            f"{prompt}\n\nThe user is currently working in {context.describe()}. "
            "Use this context when it is relevant to the request."
        )

    def _next_timestamp(self) -> int:
        # Message timestamps strictly increase so timelines sort in send order.
        self._last_timestamp = max(now_ms(), self._last_timestamp + 1)
        return self._last_timestamp

    async def _require_thread(self, thread_id: str) -> Thread:
        thread = await self._run_blocking(self._db.get_thread, thread_id)
        if thread is None:
            raise ThreadNotFoundError(f"Thread not found: {thread_id}")
        return thread

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))
