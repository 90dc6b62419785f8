"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import replace
from typing import Any, Sequence

from seeva.services.backend_types import ThreadNotFoundError
from seeva.services.settings import Settings
from seeva.services.stream_channel import StreamChannel
from seeva.ui.events import Event, EventBus
from seeva.ui.models.chat_models import (
    ContentDelta,
    Message,
    MessageStart,
    MessageStop,
    ScreenContext,
    Thread,
    TokenUsage,
    now_ms,
)
from seeva.ui.models.credential_models import CredentialValidation


class FakeBackend:
    """In-memory backend stub that records every call.

    ``send_message`` publishes ``message_start``, one ``content_delta`` per
    entry of :attr:`reply_deltas` and ``message_stop`` on :attr:`channel`
    before resolving with the assistant message, the way the local backend
    does.

    Example:
        backend = FakeBackend()
        backend.seed_thread("Existing")
        backend.fail("delete_thread", RuntimeError("db locked"))
    """

    def __init__(self, *, reply_deltas: Sequence[str] = ("Hello", ", ", "world")) -> None:
        self.channel = StreamChannel()
        self.threads: list[Thread] = []
        self.current_id: str | None = None
        self.messages: dict[str, list[Message]] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, BaseException] = {}
        self.reply_deltas = list(reply_deltas)
        self.validation = CredentialValidation(
            valid=True,
            available_models=("model-a", "model-b"),
            default_model="model-a",
        )
        self.screenshot = "c2NyZWVuc2hvdA=="
        self.send_gate: asyncio.Event | None = None
        self.validation_gate: asyncio.Event | None = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def fail(self, method: str, error: BaseException) -> None:
        self.failures[method] = error

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def seed_thread(self, name: str, *, messages: Sequence[str] = ()) -> Thread:
        thread = Thread(id=f"thread-{next(self._ids)}", name=name)
        self.threads.append(thread)
        self.messages[thread.id] = [
            Message(id=f"msg-{next(self._ids)}", thread_id=thread.id, role="user", content=text)
            for text in messages
        ]
        return thread

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        error = self.failures.get(method)
        if error is not None:
            raise error

    def _require(self, thread_id: str) -> Thread:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        raise ThreadNotFoundError(f"Thread not found: {thread_id}")

    # ------------------------------------------------------------------
    # Backend protocol
    # ------------------------------------------------------------------

    async def create_thread(self, name: str) -> Thread:
        self._record("create_thread", name)
        thread = Thread(id=f"thread-{next(self._ids)}", name=name)
        self.threads.insert(0, thread)
        self.messages[thread.id] = []
        self.current_id = thread.id
        return thread

    async def list_threads(self) -> list[Thread]:
        self._record("list_threads")
        summaries = []
        for thread in self.threads:
            history = self.messages.get(thread.id, [])
            preview = history[-1].content if history else None
            summaries.append(replace(thread, message_count=len(history), last_message_preview=preview))
        return summaries

    async def get_current_thread_id(self) -> str | None:
        self._record("get_current_thread_id")
        return self.current_id

    async def switch_thread(self, thread_id: str) -> None:
        self._record("switch_thread", thread_id)
        self._require(thread_id)
        self.current_id = thread_id

    async def delete_thread(self, thread_id: str) -> None:
        self._record("delete_thread", thread_id)
        self._require(thread_id)
        self.threads = [thread for thread in self.threads if thread.id != thread_id]
        self.messages.pop(thread_id, None)
        if self.current_id == thread_id:
            self.current_id = None

    async def rename_thread(self, thread_id: str, name: str) -> Thread:
        self._record("rename_thread", thread_id, name)
        renamed = self._require(thread_id).renamed(name)
        self.threads = [renamed if thread.id == thread_id else thread for thread in self.threads]
        return renamed

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
        self._record(
            "send_message",
            thread_id,
            content,
            tuple(attachments),
            provider,
            credential,
            model,
            token_budget,
            enable_context_augmentation,
            context,
        )
        history = self.messages.setdefault(thread_id, [])
        history.append(
            Message(
                id=f"msg-{next(self._ids)}",
                thread_id=thread_id,
                role="user",
                content=content,
                images=tuple(attachments),
            )
        )
        self.channel.publish(MessageStart())
        for delta in self.reply_deltas:
            self.channel.publish(ContentDelta(delta=delta))
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.channel.publish(MessageStop(usage=TokenUsage(input_tokens=3, output_tokens=5)))
        reply = Message(
            id=f"msg-{next(self._ids)}",
            thread_id=thread_id,
            role="assistant",
            content="".join(self.reply_deltas),
            created_at=now_ms(),
            metadata={"model": model, "provider": provider},
        )
        history.append(reply)
        return reply

    async def get_messages(self, thread_id: str) -> list[Message]:
        self._record("get_messages", thread_id)
        self._require(thread_id)
        return list(self.messages.get(thread_id, []))

    async def delete_message(self, message_id: str) -> None:
        self._record("delete_message", message_id)
        for thread_id, history in self.messages.items():
            remaining = [message for message in history if message.id != message_id]
            if len(remaining) != len(history):
                self.messages[thread_id] = remaining
                return
        raise RuntimeError(f"Message not found: {message_id}")

    async def validate_credential(self, provider: str, key: str) -> CredentialValidation:
        self._record("validate_credential", provider, key)
        if self.validation_gate is not None:
            await self.validation_gate.wait()
        return self.validation

    async def capture_screenshot(self) -> str:
        self._record("capture_screenshot")
        return self.screenshot

    def subscribe_stream(self):
        return self.channel.subscribe()


class EventRecorder:
    """Collects every event published on a bus, in order."""

    def __init__(self, bus: EventBus, *event_types: type[Event]) -> None:
        self.events: list[Event] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


def ready_settings(provider: str = "anthropic", key: str = "sk-test-key") -> Settings:
    """Settings whose active provider holds a validated key."""

    settings = Settings(active_provider=provider, settle_delay_ms=0, capture_handoff_ms=0)
    entry = settings.provider(provider)
    entry.api_key = key
    entry.validated = True
    entry.enabled = True
    entry.default_model = "model-a"
    return settings
