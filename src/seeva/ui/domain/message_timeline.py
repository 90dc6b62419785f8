"""Message timeline domain service.

Holds the ordered messages of each thread, performs optimistic sends and
reconciles local timelines against the backend after every send.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from ...services.backend_types import Backend
from ..events import EventBus, SendingChanged, TimelineChanged
from ..models.chat_models import Message, ScreenContext
from .credential_gate import CredentialGate
from .errors import RequestError, ValidationError, extract_error_message
from .notifier import Notifier
from .stream_assembler import StreamAssembler

LOGGER = logging.getLogger(__name__)

NO_ACTIVE_THREAD_MESSAGE = "No active conversation. Please create or select a thread."


class MessageTimeline:
    """Domain manager for per-thread message timelines.

    Timelines are append-only between reloads; a reload replaces a thread's
    timeline wholesale with the backend's authoritative copy, which is how
    provisional messages are swapped for persisted ones.

    A send always completes against the thread that was current when it
    started, even if the user switches threads while it is in flight.

    Events Emitted:
        - TimelineChanged: After append, removal or reload of a timeline
        - SendingChanged: When a send starts and when it settles
    """

    def __init__(
        self,
        backend: Backend,
        event_bus: EventBus,
        notifier: Notifier,
        gate: CredentialGate,
        assembler: StreamAssembler,
        *,
        current_thread: Callable[[], str | None],
        thread_exists: Callable[[str], bool] | None = None,
        on_settled: Callable[[str], Awaitable[None]] | None = None,
        stream_sync: Callable[[], Awaitable[None]] | None = None,
        enable_context: Callable[[], bool] | None = None,
        settle_delay_ms: int = 200,
    ) -> None:
        """Initialize the timeline.

        Args:
            backend: Backend collaborator used for message requests.
            event_bus: The event bus for publishing events.
            notifier: Publishes user-facing notifications.
            gate: Credential gate consulted before every send.
            assembler: Streaming assembler reset when a send settles.
            current_thread: Returns the current thread id, if any.
            thread_exists: Returns whether a thread is still registered.
            on_settled: Awaited after the post-send reload (summary refresh).
            stream_sync: Awaited before a completed send is finalized so that
                stream events already published have been applied.
            enable_context: Returns whether context augmentation is enabled.
            settle_delay_ms: Delay between a completed send and the reload.
        """
        self._backend = backend
        self._bus = event_bus
        self._notifier = notifier
        self._gate = gate
        self._assembler = assembler
        self._current_thread = current_thread
        self._thread_exists = thread_exists or (lambda thread_id: thread_id in self._timelines)
        self._on_settled = on_settled
        self._stream_sync = stream_sync
        self._enable_context = enable_context or (lambda: True)
        self._settle_delay = max(0, settle_delay_ms) / 1000.0
        self._timelines: dict[str, list[Message]] = {}
        self._sending = False
        self._sending_thread: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def sending_thread(self) -> str | None:
        return self._sending_thread

    @property
    def busy(self) -> bool:
        return self._sending

    def messages(self, thread_id: str | None = None) -> tuple[Message, ...]:
        target = thread_id if thread_id is not None else self._current_thread()
        if target is None:
            return ()
        return tuple(self._timelines.get(target, ()))

    # ------------------------------------------------------------------
    # Timeline lifecycle
    # ------------------------------------------------------------------

    def start_empty(self, thread_id: str) -> None:
        self._timelines[thread_id] = []
        self._publish(thread_id)

    def drop(self, thread_id: str) -> None:
        self._timelines.pop(thread_id, None)

    def retain(self, thread_ids: Sequence[str]) -> None:
        keep = set(thread_ids)
        for thread_id in [tid for tid in self._timelines if tid not in keep]:
            del self._timelines[thread_id]

    async def load(self, thread_id: str) -> tuple[Message, ...]:
        """Replace ``thread_id``'s timeline with the backend's copy.

        A failed load keeps the current local timeline and logs the error.
        """
        try:
            messages = list(await self._backend.get_messages(thread_id))
        except Exception as exc:
            LOGGER.warning("Failed to load messages for %s: %s", thread_id, extract_error_message(exc))
            return self.messages(thread_id)
        self._timelines[thread_id] = messages
        self._publish(thread_id)
        return tuple(messages)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(
        self,
        content: str,
        attachments: Sequence[str] = (),
        *,
        context: ScreenContext | None = None,
        before_dispatch: Callable[[], None] | None = None,
    ) -> Message | None:
        """Send ``content`` to the current thread.

        Returns the authoritative assistant message, or None when a
        precondition failed or the backend rejected the request (both are
        reported through notifications).
        """
        thread_id = self._current_thread()
        if thread_id is None:
            self._notifier.error(NO_ACTIVE_THREAD_MESSAGE)
            return None
        if self.busy:
            LOGGER.info("Send ignored; a response is already in progress")
            self._notifier.warning("Please wait for the current response to finish.")
            return None
        if not content.strip() and not attachments:
            return None
        if self._assembler.streaming:
            # A stream with no send outstanding never finishes on its own.
            LOGGER.info("Discarding orphaned stream buffer before send")
            self._assembler.reset()
        try:
            credentials = self._gate.require_send_ready()
        except ValidationError as exc:
            LOGGER.info("Send blocked: %s", exc)
            return None

        provisional = Message.provisional_user(thread_id, content, list(attachments))
        self._append(thread_id, provisional)
        if before_dispatch is not None:
            before_dispatch()
        self._set_sending(True, thread_id)
        LOGGER.debug(
            "Dispatching message to %s/%s (thread=%s)",
            credentials.provider,
            credentials.model,
            thread_id,
        )

        try:
            reply = await self._backend.send_message(
                thread_id,
                content,
                list(attachments),
                credentials.provider,
                credentials.api_key,
                credentials.model,
                credentials.max_tokens,
                self._enable_context(),
                context=context,
            )
        except Exception as exc:
            message = extract_error_message(exc)
            LOGGER.warning("Failed to send message: %s", message)
            self._notifier.error(f"Failed to send message: {message}")
            return None
        else:
            if self._thread_exists(thread_id):
                self._append(thread_id, reply)
        finally:
            if self._stream_sync is not None:
                await self._stream_sync()
            self._assembler.reset()
            self._set_sending(False, thread_id)

        await asyncio.sleep(self._settle_delay)
        if not self._thread_exists(thread_id):
            LOGGER.debug("Thread %s was removed while sending; skipping reload", thread_id)
            return reply
        await self.load(thread_id)
        if self._on_settled is not None:
            await self._on_settled(thread_id)
        return reply

    async def delete_message(self, message_id: str) -> None:
        """Delete a message on the backend, then locally; raises :class:`RequestError` on failure."""

        try:
            await self._backend.delete_message(message_id)
        except Exception as exc:
            message = extract_error_message(exc)
            self._notifier.error(f"Failed to delete message: {message}")
            raise RequestError(message) from exc
        for thread_id, messages in self._timelines.items():
            remaining = [item for item in messages if item.id != message_id]
            if len(remaining) != len(messages):
                self._timelines[thread_id] = remaining
                self._publish(thread_id)
                break

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append(self, thread_id: str, message: Message) -> None:
        self._timelines.setdefault(thread_id, []).append(message)
        self._publish(thread_id)

    def _set_sending(self, sending: bool, thread_id: str | None) -> None:
        self._sending = sending
        self._sending_thread = thread_id if sending else None
        self._bus.publish(SendingChanged(sending=sending, thread_id=thread_id))

    def _publish(self, thread_id: str) -> None:
        self._bus.publish(TimelineChanged(thread_id=thread_id, messages=self.messages(thread_id)))


__all__ = ["MessageTimeline", "NO_ACTIVE_THREAD_MESSAGE"]
