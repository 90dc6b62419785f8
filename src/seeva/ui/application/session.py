"""Session orchestrator facade.

This module provides the SessionOrchestrator - the owned session object that
wires the domain managers together and exposes a unified API to renderers.

The orchestrator:
- Owns every domain manager and the event bus they publish on
- Runs the stream pump task that feeds backend stream events to the assembler
- Keeps composer state (draft text, detected screen context)
- Detects the active window when a screenshot is taken and context is enabled
- Builds immutable :class:`SessionSnapshot` views on demand
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ...services.backend_types import Backend, BackendError, StreamSubscription
from ...services.capture_store import CaptureStore
from ...services.context_detector import ContextDetector
from ...services.settings import Settings
from ..domain.capture_cache import CaptureCache
from ..domain.credential_gate import CredentialGate
from ..domain.errors import extract_error_message
from ..domain.message_timeline import MessageTimeline
from ..domain.notifier import Notifier
from ..domain.stream_assembler import StreamAssembler
from ..domain.thread_registry import DEFAULT_THREAD_NAME, ThreadRegistry
from ..events import ComposerCleared, DetectedContextChanged, DraftChanged, EventBus
from ..models.capture_models import CapturePhase
from ..models.chat_models import Message, ScreenContext, Thread
from ..models.session_models import SessionSnapshot

LOGGER = logging.getLogger(__name__)


class SessionOrchestrator:
    """Facade owning the chat session state.

    Example:
        async with SessionOrchestrator(backend, settings=settings) as session:
            session.event_bus.subscribe(TimelineChanged, render_timeline)
            session.set_draft("What's on my screen?")
            await session.capture_screenshot()
            await session.send()

    Lifecycle: :meth:`start` subscribes to the backend stream, starts the pump
    task, restores a cached screenshot and bootstraps the thread registry;
    :meth:`shutdown` stops the pump and unsubscribes.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        settings: Settings,
        event_bus: EventBus | None = None,
        capture_store: CaptureStore | None = None,
        persist_settings: Callable[[Settings], object] | None = None,
        context_detector: ContextDetector | None = None,
    ) -> None:
        self._backend = backend
        self._context_detector = context_detector
        self._settings = settings
        self._bus = event_bus or EventBus()
        self.notifier = Notifier(self._bus)
        self.gate = CredentialGate(
            backend,
            self._bus,
            self.notifier,
            settings=settings,
            persist=persist_settings,
        )
        self.assembler = StreamAssembler(self._bus, self.notifier)
        self.capture = CaptureCache(
            self._bus,
            store=capture_store,
            notifier=self.notifier,
            handoff_ms=settings.capture_handoff_ms,
        )
        self.timeline = MessageTimeline(
            backend,
            self._bus,
            self.notifier,
            self.gate,
            self.assembler,
            current_thread=lambda: self.registry.current_id,
            thread_exists=lambda thread_id: self.registry.contains(thread_id),
            on_settled=self._after_send,
            stream_sync=self._drain_stream,
            enable_context=lambda: self._settings.enable_context,
            settle_delay_ms=settings.settle_delay_ms,
        )
        self.registry = ThreadRegistry(
            backend,
            self._bus,
            self.notifier,
            self.timeline,
            clear_pending=self._clear_pending,
        )
        self._draft = ""
        self._detected_context: ScreenContext | None = None
        self._subscription: StreamSubscription | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._started = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def started(self) -> bool:
        return self._started

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def detected_context(self) -> ScreenContext | None:
        return self._detected_context

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._subscription = self._backend.subscribe_stream()
        self._pump_task = asyncio.create_task(self._pump(self._subscription), name="seeva-stream-pump")
        self.capture.restore_from_cache()
        LOGGER.debug("Session started; bootstrapping thread registry")
        await self.registry.bootstrap()

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        subscription, self._subscription = self._subscription, None
        task, self._pump_task = self._pump_task, None
        if subscription is not None:
            subscription.close()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.capture.shutdown()
        LOGGER.debug("Session shut down")

    async def __aenter__(self) -> "SessionOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def create_thread(self, name: str = DEFAULT_THREAD_NAME) -> Thread:
        return await self.registry.create(name)

    async def switch_thread(self, thread_id: str) -> bool:
        return await self.registry.switch_to(thread_id)

    async def delete_thread(self, thread_id: str) -> None:
        await self.registry.delete(thread_id)

    async def clear_threads(self) -> None:
        await self.registry.clear_all()

    async def rename_thread(self, thread_id: str, name: str) -> Thread | None:
        return await self.registry.rename(thread_id, name)

    # ------------------------------------------------------------------
    # Composer and messages
    # ------------------------------------------------------------------

    def set_draft(self, text: str) -> None:
        if text == self._draft:
            return
        self._draft = text
        self._bus.publish(DraftChanged(text=text))

    def set_detected_context(self, context: ScreenContext | None) -> None:
        self._detected_context = context
        self._bus.publish(DetectedContextChanged(context=context))

    async def send(self, content: str | None = None) -> Message | None:
        """Send ``content`` (or the current draft) with the pending attachment."""

        text = self._draft if content is None else content
        attachment = self.capture.attachment
        attachments = [attachment] if attachment else []
        context = self._detected_context if self._settings.enable_context else None
        return await self.timeline.send_message(
            text,
            attachments,
            context=context,
            before_dispatch=self._clear_composer,
        )

    async def delete_message(self, message_id: str) -> None:
        await self.timeline.delete_message(message_id)

    async def detect_context(self) -> ScreenContext | None:
        """Refresh the detected screen context from the active window.

        Does nothing when context is disabled or no detector is configured. A
        failed detection is logged and leaves the current context untouched.
        """
        if self._context_detector is None or not self._settings.enable_context:
            return None
        try:
            context = await self._context_detector.detect()
        except BackendError as exc:
            LOGGER.info("Screen context unavailable: %s", extract_error_message(exc))
            return None
        self.set_detected_context(context)
        return context

    async def capture_screenshot(self) -> bool:
        await self.detect_context()
        return await self.capture.capture(self._backend.capture_screenshot)

    def drop_attachment(self) -> None:
        self.capture.clear()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def set_active_provider(self, provider: str) -> None:
        self.gate.set_active_provider(provider)

    def set_key(self, provider: str, key: str) -> None:
        self.gate.set_key(provider, key)

    async def validate_credential(self, provider: str | None = None, key: str | None = None) -> bool:
        return await self.gate.validate(provider, key)

    async def finish_editing(self, provider: str | None = None) -> bool:
        return await self.gate.finish_editing(provider)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            registry_state=self.registry.state,
            threads=self.registry.list(),
            current_thread_id=self.registry.current_id,
            messages=self.timeline.messages(),
            sending=self.timeline.sending,
            streaming=self.assembler.streaming,
            stream_text=self.assembler.text,
            capture=self.capture.state,
            draft=self._draft,
            detected_context=self._detected_context,
            active_provider=self.gate.active_provider,
            credentials=self.gate.credentials(),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _pump(self, subscription: StreamSubscription) -> None:
        async for event in subscription:
            try:
                self.assembler.apply(event)
            except Exception:  # pragma: no cover - handler bugs must not kill the pump
                LOGGER.exception("Failed to apply stream event %r", event)
            finally:
                subscription.task_done()

    async def _drain_stream(self) -> None:
        subscription = self._subscription
        task = self._pump_task
        if subscription is None or task is None or task.done():
            return
        await subscription.join()

    async def _after_send(self, thread_id: str) -> None:
        await self.registry.refresh_summaries(thread_id)

    def _clear_pending(self) -> None:
        if self._detected_context is not None:
            self.set_detected_context(None)
        state = self.capture.state
        if state.phase is not CapturePhase.EMPTY and not state.in_flight:
            self.capture.clear()

    def _clear_composer(self) -> None:
        self.set_draft("")
        self._clear_pending()
        self._bus.publish(ComposerCleared(thread_id=self.registry.current_id))


__all__ = ["SessionOrchestrator"]
