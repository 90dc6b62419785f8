"""Streaming assembler: reconstructs progressive reply text from stream events."""

from __future__ import annotations

import logging

from ..events import EventBus, StreamBufferUpdated, StreamFinished, StreamingChanged
from ..models.chat_models import (
    ContentDelta,
    MessageStart,
    MessageStop,
    StreamErrorEvent,
    StreamEvent,
    TokenUsage,
)
from .errors import StreamError
from .notifier import Notifier

LOGGER = logging.getLogger(__name__)


class StreamAssembler:
    """Applies stream events to a transient text buffer.

    The buffer is display-only: it never touches a persisted timeline and is
    discarded on ``message_stop``, ``error`` or :meth:`reset`. Deltas are
    appended verbatim in arrival order, so the assembled text does not depend
    on how the provider split it.

    Events Emitted:
        - StreamingChanged: When the streaming flag toggles
        - StreamBufferUpdated: For each delta (not logged per publish)
        - StreamFinished: Once per ``message_stop`` with the full text
    """

    def __init__(self, event_bus: EventBus, notifier: Notifier) -> None:
        self._bus = event_bus
        self._notifier = notifier
        self._parts: list[str] = []
        self._streaming = False
        self._last_error: StreamError | None = None
        self._last_usage: TokenUsage | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def last_error(self) -> StreamError | None:
        return self._last_error

    @property
    def last_usage(self) -> TokenUsage | None:
        return self._last_usage

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def apply(self, event: StreamEvent) -> None:
        if isinstance(event, MessageStart):
            self._parts.clear()
            self._last_error = None
            self._last_usage = None
            self._set_streaming(True)
        elif isinstance(event, ContentDelta):
            # Deltas outside message_start/message_stop are kept but do not start a stream.
            self._parts.append(event.delta)
            self._bus.publish(StreamBufferUpdated(delta=event.delta, text=self.text))
        elif isinstance(event, MessageStop):
            self._last_usage = event.usage
            self._bus.publish(StreamFinished(text=self.text, usage=event.usage))
            self._parts.clear()
            self._set_streaming(False)
        elif isinstance(event, StreamErrorEvent):
            self._last_error = StreamError(event.reason)
            LOGGER.warning("Stream error: %s", event.reason)
            self._parts.clear()
            self._set_streaming(False)
            self._notifier.error(f"Stream error: {event.reason}")
        else:
            LOGGER.debug("Ignoring unknown stream event %r", event)

    def reset(self) -> None:
        """Discard any partial text and end streaming (used when a send settles)."""

        self._parts.clear()
        self._set_streaming(False)

    def _set_streaming(self, streaming: bool) -> None:
        if self._streaming == streaming:
            return
        self._streaming = streaming
        self._bus.publish(StreamingChanged(streaming=streaming))


__all__ = ["StreamAssembler"]
