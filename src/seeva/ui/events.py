"""Typed event bus and the session events delivered to renderers.

Domain components publish these events after every state change; the
console presentation (or any other renderer) subscribes to the ones it
draws. Nothing in the session layer calls a renderer directly.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

from .models.capture_models import CaptureState
from .models.chat_models import Message, ScreenContext, Thread, TokenUsage
from .models.credential_models import ProviderCredential

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all session events.

    Subclasses are ``@dataclass(slots=True)`` records carrying only the data a
    renderer needs to redraw the affected region.
    """

    pass


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Thread Registry Events
# =============================================================================


@dataclass(slots=True)
class RegistryStateChanged(Event):
    """Emitted when the registry moves between uninitialized/loading/ready/error."""

    state: str
    error: str | None = None


@dataclass(slots=True)
class ThreadsChanged(Event):
    """Emitted whenever the ordered thread list changes.

    Attributes:
        threads: The full thread list in display order (most recent first).
    """

    threads: tuple[Thread, ...]


@dataclass(slots=True)
class CurrentThreadChanged(Event):
    """Emitted when the current thread pointer moves.

    Attributes:
        thread_id: The new current thread, or None during the bootstrap transition.
        previous_id: The thread that was current before the change.
    """

    thread_id: str | None
    previous_id: str | None = None


@dataclass(slots=True)
class RegistryHealed(Event):
    """Emitted when bootstrap repairs a registry that would otherwise be empty.

    Attributes:
        thread_id: The thread adopted as current.
        reason: ``"created_default"`` when a fresh thread was created,
            ``"adopted_first"`` when the first listed thread was adopted.
    """

    thread_id: str
    reason: str


# =============================================================================
# Timeline & Streaming Events
# =============================================================================


@dataclass(slots=True)
class TimelineChanged(Event):
    """Emitted when the messages of a thread are appended, removed or reloaded."""

    thread_id: str
    messages: tuple[Message, ...]


@dataclass(slots=True)
class SendingChanged(Event):
    sending: bool
    thread_id: str | None = None


@dataclass(slots=True)
class StreamingChanged(Event):
    streaming: bool


@dataclass(slots=True)
class StreamBufferUpdated(Event):
    """Emitted for each content delta with the partial text assembled so far.

    Attributes:
        delta: The fragment that was just appended.
        text: The concatenation of every fragment since ``message_start``.
    """

    delta: str
    text: str


_QUIET_EVENT_TYPES.add(StreamBufferUpdated)


@dataclass(slots=True)
class StreamFinished(Event):
    """Emitted once on ``message_stop`` with the assembled text, right before it is discarded."""

    text: str
    usage: TokenUsage | None = None


# =============================================================================
# Composer, Capture & Context Events
# =============================================================================


@dataclass(slots=True)
class DraftChanged(Event):
    text: str


@dataclass(slots=True)
class ComposerCleared(Event):
    """Emitted after a send clears the draft, attachment and detected context."""

    thread_id: str | None = None


@dataclass(slots=True)
class CaptureStateChanged(Event):
    state: CaptureState


@dataclass(slots=True)
class DetectedContextChanged(Event):
    context: ScreenContext | None


# =============================================================================
# Credential Events
# =============================================================================


@dataclass(slots=True)
class CredentialStatusChanged(Event):
    """Emitted when a provider's key presence or validation status changes.

    Attributes:
        provider: Provider identifier (``anthropic``, ``openai``...).
        credential: Snapshot of the provider's credential state.
        validating: True while a validation request is outstanding.
    """

    provider: str
    credential: ProviderCredential
    validating: bool = False


@dataclass(slots=True)
class ActiveProviderChanged(Event):
    provider: str


@dataclass(slots=True)
class SettingsRequested(Event):
    """Emitted when the user must be taken to provider settings before sending.

    Attributes:
        provider: The provider whose credential blocked the send.
        reason: ``"missing_key"`` or ``"unvalidated_key"``.
    """

    provider: str
    reason: str


# =============================================================================
# Notifications
# =============================================================================


@dataclass(slots=True)
class NotificationPosted(Event):
    """Emitted when a transient notification should be shown to the user.

    Attributes:
        severity: One of ``info``, ``success``, ``warning``, ``error``.
        message: The human-readable notification text.
        duration_ms: How long the renderer should keep it visible.
    """

    severity: str
    message: str
    duration_ms: int


class EventBus(Generic[E]):
    """A typed publish-subscribe bus used as the session's observer interface.

    Handlers are stored as weak references for bound methods so a renderer
    that goes away does not keep receiving events. Publishing is synchronous
    and happens on the event loop thread; the bus is not thread-safe.

    Example::

        bus = EventBus()
        bus.subscribe(ThreadsChanged, lambda event: print(len(event.threads)))
        bus.publish(ThreadsChanged(threads=()))
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` to every handler in registration order.

        A handler that raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if handlers is None:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead_indices: list[int] = []

        # Iterate over a copy so handlers may subscribe/unsubscribe while being notified.
        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue

            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            if i < len(handlers) and handlers[i].resolve() is None:
                handlers.pop(i)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type``, or across all types."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Holds a handler weakly when it is a bound method, strongly otherwise."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                # Builtin bound methods cannot be weakly referenced.
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Any) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    # Registry
    "RegistryStateChanged",
    "ThreadsChanged",
    "CurrentThreadChanged",
    "RegistryHealed",
    # Timeline & streaming
    "TimelineChanged",
    "SendingChanged",
    "StreamingChanged",
    "StreamBufferUpdated",
    "StreamFinished",
    # Composer, capture & context
    "DraftChanged",
    "ComposerCleared",
    "CaptureStateChanged",
    "DetectedContextChanged",
    # Credentials
    "CredentialStatusChanged",
    "ActiveProviderChanged",
    "SettingsRequested",
    # Notifications
    "NotificationPosted",
]
