"""Aggregate session view handed to renderers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from .capture_models import CaptureState
from .chat_models import Message, ScreenContext, Thread
from .credential_models import ProviderCredential


class RegistryState(Enum):
    """Lifecycle of the thread registry.

    Values:
        UNINITIALIZED: Bootstrap has not run yet.
        LOADING: Bootstrap is talking to the backend.
        READY: At least one thread exists and one is current.
        ERROR: The last bootstrap failed.
    """

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class SessionSnapshot:
    """Immutable copy of everything a renderer draws.

    Attributes:
        registry_state: Lifecycle of the thread registry.
        threads: Threads in display order.
        current_thread_id: The current thread, if any.
        messages: Timeline of the current thread.
        sending: True while a send request is outstanding.
        streaming: True between ``message_start`` and ``message_stop``/``error``.
        stream_text: Partial assistant text assembled so far.
        capture: Screenshot slot state.
        draft: Composer text.
        detected_context: Pending screen context, if any.
        active_provider: Provider used for the next send.
        credentials: Credential view per provider.
    """

    registry_state: RegistryState
    threads: tuple[Thread, ...]
    current_thread_id: str | None
    messages: tuple[Message, ...]
    sending: bool
    streaming: bool
    stream_text: str
    capture: CaptureState
    draft: str
    detected_context: ScreenContext | None
    active_provider: str
    credentials: Mapping[str, ProviderCredential] = field(default_factory=dict)

    @property
    def busy(self) -> bool:
        """True while a send is outstanding; new sends are refused."""
        return self.sending

    @property
    def current_thread(self) -> Thread | None:
        for thread in self.threads:
            if thread.id == self.current_thread_id:
                return thread
        return None


__all__ = ["RegistryState", "SessionSnapshot"]
