"""Domain layer for the chat session.

This package contains domain managers that encapsulate session state and
rules, independent of any renderer. Each manager is responsible for a
specific domain area and communicates via the event bus.

Domain Managers:
    - ThreadRegistry: Thread list and current-thread pointer
    - MessageTimeline: Per-thread timelines and optimistic sends
    - StreamAssembler: Progressive reply text from stream events
    - CaptureCache: Pending screenshot attachment and its durable copy
    - CredentialGate: Provider key status and the send gate

All domain managers:
    - Receive dependencies via constructor injection
    - Emit events to notify other layers of state changes
    - Have no direct dependencies on Qt or presentation code
"""

from __future__ import annotations

from .capture_cache import CaptureCache
from .credential_gate import CredentialGate
from .errors import RequestError, SessionError, StreamError, ValidationError, extract_error_message
from .message_timeline import MessageTimeline
from .notifier import Notifier
from .stream_assembler import StreamAssembler
from .thread_registry import DEFAULT_THREAD_NAME, ThreadRegistry

__all__: list[str] = [
    "CaptureCache",
    "CredentialGate",
    "DEFAULT_THREAD_NAME",
    "MessageTimeline",
    "Notifier",
    "RequestError",
    "SessionError",
    "StreamAssembler",
    "StreamError",
    "ThreadRegistry",
    "ValidationError",
    "extract_error_message",
]
