"""Thread, message and stream event models shared by the session layer.

Timestamps are epoch milliseconds, matching what the backend persists. The
wire helpers accept both the snake_case field names used here and the
camelCase names used by the original desktop frontend.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Literal, Mapping

ChatRole = Literal["user", "assistant", "system"]
_ROLES: frozenset[str] = frozenset({"user", "assistant", "system"})
PROVISIONAL_ID_PREFIX = "local-"


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def _pick(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


@dataclass(slots=True, frozen=True)
class Thread:
    """An independently ordered conversation."""

    id: str
    name: str
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    message_count: int | None = None
    last_message_preview: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Thread":
        count = _pick(payload, "message_count", "messageCount")
        return cls(
            id=str(payload["id"]),
            name=str(_pick(payload, "name", default="")),
            created_at=int(_pick(payload, "created_at", "createdAt", default=0)),
            updated_at=int(_pick(payload, "updated_at", "updatedAt", default=0)),
            message_count=int(count) if count is not None else None,
            last_message_preview=_pick(payload, "last_message_preview", "lastMessage"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.message_count is not None:
            payload["message_count"] = self.message_count
        if self.last_message_preview is not None:
            payload["last_message_preview"] = self.last_message_preview
        return payload

    def renamed(self, name: str) -> "Thread":
        return replace(self, name=name, updated_at=now_ms())


@dataclass(slots=True, frozen=True)
class Message:
    """A single entry of a thread's timeline."""

    id: str
    thread_id: str
    role: ChatRole
    content: str
    images: tuple[str, ...] = ()
    created_at: int = field(default_factory=now_ms)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    provisional: bool = False

    @classmethod
    def provisional_user(
        cls,
        thread_id: str,
        content: str,
        images: tuple[str, ...] | list[str] | None = None,
    ) -> "Message":
        """Build the locally synthesized user message shown while a send is pending."""

        return cls(
            id=f"{PROVISIONAL_ID_PREFIX}{uuid.uuid4().hex}",
            thread_id=thread_id,
            role="user",
            content=content,
            images=tuple(images or ()),
            created_at=now_ms(),
            provisional=True,
        )

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Message":
        role = str(_pick(payload, "role", default="user")).lower()
        if role not in _ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        images = _pick(payload, "images", default=()) or ()
        metadata = _pick(payload, "metadata", default={}) or {}
        return cls(
            id=str(payload["id"]),
            thread_id=str(_pick(payload, "thread_id", "threadId", default="")),
            role=role,  # type: ignore[arg-type]
            content=str(_pick(payload, "content", default="")),
            images=tuple(str(image) for image in images),
            created_at=int(_pick(payload, "created_at", "createdAt", default=0)),
            metadata=dict(metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "thread_id": self.thread_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.images:
            payload["images"] = list(self.images)
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


@dataclass(slots=True, frozen=True)
class ScreenContext:
    """Active-window context detected outside the session and sent with the next message."""

    app_name: str
    window_title: str
    timestamp: int = field(default_factory=now_ms)

    def describe(self) -> str:
        title = self.window_title.strip()
        if title:
            return f"{self.app_name} ({title})"
        return self.app_name


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int

    def to_dict(self) -> dict[str, int]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """Base class for events published on the chat stream channel."""

    type: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(slots=True, frozen=True)
class MessageStart(StreamEvent):
    type: ClassVar[str] = "message_start"


@dataclass(slots=True, frozen=True)
class ContentDelta(StreamEvent):
    delta: str
    type: ClassVar[str] = "content_delta"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "delta": self.delta}


@dataclass(slots=True, frozen=True)
class MessageStop(StreamEvent):
    usage: TokenUsage | None = None
    type: ClassVar[str] = "message_stop"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        return payload


@dataclass(slots=True, frozen=True)
class StreamErrorEvent(StreamEvent):
    reason: str
    type: ClassVar[str] = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "error": self.reason}


def parse_stream_event(payload: Mapping[str, Any] | StreamEvent) -> StreamEvent:
    """Coerce a wire payload (``{"type": ...}``) into a typed stream event."""

    if isinstance(payload, StreamEvent):
        return payload
    event_type = str(payload.get("type", "")).strip().lower()
    if event_type == MessageStart.type:
        return MessageStart()
    if event_type == ContentDelta.type:
        return ContentDelta(delta=str(payload.get("delta") or ""))
    if event_type == MessageStop.type:
        usage_payload = payload.get("usage")
        usage = None
        if isinstance(usage_payload, Mapping):
            usage = TokenUsage(
                input_tokens=int(_pick(usage_payload, "input_tokens", "inputTokens", default=0)),
                output_tokens=int(_pick(usage_payload, "output_tokens", "outputTokens", default=0)),
            )
        return MessageStop(usage=usage)
    if event_type == StreamErrorEvent.type:
        return StreamErrorEvent(reason=str(_pick(payload, "error", "reason", default="Unknown stream error")))
    raise ValueError(f"Unknown stream event type: {event_type!r}")


__all__ = [
    "ChatRole",
    "ContentDelta",
    "Message",
    "MessageStart",
    "MessageStop",
    "PROVISIONAL_ID_PREFIX",
    "ScreenContext",
    "StreamErrorEvent",
    "StreamEvent",
    "Thread",
    "TokenUsage",
    "now_ms",
    "parse_stream_event",
]
