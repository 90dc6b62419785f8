"""Console presentation: a text renderer and the interactive command loop.

Classes:
    ConsoleRenderer: Writes session events (stream text, notifications) to a stream
    ConsoleApp: Reads lines, dispatches slash commands and sends everything else
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from typing import TYPE_CHECKING, Sequence, TextIO

from ...chat.commands import HELP_TEXT, ConsoleCommand, ConsoleCommandType, parse_console_command
from ...services.provider_catalog import PROVIDERS
from ..domain.errors import SessionError
from ..events import (
    CaptureStateChanged,
    CurrentThreadChanged,
    DetectedContextChanged,
    NotificationPosted,
    RegistryHealed,
    SettingsRequested,
    StreamBufferUpdated,
    StreamFinished,
    StreamingChanged,
)
from ..models.capture_models import CapturePhase
from ..models.chat_models import Message, Thread

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from ..application.session import SessionOrchestrator
    from ..events import EventBus

LOGGER = logging.getLogger(__name__)

_SEVERITY_LABELS = {
    "success": "ok",
    "info": "info",
    "warning": "warn",
    "error": "error",
}
_PREVIEW_LIMIT = 48


def format_timestamp(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M")


def format_thread_list(threads: Sequence[Thread], current_id: str | None) -> str:
    if not threads:
        return "(no conversations)"
    lines = []
    for index, thread in enumerate(threads, start=1):
        marker = "*" if thread.id == current_id else " "
        count = f" ({thread.message_count} msgs)" if thread.message_count is not None else ""
        preview = ""
        if thread.last_message_preview:
            text = " ".join(thread.last_message_preview.split())
            if len(text) > _PREVIEW_LIMIT:
                text = text[: _PREVIEW_LIMIT - 3] + "..."
            preview = f" - {text}"
        lines.append(f"{marker} {index}. {thread.name}{count}{preview}")
    return "\n".join(lines)


def format_message(index: int, message: Message) -> str:
    pending = " (sending)" if message.provisional else ""
    images = f" [{len(message.images)} image(s)]" if message.images else ""
    stamp = format_timestamp(message.created_at)
    return f"{index}. [{stamp}] {message.role}{pending}{images}: {message.content}"


class ConsoleRenderer:
    """Reactive renderer that writes session events to a text stream.

    Events Handled:
        - StreamingChanged: Prints the assistant prompt when a reply starts
        - StreamBufferUpdated: Echoes each delta as it arrives
        - StreamFinished: Terminates the streamed line
        - NotificationPosted: Prints the notification with its severity
        - CurrentThreadChanged: Announces the current conversation
        - RegistryHealed: Explains why a conversation was created or adopted
        - CaptureStateChanged: Reports when a screenshot is attached
        - DetectedContextChanged: Shows the detected application and window
        - SettingsRequested: Points at the /key command
    """

    def __init__(self, event_bus: "EventBus", out: TextIO | None = None) -> None:
        self._event_bus = event_bus
        self._out = out or sys.stdout
        self._subscribed = False
        self._thread_names: dict[str, str] = {}
        self._subscribe()

    def _subscribe(self) -> None:
        for event_type, handler in self._handlers():
            self._event_bus.subscribe(event_type, handler)
        self._subscribed = True
        LOGGER.debug("ConsoleRenderer: subscribed to events")

    def dispose(self) -> None:
        if not self._subscribed:
            return
        for event_type, handler in self._handlers():
            self._event_bus.unsubscribe(event_type, handler)
        self._subscribed = False

    def remember_threads(self, threads: Sequence[Thread]) -> None:
        self._thread_names = {thread.id: thread.name for thread in threads}

    def _handlers(self) -> list[tuple[type, object]]:
        return [
            (StreamingChanged, self._on_streaming_changed),
            (StreamBufferUpdated, self._on_stream_buffer),
            (StreamFinished, self._on_stream_finished),
            (NotificationPosted, self._on_notification),
            (CurrentThreadChanged, self._on_current_thread),
            (RegistryHealed, self._on_registry_healed),
            (CaptureStateChanged, self._on_capture_state),
            (DetectedContextChanged, self._on_detected_context),
            (SettingsRequested, self._on_settings_requested),
        ]

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_streaming_changed(self, event: StreamingChanged) -> None:
        if event.streaming:
            self._write("assistant> ")

    def _on_stream_buffer(self, event: StreamBufferUpdated) -> None:
        self._write(event.delta)

    def _on_stream_finished(self, event: StreamFinished) -> None:
        self._write("\n")

    def _on_notification(self, event: NotificationPosted) -> None:
        label = _SEVERITY_LABELS.get(event.severity, event.severity)
        self._write(f"[{label}] {event.message}\n")

    def _on_current_thread(self, event: CurrentThreadChanged) -> None:
        if event.thread_id is None:
            return
        name = self._thread_names.get(event.thread_id, event.thread_id)
        self._write(f"-- conversation: {name}\n")

    def _on_registry_healed(self, event: RegistryHealed) -> None:
        if event.reason == "created_default":
            self._write("-- started a new conversation\n")
        else:
            self._write("-- resumed your most recent conversation\n")

    def _on_capture_state(self, event: CaptureStateChanged) -> None:
        state = event.state
        if state.phase is CapturePhase.READY and not state.capturing:
            self._write("-- screenshot attached to your next message\n")

    def _on_detected_context(self, event: DetectedContextChanged) -> None:
        if event.context is not None:
            self._write(f"-- context: {event.context.describe()}\n")

    def _on_settings_requested(self, event: SettingsRequested) -> None:
        self._write(f"-- use /key {event.provider} <key> to configure the provider\n")

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()


class ConsoleApp:
    """Interactive loop driving a :class:`SessionOrchestrator` from text input."""

    def __init__(
        self,
        session: "SessionOrchestrator",
        *,
        stdin: TextIO | None = None,
        out: TextIO | None = None,
        prompt: str = "you> ",
    ) -> None:
        self._session = session
        self._in = stdin or sys.stdin
        self._out = out or sys.stdout
        self._prompt = prompt
        self.renderer = ConsoleRenderer(session.event_bus, self._out)

    async def run(self) -> None:
        """Read and handle lines until ``/quit`` or end of input."""

        self._print("Type /help for commands.")
        loop = asyncio.get_running_loop()
        while True:
            self._out.write(self._prompt)
            self._out.flush()
            line = await loop.run_in_executor(None, self._in.readline)
            if not line:
                break
            if not await self.handle_line(line.rstrip("\n")):
                break
        self.renderer.dispose()

    async def handle_line(self, line: str) -> bool:
        """Handle one input line; returns False when the loop should stop."""

        try:
            command = parse_console_command(line)
        except ValueError as exc:
            self._print(str(exc))
            return True
        if command is None:
            if line.strip():
                await self._session.send(line)
            return True
        try:
            return await self.execute(command)
        except SessionError as exc:
            # Already surfaced as a notification.
            LOGGER.debug("Command %s failed: %s", command.command.value, exc)
        except (KeyError, ValueError) as exc:
            self._print(str(exc).strip("'\""))
        return True

    async def execute(self, command: ConsoleCommand) -> bool:
        session = self._session
        kind = command.command
        args = command.args
        self.renderer.remember_threads(session.registry.list())

        if kind is ConsoleCommandType.QUIT:
            return False
        if kind is ConsoleCommandType.HELP:
            self._print(HELP_TEXT)
        elif kind is ConsoleCommandType.NEW:
            thread = await session.create_thread(args.get("name", ""))
            self.renderer.remember_threads(session.registry.list())
            self._print(f"-- conversation: {thread.name}")
        elif kind is ConsoleCommandType.THREADS:
            self._print(format_thread_list(session.registry.list(), session.registry.current_id))
        elif kind is ConsoleCommandType.SWITCH:
            await session.switch_thread(self._resolve_thread(args["target"]))
        elif kind is ConsoleCommandType.RENAME:
            await session.rename_thread(self._resolve_thread(args["target"]), args["name"])
        elif kind is ConsoleCommandType.DELETE:
            await session.delete_thread(self._resolve_thread(args["target"]))
        elif kind is ConsoleCommandType.CLEAR:
            await session.clear_threads()
        elif kind is ConsoleCommandType.CAPTURE:
            await session.capture_screenshot()
        elif kind is ConsoleCommandType.CONTEXT:
            if not session.settings.enable_context:
                self._print("-- screen context is disabled (set enable_context=true)")
            elif await session.detect_context() is None:
                self._print("-- no screen context detected")
        elif kind is ConsoleCommandType.DROP:
            session.drop_attachment()
            self._print("-- screenshot discarded")
        elif kind is ConsoleCommandType.PROVIDER:
            provider = args["provider"]
            if provider not in PROVIDERS:
                self._print(f"Unknown provider '{provider}'. Choose from: {', '.join(PROVIDERS)}")
            else:
                session.set_active_provider(provider)
                self._print(f"-- provider: {session.gate.credential(provider).display_name}")
        elif kind is ConsoleCommandType.KEY:
            session.set_key(args["provider"], args["key"])
            await session.finish_editing(args["provider"])
        elif kind is ConsoleCommandType.VALIDATE:
            await session.validate_credential(args.get("provider"))
        elif kind is ConsoleCommandType.HISTORY:
            messages = session.timeline.messages()
            if not messages:
                self._print("(no messages)")
            for index, message in enumerate(messages, start=1):
                self._print(format_message(index, message))
        elif kind is ConsoleCommandType.DELETE_MESSAGE:
            await session.delete_message(self._resolve_message(args["target"]))
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_thread(self, target: int | str) -> str:
        threads = self._session.registry.list()
        if isinstance(target, int):
            if target > len(threads):
                raise ValueError(f"No conversation number {target}.")
            return threads[target - 1].id
        return target

    def _resolve_message(self, target: int | str) -> str:
        messages = self._session.timeline.messages()
        if isinstance(target, int):
            if target > len(messages):
                raise ValueError(f"No message number {target}.")
            return messages[target - 1].id
        return target

    def _print(self, text: str) -> None:
        self._out.write(f"{text}\n")
        self._out.flush()


__all__ = ["ConsoleApp", "ConsoleRenderer", "format_message", "format_thread_list"]
