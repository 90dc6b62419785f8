"""Tests for the console renderer and command loop."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from seeva.services.capture_store import CaptureStore
from seeva.services.settings import Settings
from seeva.ui.application.session import SessionOrchestrator
from seeva.ui.events import DetectedContextChanged, NotificationPosted, RegistryHealed
from seeva.ui.models.chat_models import Message, ScreenContext, Thread
from seeva.ui.presentation.console import (
    ConsoleApp,
    ConsoleRenderer,
    format_message,
    format_thread_list,
)
from tests.helpers import FakeBackend


@pytest.fixture
def session(backend: FakeBackend, settings: Settings, tmp_path: Path) -> SessionOrchestrator:
    return SessionOrchestrator(
        backend, settings=settings, capture_store=CaptureStore(tmp_path / "capture_cache.json")
    )


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def app(session: SessionOrchestrator, out: io.StringIO) -> ConsoleApp:
    return ConsoleApp(session, stdin=io.StringIO(""), out=out)


# =============================================================================
# Formatting
# =============================================================================


def test_format_thread_list_marks_current_and_truncates() -> None:
    threads = [
        Thread(id="a", name="Work", message_count=4, last_message_preview="x" * 80),
        Thread(id="b", name="Home"),
    ]

    lines = format_thread_list(threads, "b").splitlines()

    assert lines[0].startswith("  1. Work (4 msgs) - ")
    assert lines[0].endswith("...")
    assert lines[1] == "* 2. Home"


def test_format_thread_list_empty() -> None:
    assert format_thread_list([], None) == "(no conversations)"


def test_format_message_flags_pending_and_images() -> None:
    message = Message.provisional_user("t", "look at this", ["aW1n"])

    text = format_message(1, message)

    assert text.startswith("1. [")
    assert text.endswith("] user (sending) [1 image(s)]: look at this")


# =============================================================================
# Renderer
# =============================================================================


class TestConsoleRenderer:
    """Event-to-text rendering."""

    def test_notifications_use_short_labels(self, event_bus, out: io.StringIO) -> None:
        ConsoleRenderer(event_bus, out)

        event_bus.publish(NotificationPosted(severity="success", message="Saved", duration_ms=10))
        event_bus.publish(NotificationPosted(severity="warning", message="Careful", duration_ms=10))

        assert out.getvalue() == "[ok] Saved\n[warn] Careful\n"

    def test_heal_messages(self, event_bus, out: io.StringIO) -> None:
        ConsoleRenderer(event_bus, out)

        event_bus.publish(RegistryHealed(thread_id="t", reason="created_default"))
        event_bus.publish(RegistryHealed(thread_id="t", reason="adopted_first"))

        assert out.getvalue().splitlines() == [
            "-- started a new conversation",
            "-- resumed your most recent conversation",
        ]

    def test_detected_context_is_shown(self, event_bus, out: io.StringIO) -> None:
        ConsoleRenderer(event_bus, out)

        event_bus.publish(
            DetectedContextChanged(context=ScreenContext(app_name="Slack", window_title="#general"))
        )
        event_bus.publish(DetectedContextChanged(context=None))

        assert out.getvalue() == "-- context: Slack (#general)\n"

    def test_dispose_unsubscribes(self, event_bus, out: io.StringIO) -> None:
        renderer = ConsoleRenderer(event_bus, out)

        renderer.dispose()
        event_bus.publish(NotificationPosted(severity="info", message="hidden", duration_ms=10))

        assert out.getvalue() == ""
        assert event_bus.handler_count() == 0


# =============================================================================
# Command loop
# =============================================================================


class TestConsoleApp:
    """Line handling against a running session."""

    @pytest.mark.asyncio
    async def test_plain_line_is_sent_and_streamed(
        self, app: ConsoleApp, session: SessionOrchestrator, backend: FakeBackend, out: io.StringIO
    ) -> None:
        async with session:
            assert await app.handle_line("Hi there") is True

        assert backend.calls_to("send_message")[0][1] == "Hi there"
        assert "assistant> Hello, world\n" in out.getvalue()

    @pytest.mark.asyncio
    async def test_blank_line_is_ignored(
        self, app: ConsoleApp, session: SessionOrchestrator, backend: FakeBackend
    ) -> None:
        async with session:
            await app.handle_line("   ")

        assert backend.calls_to("send_message") == []

    @pytest.mark.asyncio
    async def test_new_and_list_threads(
        self, app: ConsoleApp, session: SessionOrchestrator, out: io.StringIO
    ) -> None:
        async with session:
            await app.handle_line("/new Research")
            out.truncate(0)
            out.seek(0)

            await app.handle_line("/threads")

        lines = out.getvalue().splitlines()
        assert lines[0].startswith("* 1. Research")
        assert lines[1].startswith("  2. New Conversation")

    @pytest.mark.asyncio
    async def test_switch_by_index(self, app: ConsoleApp, session: SessionOrchestrator) -> None:
        async with session:
            original = session.registry.current_id
            await session.create_thread("Second")

            await app.handle_line("/switch 2")

            assert session.registry.current_id == original

    @pytest.mark.asyncio
    async def test_out_of_range_index(
        self, app: ConsoleApp, session: SessionOrchestrator, out: io.StringIO
    ) -> None:
        async with session:
            assert await app.handle_line("/delete 9") is True

        assert "No conversation number 9." in out.getvalue()

    @pytest.mark.asyncio
    async def test_parse_errors_are_printed(self, app: ConsoleApp, out: io.StringIO) -> None:
        assert await app.handle_line("/frobnicate") is True

        assert "Unknown command '/frobnicate'. Try /help." in out.getvalue()

    @pytest.mark.asyncio
    async def test_unknown_provider(self, app: ConsoleApp, out: io.StringIO) -> None:
        await app.handle_line("/provider mystery")

        assert "Unknown provider 'mystery'" in out.getvalue()

    @pytest.mark.asyncio
    async def test_key_command_validates(
        self, app: ConsoleApp, session: SessionOrchestrator, backend: FakeBackend, out: io.StringIO
    ) -> None:
        async with session:
            await app.handle_line("/key openai sk-typed")

        assert backend.calls_to("validate_credential") == [("openai", "sk-typed")]
        assert "[ok] OpenAI API key validated successfully" in out.getvalue()
        assert session.gate.credential("openai").validated is True

    @pytest.mark.asyncio
    async def test_key_command_skips_validation_for_blank_key(
        self, app: ConsoleApp, session: SessionOrchestrator, backend: FakeBackend
    ) -> None:
        async with session:
            await app.handle_line('/key openai "  "')

        assert backend.calls_to("validate_credential") == []
        assert session.gate.credential("openai").has_key is False

    @pytest.mark.asyncio
    async def test_context_command_reports_missing_detector(
        self, app: ConsoleApp, session: SessionOrchestrator, out: io.StringIO
    ) -> None:
        async with session:
            await app.handle_line("/context")

        assert "-- no screen context detected" in out.getvalue()

    @pytest.mark.asyncio
    async def test_context_command_when_disabled(
        self, app: ConsoleApp, session: SessionOrchestrator, settings: Settings, out: io.StringIO
    ) -> None:
        settings.enable_context = False

        async with session:
            await app.handle_line("/context")

        assert "-- screen context is disabled" in out.getvalue()

    @pytest.mark.asyncio
    async def test_history_lists_messages(
        self, app: ConsoleApp, session: SessionOrchestrator, out: io.StringIO
    ) -> None:
        async with session:
            await app.handle_line("/history")
            assert "(no messages)" in out.getvalue()

            await session.send("Hi")
            await app.handle_line("/history")

        assert "1. [" in out.getvalue()
        assert "assistant: Hello, world" in out.getvalue()

    @pytest.mark.asyncio
    async def test_quit_stops_the_loop(self, app: ConsoleApp) -> None:
        assert await app.handle_line("/quit") is False

    @pytest.mark.asyncio
    async def test_run_reads_until_quit(
        self, session: SessionOrchestrator, backend: FakeBackend, out: io.StringIO
    ) -> None:
        console = ConsoleApp(session, stdin=io.StringIO("/new Work\nhello\n/quit\nignored\n"), out=out)

        async with session:
            await console.run()

        assert [call[1] for call in backend.calls_to("send_message")] == ["hello"]
        assert out.getvalue().startswith("Type /help for commands.\nyou> ")
        assert session.event_bus.handler_count(NotificationPosted) == 0
