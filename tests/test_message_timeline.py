"""Tests for MessageTimeline domain manager."""

from __future__ import annotations

import asyncio

import pytest

from seeva.services.backend_types import BackendError, ProviderError
from seeva.services.settings import Settings
from seeva.ui.domain.credential_gate import CredentialGate
from seeva.ui.domain.errors import RequestError
from seeva.ui.domain.message_timeline import NO_ACTIVE_THREAD_MESSAGE, MessageTimeline
from seeva.ui.domain.notifier import GATE_DURATION_MS, Notifier
from seeva.ui.domain.stream_assembler import StreamAssembler
from seeva.ui.events import (
    EventBus,
    NotificationPosted,
    SendingChanged,
    SettingsRequested,
    TimelineChanged,
)
from seeva.ui.models.chat_models import ContentDelta, MessageStart, ScreenContext
from tests.helpers import EventRecorder, FakeBackend


# =============================================================================
# Fixtures
# =============================================================================


class _Harness:
    def __init__(self, backend: FakeBackend, bus: EventBus, settings: Settings) -> None:
        self.backend = backend
        self.settings = settings
        self.current: str | None = None
        self.known: set[str] = set()
        self.settled: list[str] = []
        self.recorder = EventRecorder(
            bus, TimelineChanged, SendingChanged, NotificationPosted, SettingsRequested
        )
        notifier = Notifier(bus)
        self.gate = CredentialGate(backend, bus, notifier, settings=settings)
        self.assembler = StreamAssembler(bus, notifier)
        self.timeline = MessageTimeline(
            backend,
            bus,
            notifier,
            self.gate,
            self.assembler,
            current_thread=lambda: self.current,
            thread_exists=lambda thread_id: thread_id in self.known,
            on_settled=self._on_settled,
            enable_context=lambda: settings.enable_context,
            settle_delay_ms=0,
        )

    async def _on_settled(self, thread_id: str) -> None:
        self.settled.append(thread_id)

    def open_thread(self, name: str = "Chat") -> str:
        thread = self.backend.seed_thread(name)
        self.known.add(thread.id)
        self.current = thread.id
        self.timeline.start_empty(thread.id)
        return thread.id

    def notifications(self, severity: str | None = None) -> list[NotificationPosted]:
        return [
            event
            for event in self.recorder.of(NotificationPosted)
            if severity is None or event.severity == severity
        ]


@pytest.fixture
def harness(backend: FakeBackend, event_bus: EventBus, settings: Settings) -> _Harness:
    return _Harness(backend, event_bus, settings)


async def _spin(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


# =============================================================================
# Send Tests
# =============================================================================


class TestSendMessage:
    """Tests for MessageTimeline.send_message()."""

    @pytest.mark.asyncio
    async def test_success_issues_exactly_one_request(self, harness: _Harness) -> None:
        thread_id = harness.open_thread()
        context = ScreenContext(app_name="Editor", window_title="notes.txt")

        reply = await harness.timeline.send_message("Hi", ["aW1n"], context=context)

        assert reply is not None and reply.content == "Hello, world"
        assert harness.backend.calls_to("send_message") == [
            (thread_id, "Hi", ("aW1n",), "anthropic", "sk-test-key", "model-a", 64000, True, context)
        ]

    @pytest.mark.asyncio
    async def test_provisional_message_visible_while_in_flight(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.backend.send_gate = asyncio.Event()

        task = asyncio.create_task(harness.timeline.send_message("Hi"))
        await _spin()

        messages = harness.timeline.messages()
        assert len(messages) == 1
        assert messages[0].provisional is True
        assert messages[0].id.startswith("local-")
        assert messages[0].role == "user"
        assert harness.timeline.sending is True
        assert harness.timeline.busy is True

        harness.backend.send_gate.set()
        await task
        assert harness.timeline.sending is False

    @pytest.mark.asyncio
    async def test_reload_replaces_provisional_with_authoritative(self, harness: _Harness) -> None:
        thread_id = harness.open_thread()

        await harness.timeline.send_message("Hi")

        messages = harness.timeline.messages()
        assert [message.role for message in messages] == ["user", "assistant"]
        assert not any(message.provisional for message in messages)
        assert [message.id for message in messages] == [
            message.id for message in harness.backend.messages[thread_id]
        ]
        assert harness.settled == [thread_id]

    @pytest.mark.asyncio
    async def test_sending_flag_toggles_once(self, harness: _Harness) -> None:
        harness.open_thread()

        await harness.timeline.send_message("Hi")

        assert [event.sending for event in harness.recorder.of(SendingChanged)] == [True, False]

    @pytest.mark.asyncio
    async def test_before_dispatch_runs_after_provisional_append(self, harness: _Harness) -> None:
        harness.open_thread()
        seen: list[int] = []

        await harness.timeline.send_message(
            "Hi", before_dispatch=lambda: seen.append(len(harness.timeline.messages()))
        )

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_context_flag_follows_settings(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.settings.enable_context = False

        await harness.timeline.send_message("Hi")

        assert harness.backend.calls_to("send_message")[0][7] is False

    @pytest.mark.asyncio
    async def test_blank_message_without_attachments_is_ignored(self, harness: _Harness) -> None:
        harness.open_thread()

        assert await harness.timeline.send_message("   ") is None
        assert harness.backend.calls_to("send_message") == []
        assert harness.timeline.messages() == ()

    @pytest.mark.asyncio
    async def test_attachment_only_message_is_sent(self, harness: _Harness) -> None:
        harness.open_thread()

        await harness.timeline.send_message("", ["aW1n"])

        assert len(harness.backend.calls_to("send_message")) == 1


# =============================================================================
# Precondition Tests
# =============================================================================


class TestSendPreconditions:
    """Sends that must never reach the backend."""

    @pytest.mark.asyncio
    async def test_missing_key_blocks_before_backend(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.settings.provider("anthropic").api_key = ""

        assert await harness.timeline.send_message("Hi") is None

        assert harness.backend.calls_to("send_message") == []
        assert harness.timeline.messages() == ()
        [notice] = harness.notifications("error")
        assert notice.message == (
            "API key not configured for Anthropic Claude. Please add your API key in settings."
        )
        assert notice.duration_ms == GATE_DURATION_MS
        [request] = harness.recorder.of(SettingsRequested)
        assert (request.provider, request.reason) == ("anthropic", "missing_key")

    @pytest.mark.asyncio
    async def test_unvalidated_key_blocks_before_backend(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.settings.provider("anthropic").validated = False

        assert await harness.timeline.send_message("Hi") is None

        assert harness.backend.calls_to("send_message") == []
        assert harness.recorder.of(SettingsRequested)[0].reason == "unvalidated_key"
        assert harness.notifications("error")[0].message.startswith(
            "Invalid API key for Anthropic Claude."
        )

    @pytest.mark.asyncio
    async def test_no_current_thread(self, harness: _Harness) -> None:
        assert await harness.timeline.send_message("Hi") is None

        assert harness.backend.calls_to("send_message") == []
        assert [event.message for event in harness.notifications("error")] == [
            NO_ACTIVE_THREAD_MESSAGE
        ]

    @pytest.mark.asyncio
    async def test_second_send_refused_while_first_in_flight(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.backend.send_gate = asyncio.Event()

        first = asyncio.create_task(harness.timeline.send_message("one"))
        await _spin()
        assert await harness.timeline.send_message("two") is None

        harness.backend.send_gate.set()
        await first
        assert len(harness.backend.calls_to("send_message")) == 1

    @pytest.mark.asyncio
    async def test_send_refused_while_reply_streams(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.backend.send_gate = asyncio.Event()

        first = asyncio.create_task(harness.timeline.send_message("one"))
        await _spin()
        harness.assembler.apply(MessageStart())
        harness.assembler.apply(ContentDelta(delta="partial"))

        assert await harness.timeline.send_message("two") is None
        assert harness.notifications("warning")[-1].message == (
            "Please wait for the current response to finish."
        )

        harness.backend.send_gate.set()
        await first
        assert len(harness.backend.calls_to("send_message")) == 1

    @pytest.mark.asyncio
    async def test_orphaned_stream_start_does_not_block_send(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.assembler.apply(MessageStart())
        harness.assembler.apply(ContentDelta(delta="stale"))

        assert harness.timeline.busy is False
        reply = await harness.timeline.send_message("Hi")

        assert reply is not None
        assert len(harness.backend.calls_to("send_message")) == 1
        assert harness.assembler.streaming is False
        assert harness.assembler.text == ""
        assert harness.notifications("warning") == []


# =============================================================================
# Failure Tests
# =============================================================================


class TestSendFailure:
    """Backend rejections during send."""

    @pytest.mark.asyncio
    async def test_failure_keeps_provisional_and_clears_flags(self, harness: _Harness) -> None:
        harness.open_thread()
        harness.backend.fail("send_message", ProviderError("rate limited"))

        assert await harness.timeline.send_message("Hi") is None

        messages = harness.timeline.messages()
        assert len(messages) == 1 and messages[0].provisional
        assert harness.timeline.sending is False
        assert harness.assembler.streaming is False
        assert [event.message for event in harness.notifications("error")] == [
            "Failed to send message: rate limited"
        ]
        assert harness.settled == []

    @pytest.mark.asyncio
    async def test_nested_error_payload_is_unwrapped(self, harness: _Harness) -> None:
        harness.open_thread()

        class _SDKError(Exception):
            body = {"error": {"message": "model overloaded"}}

        harness.backend.fail("send_message", _SDKError("HTTP 529"))

        await harness.timeline.send_message("Hi")

        assert harness.notifications("error")[0].message == "Failed to send message: model overloaded"


# =============================================================================
# Thread Switch During Send
# =============================================================================


class TestSwitchDuringSend:
    """A send completes against the thread it started on."""

    @pytest.mark.asyncio
    async def test_reply_lands_in_originating_thread(self, harness: _Harness) -> None:
        origin = harness.open_thread("Origin")
        harness.backend.send_gate = asyncio.Event()

        task = asyncio.create_task(harness.timeline.send_message("Hi"))
        await _spin()
        other = harness.open_thread("Other")
        harness.backend.send_gate.set()
        await task

        assert harness.timeline.messages(other) == ()
        assert [message.role for message in harness.timeline.messages(origin)] == ["user", "assistant"]
        assert harness.backend.calls_to("send_message")[0][0] == origin
        assert harness.settled == [origin]

    @pytest.mark.asyncio
    async def test_deleted_origin_skips_reconciliation(self, harness: _Harness) -> None:
        origin = harness.open_thread("Origin")
        harness.backend.send_gate = asyncio.Event()

        task = asyncio.create_task(harness.timeline.send_message("Hi"))
        await _spin()
        harness.known.discard(origin)
        harness.timeline.drop(origin)
        harness.backend.send_gate.set()
        reply = await task

        assert reply is not None
        assert harness.timeline.messages(origin) == ()
        assert harness.settled == []


# =============================================================================
# Load / Delete Tests
# =============================================================================


class TestLoadAndDelete:
    """Tests for load() and delete_message()."""

    @pytest.mark.asyncio
    async def test_load_replaces_timeline_wholesale(self, harness: _Harness) -> None:
        thread = harness.backend.seed_thread("Seeded", messages=["a", "b"])
        harness.known.add(thread.id)

        loaded = await harness.timeline.load(thread.id)

        assert [message.content for message in loaded] == ["a", "b"]
        assert harness.recorder.of(TimelineChanged)[-1].thread_id == thread.id

    @pytest.mark.asyncio
    async def test_load_failure_keeps_local_timeline(self, harness: _Harness) -> None:
        thread_id = harness.open_thread()
        await harness.timeline.send_message("Hi")
        harness.backend.fail("get_messages", BackendError("gone"))

        kept = await harness.timeline.load(thread_id)

        assert len(kept) == 2

    @pytest.mark.asyncio
    async def test_delete_message_removes_locally_on_success(self, harness: _Harness) -> None:
        harness.open_thread()
        await harness.timeline.send_message("Hi")
        target = harness.timeline.messages()[0]

        await harness.timeline.delete_message(target.id)

        assert target.id not in [message.id for message in harness.timeline.messages()]

    @pytest.mark.asyncio
    async def test_delete_message_failure_keeps_message(self, harness: _Harness) -> None:
        harness.open_thread()
        await harness.timeline.send_message("Hi")
        target = harness.timeline.messages()[0]
        harness.backend.fail("delete_message", BackendError("locked"))

        with pytest.raises(RequestError):
            await harness.timeline.delete_message(target.id)

        assert target.id in [message.id for message in harness.timeline.messages()]
        assert harness.notifications("error")[-1].message == "Failed to delete message: locked"
