"""Thread registry domain service.

Owns the ordered list of conversation threads and the current-thread
pointer, keeping both in agreement with the backend.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ...services.backend_types import Backend
from ..events import (
    CurrentThreadChanged,
    EventBus,
    RegistryHealed,
    RegistryStateChanged,
    ThreadsChanged,
)
from ..models.chat_models import Thread
from ..models.session_models import RegistryState
from .errors import RequestError, extract_error_message
from .message_timeline import MessageTimeline
from .notifier import Notifier

LOGGER = logging.getLogger(__name__)

DEFAULT_THREAD_NAME = "New Conversation"


class ThreadRegistry:
    """Domain manager for conversation threads.

    Whenever at least one thread exists after bootstrap the current pointer
    references one of them; an empty backend is healed by creating a default
    thread.

    Events Emitted:
        - RegistryStateChanged: On uninitialized/loading/ready/error transitions
        - ThreadsChanged: After any change to the thread list or its summaries
        - CurrentThreadChanged: When the current pointer moves
        - RegistryHealed: When bootstrap created or adopted a current thread
    """

    def __init__(
        self,
        backend: Backend,
        event_bus: EventBus,
        notifier: Notifier,
        timeline: MessageTimeline,
        *,
        clear_pending: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            backend: Backend collaborator owning thread persistence.
            event_bus: The event bus for publishing events.
            notifier: Publishes user-facing notifications.
            timeline: Timeline reloaded whenever the current thread changes.
            clear_pending: Called when a new thread is created to discard the
                draft and pending attachment.
        """
        self._backend = backend
        self._bus = event_bus
        self._notifier = notifier
        self._timeline = timeline
        self._clear_pending = clear_pending
        self._state = RegistryState.UNINITIALIZED
        self._threads: list[Thread] = []
        self._current_id: str | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def current_id(self) -> str | None:
        return self._current_id

    @property
    def current_thread(self) -> Thread | None:
        return self.get(self._current_id) if self._current_id else None

    def list(self) -> tuple[Thread, ...]:
        return tuple(self._threads)

    def get(self, thread_id: str) -> Thread | None:
        for thread in self._threads:
            if thread.id == thread_id:
                return thread
        return None

    def contains(self, thread_id: str) -> bool:
        return self.get(thread_id) is not None

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def bootstrap(self) -> str:
        """Load threads from the backend and guarantee a current thread.

        Returns the id of the current thread. Raises :class:`RequestError`
        (after entering the ``error`` state) when the backend cannot be read.
        """

        self._set_state(RegistryState.LOADING)
        healed: str | None = None
        try:
            threads = list(await self._backend.list_threads())
            current_id = await self._backend.get_current_thread_id()
            if not threads:
                thread = await self._backend.create_thread(DEFAULT_THREAD_NAME)
                threads = [thread]
                current_id = thread.id
                healed = "created_default"
            elif current_id is None or not any(thread.id == current_id for thread in threads):
                current_id = threads[0].id
                await self._backend.switch_thread(current_id)
                healed = "adopted_first"
        except Exception as exc:
            message = extract_error_message(exc)
            LOGGER.error("Failed to load threads: %s", message)
            self._set_state(RegistryState.ERROR, message)
            self._notifier.error(f"Failed to load threads: {message}")
            raise RequestError(message) from exc

        self._threads = threads
        self._timeline.retain([thread.id for thread in threads])
        self._bus.publish(ThreadsChanged(threads=self.list()))
        self._set_current(current_id)
        self._set_state(RegistryState.READY)
        if healed is not None:
            LOGGER.info("Registry healed (%s): current thread %s", healed, current_id)
            self._bus.publish(RegistryHealed(thread_id=current_id, reason=healed))
        await self._timeline.load(current_id)
        return current_id

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, name: str = DEFAULT_THREAD_NAME) -> Thread:
        label = (name or "").strip() or DEFAULT_THREAD_NAME
        try:
            thread = await self._backend.create_thread(label)
        except Exception as exc:
            message = extract_error_message(exc)
            self._notifier.error(f"Failed to create thread: {message}")
            raise RequestError(message) from exc

        self._threads.insert(0, thread)
        if self._clear_pending is not None:
            self._clear_pending()
        self._timeline.start_empty(thread.id)
        self._bus.publish(ThreadsChanged(threads=self.list()))
        self._set_current(thread.id)
        if self._state is not RegistryState.READY:
            self._set_state(RegistryState.READY)
        self._notifier.success(f'Thread "{thread.name}" created successfully')
        return thread

    async def switch_to(self, thread_id: str) -> bool:
        """Make ``thread_id`` current; the backend is updated before the local pointer."""

        if thread_id == self._current_id:
            return True
        if not self.contains(thread_id):
            self._notifier.error(f"Thread not found: {thread_id}")
            return False
        try:
            await self._backend.switch_thread(thread_id)
        except Exception as exc:
            message = extract_error_message(exc)
            LOGGER.warning("Failed to switch thread to %s: %s", thread_id, message)
            self._notifier.error(f"Failed to switch thread: {message}")
            return False
        self._set_current(thread_id)
        await self._timeline.load(thread_id)
        return True

    async def delete(self, thread_id: str) -> None:
        thread = self.get(thread_id)
        name = thread.name if thread is not None else thread_id
        try:
            await self._backend.delete_thread(thread_id)
        except Exception as exc:
            message = extract_error_message(exc)
            self._notifier.error(f"Failed to delete thread: {message}")
            raise RequestError(message) from exc

        was_current = thread_id == self._current_id
        self._threads = [item for item in self._threads if item.id != thread_id]
        self._timeline.drop(thread_id)
        self._bus.publish(ThreadsChanged(threads=self.list()))

        if not self._threads:
            self._set_current(None)
            await self.bootstrap()
        elif was_current:
            replacement = self._threads[0].id
            self._set_current(replacement)
            try:
                await self._backend.switch_thread(replacement)
            except Exception as exc:
                LOGGER.warning(
                    "Failed to make %s current after delete: %s",
                    replacement,
                    extract_error_message(exc),
                )
            await self._timeline.load(replacement)
        self._notifier.success(f'Thread "{name}" deleted successfully')

    async def clear_all(self) -> None:
        """Delete every thread concurrently, then bootstrap a fresh default."""

        ids = [thread.id for thread in self._threads]
        results = await asyncio.gather(
            *(self._backend.delete_thread(thread_id) for thread_id in ids),
            return_exceptions=True,
        )
        failures: list[BaseException] = []
        for thread_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                LOGGER.warning("Failed to delete thread %s: %s", thread_id, result)
                failures.append(result)
                continue
            self._timeline.drop(thread_id)
        self._threads = []
        self._set_current(None)
        self._bus.publish(ThreadsChanged(threads=()))

        await self.bootstrap()
        if failures:
            self._notifier.error(f"Failed to clear threads: {extract_error_message(failures[0])}")
        else:
            self._notifier.success("All threads cleared successfully")

    async def rename(self, thread_id: str, name: str) -> Thread | None:
        label = (name or "").strip()
        if not label:
            self._notifier.error("Thread name cannot be empty")
            return None
        try:
            renamed = await self._backend.rename_thread(thread_id, label)
        except Exception as exc:
            message = extract_error_message(exc)
            self._notifier.error(f"Failed to rename thread: {message}")
            raise RequestError(message) from exc
        self._threads = [renamed if item.id == thread_id else item for item in self._threads]
        self._bus.publish(ThreadsChanged(threads=self.list()))
        return renamed

    async def refresh_summaries(self, *_: object) -> None:
        """Re-read thread summaries (counts, previews, ordering) from the backend."""

        try:
            threads = list(await self._backend.list_threads())
        except Exception as exc:
            LOGGER.warning("Failed to reload threads: %s", extract_error_message(exc))
            return
        if not threads:
            await self.bootstrap()
            return
        self._threads = threads
        self._bus.publish(ThreadsChanged(threads=self.list()))
        if self._current_id is None or not self.contains(self._current_id):
            self._set_current(threads[0].id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_current(self, thread_id: str | None) -> None:
        if thread_id == self._current_id:
            return
        previous = self._current_id
        self._current_id = thread_id
        self._bus.publish(CurrentThreadChanged(thread_id=thread_id, previous_id=previous))

    def _set_state(self, state: RegistryState, error: str | None = None) -> None:
        self._state = state
        self._bus.publish(RegistryStateChanged(state=state.value, error=error))


__all__ = ["DEFAULT_THREAD_NAME", "ThreadRegistry"]
