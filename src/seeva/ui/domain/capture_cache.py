"""Capture cache domain service.

Owns the single pending screenshot attachment: a transient live value shown
in the composer plus a durable single-slot copy that survives reopening the
window.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable

from ...services.capture_store import CaptureStore
from ..events import CaptureStateChanged, EventBus
from ..models.capture_models import PLACEHOLDER_PNG, CapturePhase, CaptureState
from .errors import extract_error_message
from .notifier import Notifier

LOGGER = logging.getLogger(__name__)


class CaptureCache:
    """State machine for the screenshot slot.

    ``empty/ready/error -> placeholder -> capturing -> ready | error``.
    Capture cycles are numbered so a delayed handoff from an older cycle never
    clears the ``capturing`` flag of a newer one.

    Events Emitted:
        - CaptureStateChanged: After every transition
    """

    def __init__(
        self,
        event_bus: EventBus,
        *,
        store: CaptureStore | None = None,
        notifier: Notifier | None = None,
        handoff_ms: int = 150,
    ) -> None:
        self._bus = event_bus
        self._store = store
        self._notifier = notifier
        self._handoff_seconds = max(0, handoff_ms) / 1000.0
        self._state = CaptureState()
        self._cycle = 0
        self._cycle_wrote_durable = False
        self._restored = False
        self._handoff: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def attachment(self) -> str | None:
        """The screenshot a send would attach right now, if any."""
        return self._state.attachment

    @property
    def cycle(self) -> int:
        return self._cycle

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin(self) -> bool:
        """Start a capture cycle; refused while another capture is in flight."""

        if self._state.in_flight:
            LOGGER.debug("Capture already in flight (cycle %d); ignoring begin()", self._cycle)
            return False
        self._cancel_handoff()
        self._cycle += 1
        self._cycle_wrote_durable = False
        self._set_state(
            replace(
                self._state,
                phase=CapturePhase.PLACEHOLDER,
                live_value=PLACEHOLDER_PNG,
                capturing=True,
                processing=False,
                error=None,
            )
        )
        return True

    def mark_requested(self) -> None:
        if self._state.phase is not CapturePhase.PLACEHOLDER:
            return
        self._set_state(replace(self._state, phase=CapturePhase.CAPTURING, processing=True))

    def on_captured(self, payload: str) -> None:
        if not payload:
            self.on_failure("Screen capture returned no data")
            return
        durable = self._state.durable_value
        if self._store is not None:
            try:
                self._store.save(payload)
            except OSError as exc:
                LOGGER.warning("Failed to persist screenshot cache: %s", exc)
            else:
                durable = payload
                self._cycle_wrote_durable = True
        else:
            durable = payload
            self._cycle_wrote_durable = True
        self._set_state(
            replace(
                self._state,
                phase=CapturePhase.READY,
                live_value=payload,
                durable_value=durable,
                processing=False,
                error=None,
            )
        )
        self._schedule_handoff(self._cycle)

    def on_failure(self, reason: str) -> None:
        self._cancel_handoff()
        durable = self._state.durable_value
        if self._cycle_wrote_durable:
            self._clear_durable()
            durable = None
            self._cycle_wrote_durable = False
        self._set_state(
            replace(
                self._state,
                phase=CapturePhase.ERROR,
                live_value=None,
                durable_value=durable,
                capturing=False,
                processing=False,
                error=reason,
            )
        )

    def restore_from_cache(self) -> bool:
        """Repopulate an empty slot from the durable cache; only the first call has any effect."""

        if self._restored:
            return False
        self._restored = True
        if self._state.phase not in (CapturePhase.EMPTY, CapturePhase.ERROR):
            return False
        durable = self._store.load() if self._store is not None else self._state.durable_value
        if not durable:
            return False
        LOGGER.debug("Restored screenshot from durable cache")
        self._set_state(
            CaptureState(phase=CapturePhase.READY, live_value=durable, durable_value=durable)
        )
        return True

    def clear(self) -> None:
        """Drop the attachment and the durable copy."""

        self._cancel_handoff()
        self._cycle_wrote_durable = False
        self._clear_durable()
        self._set_state(CaptureState())

    async def capture(self, grab: Callable[[], Awaitable[str]]) -> bool:
        """Run a full capture cycle with ``grab`` providing the base64 payload."""

        if not self.begin():
            return False
        self.mark_requested()
        try:
            payload = await grab()
        except Exception as exc:
            reason = extract_error_message(exc)
            self.on_failure(reason)
            if self._notifier is not None:
                self._notifier.error(f"Failed to capture screenshot: {reason}")
            return False
        self.on_captured(payload)
        return self._state.phase is CapturePhase.READY

    def shutdown(self) -> None:
        self._cancel_handoff()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _schedule_handoff(self, cycle: int) -> None:
        self._cancel_handoff()
        if self._handoff_seconds <= 0:
            self._finish_handoff(cycle)
            return
        loop = asyncio.get_running_loop()
        self._handoff = loop.call_later(self._handoff_seconds, self._finish_handoff, cycle)

    def _finish_handoff(self, cycle: int) -> None:
        self._handoff = None
        if cycle != self._cycle or not self._state.capturing:
            return
        self._set_state(replace(self._state, capturing=False))

    def _cancel_handoff(self) -> None:
        if self._handoff is not None:
            self._handoff.cancel()
            self._handoff = None

    def _clear_durable(self) -> None:
        if self._store is None:
            return
        try:
            self._store.clear()
        except OSError as exc:
            LOGGER.warning("Failed to clear screenshot cache: %s", exc)

    def _set_state(self, state: CaptureState) -> None:
        self._state = state
        self._bus.publish(CaptureStateChanged(state=state))


__all__ = ["CaptureCache"]
