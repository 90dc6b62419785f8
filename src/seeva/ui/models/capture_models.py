"""Screenshot attachment state models.

The capture cache owns exactly one pending screenshot. ``CaptureState`` is
the immutable view of that slot published to renderers after every
transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# 1x1 transparent PNG, base64 encoded. Shown while the real grab is in flight.
PLACEHOLDER_PNG = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class CapturePhase(Enum):
    """Phase of the single screenshot slot.

    Values:
        EMPTY: No attachment.
        PLACEHOLDER: A capture was started; the placeholder image is shown.
        CAPTURING: The backend grab has been requested and is in flight.
        READY: A real screenshot is attached.
        ERROR: The last capture failed; behaves as empty.
    """

    EMPTY = "empty"
    PLACEHOLDER = "placeholder"
    CAPTURING = "capturing"
    READY = "ready"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class CaptureState:
    """Snapshot of the capture slot.

    Attributes:
        phase: Current phase of the slot.
        live_value: The attachment sent with the next message, if any.
        durable_value: What the durable reopen cache currently holds.
        capturing: True from ``begin`` until the handoff delay after a capture.
        processing: True while the backend grab is outstanding.
        error: Reason of the last failure when ``phase`` is ERROR.
    """

    phase: CapturePhase = CapturePhase.EMPTY
    live_value: str | None = None
    durable_value: str | None = None
    capturing: bool = False
    processing: bool = False
    error: str | None = None

    @property
    def in_flight(self) -> bool:
        return self.phase in (CapturePhase.PLACEHOLDER, CapturePhase.CAPTURING)

    @property
    def attachment(self) -> str | None:
        """Return the payload that a send would attach, never the placeholder."""
        if self.phase is CapturePhase.READY:
            return self.live_value
        return None


__all__ = ["CapturePhase", "CaptureState", "PLACEHOLDER_PNG"]
