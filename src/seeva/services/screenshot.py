"""Primary-screen capture backed by PySide6."""

from __future__ import annotations

import base64
import logging
import sys
from typing import Any, Callable

from .backend_types import ScreenshotError

__all__ = ["ScreenGrabber", "grab_primary_screen_png"]

LOGGER = logging.getLogger(__name__)
_GUI_APP: Any = None


def _ensure_gui_application() -> Any:
    """Return the running QGuiApplication, creating a windowless one on first use."""

    global _GUI_APP
    try:  # Local import to avoid mandatory PySide6 import at module load.
        from PySide6.QtGui import QGuiApplication
    except ImportError as exc:  # pragma: no cover - depends on desktop stack
        raise ScreenshotError("PySide6 must be installed to capture the screen.") from exc

    app = QGuiApplication.instance()
    if app is None:
        program = sys.argv[0] if sys.argv else "seeva"
        app = QGuiApplication([program])
        _GUI_APP = app
    return app


def grab_primary_screen_png() -> bytes:
    """Capture the primary screen and return it encoded as PNG bytes."""

    _ensure_gui_application()
    from PySide6.QtCore import QBuffer, QByteArray, QIODevice
    from PySide6.QtGui import QGuiApplication

    screen = QGuiApplication.primaryScreen()
    if screen is None:
        raise ScreenshotError("No screens available")
    pixmap = screen.grabWindow(0)
    if pixmap.isNull():
        raise ScreenshotError("Failed to capture screenshot: empty image")

    data = QByteArray()
    buffer = QBuffer(data)
    buffer.open(QIODevice.OpenModeFlag.WriteOnly)
    try:
        if not pixmap.save(buffer, "PNG"):
            raise ScreenshotError("Failed to encode image")
    finally:
        buffer.close()
    LOGGER.debug("Captured primary screen (%dx%d)", pixmap.width(), pixmap.height())
    return bytes(data.data())


class ScreenGrabber:
    """Captures the screen and returns the image as a base64 PNG payload.

    Qt screen grabs must happen on the thread that owns the GUI application,
    so the grab runs synchronously on the event loop thread.
    """

    def __init__(self, grab: Callable[[], bytes] | None = None) -> None:
        self._grab = grab or grab_primary_screen_png

    async def capture(self) -> str:
        try:
            png = self._grab()
        except ScreenshotError:
            raise
        except Exception as exc:
            raise ScreenshotError(f"Failed to capture screenshot: {exc}") from exc
        if not png:
            raise ScreenshotError("Failed to capture screenshot: empty image")
        return base64.b64encode(png).decode("ascii")
