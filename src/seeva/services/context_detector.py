"""Active-window detection used to describe what the user is looking at."""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable

from ..ui.models.chat_models import ScreenContext
from .backend_types import ContextDetectionError

__all__ = ["ContextDetector", "read_active_window"]

LOGGER = logging.getLogger(__name__)

ActiveWindow = tuple[str, str]

_COMMAND_TIMEOUT_SECONDS = 2.0
_SELF_APP_NAMES = ("seeva",)
_MACOS_SCRIPT = """\
tell application "System Events"
    set frontApp to first application process whose frontmost is true
    set appName to name of frontApp
    set windowTitle to ""
    try
        set windowTitle to name of front window of frontApp
    end try
end tell
return appName & linefeed & windowTitle"""


def _run(args: list[str]) -> str:
    completed = subprocess.run(
        args,
        capture_output=True,
        text=True,
        timeout=_COMMAND_TIMEOUT_SECONDS,
        check=True,
    )
    return completed.stdout.strip()


def _process_name(pid: str) -> str:
    return Path(f"/proc/{pid}/comm").read_text(encoding="utf-8").strip()


def _active_window_linux() -> ActiveWindow:
    window_id = _run(["xdotool", "getactivewindow"])
    title = _run(["xdotool", "getwindowname", window_id])
    pid = _run(["xdotool", "getwindowpid", window_id])
    return _process_name(pid), title


def _active_window_macos() -> ActiveWindow:
    output = _run(["osascript", "-e", _MACOS_SCRIPT])
    app_name, _, title = output.partition("\n")
    return app_name, title


def _active_window_windows() -> ActiveWindow:  # pragma: no cover - Windows only
    import ctypes
    import ctypes.wintypes as wt

    user32 = ctypes.windll.user32
    kernel32 = ctypes.windll.kernel32

    hwnd = user32.GetForegroundWindow()
    if not hwnd:
        raise ContextDetectionError("No foreground window")
    length = user32.GetWindowTextLengthW(hwnd)
    title_buffer = ctypes.create_unicode_buffer(length + 1)
    user32.GetWindowTextW(hwnd, title_buffer, length + 1)

    pid = wt.DWORD()
    user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
    handle = kernel32.OpenProcess(0x1000, False, pid.value)  # PROCESS_QUERY_LIMITED_INFORMATION
    if not handle:
        raise ContextDetectionError(f"Cannot open process {pid.value}")
    try:
        size = wt.DWORD(260)
        path_buffer = ctypes.create_unicode_buffer(size.value)
        if not kernel32.QueryFullProcessImageNameW(handle, 0, path_buffer, ctypes.byref(size)):
            raise ContextDetectionError(f"Cannot resolve executable for process {pid.value}")
    finally:
        kernel32.CloseHandle(handle)
    return Path(path_buffer.value).stem, title_buffer.value


def read_active_window() -> ActiveWindow:
    """Return ``(app_name, window_title)`` for the focused window on this platform."""

    if sys.platform == "win32":
        return _active_window_windows()
    if sys.platform == "darwin":
        return _active_window_macos()
    if sys.platform.startswith("linux"):
        return _active_window_linux()
    raise ContextDetectionError(f"Active window detection is not supported on {sys.platform}")


class ContextDetector:
    """Produces a :class:`ScreenContext` for the window the user is looking at.

    Detection waits ``settle_ms`` first so it sees the window that was focused
    before Seeva took focus, and refuses to report Seeva itself.
    """

    def __init__(
        self,
        read_window: Callable[[], ActiveWindow] | None = None,
        *,
        settle_ms: int = 50,
    ) -> None:
        self._read_window = read_window or read_active_window
        self._settle_seconds = max(0, settle_ms) / 1000

    async def detect(self) -> ScreenContext:
        if self._settle_seconds:
            await asyncio.sleep(self._settle_seconds)
        loop = asyncio.get_running_loop()
        try:
            app_name, title = await loop.run_in_executor(None, self._read_window)
        except ContextDetectionError:
            raise
        except Exception as exc:
            raise ContextDetectionError(f"Failed to detect active window: {exc}") from exc

        app_name = (app_name or "").strip()
        title = (title or "").strip()
        if not app_name:
            raise ContextDetectionError("Failed to detect active window: no application name")
        if any(marker in app_name.lower() for marker in _SELF_APP_NAMES):
            raise ContextDetectionError("Cannot detect context: Seeva is the active window")
        LOGGER.debug("Active window: %s (%s)", app_name, title)
        return ScreenContext(app_name=app_name, window_title=title)
