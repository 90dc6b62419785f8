"""Durable single-slot storage for the pending screenshot attachment."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from .settings import _SETTINGS_DIR

__all__ = ["CaptureStore"]

LOGGER = logging.getLogger(__name__)
_CACHE_FILENAME = "capture_cache.json"
_CACHE_VERSION = 1


def _default_cache_path() -> Path:
    return _SETTINGS_DIR / _CACHE_FILENAME


class CaptureStore:
    """Persist at most one base64 screenshot so it survives closing the window.

    Every write replaces the previous payload; there is no history and no expiry.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _default_cache_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        payload = self._read_payload()
        value = payload.get("screenshot")
        if isinstance(value, str) and value:
            return value
        return None

    def save(self, screenshot: str) -> Path:
        if not screenshot:
            raise ValueError("screenshot payload must be a non-empty string")
        body = json.dumps({"version": _CACHE_VERSION, "screenshot": screenshot})
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Cached screenshot (%d chars) at %s", len(screenshot), self._path)
        return self._path

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        LOGGER.debug("Cleared screenshot cache %s", self._path)

    def _read_payload(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            data = json.loads(text)
            if isinstance(data, Mapping):
                return dict(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("Screenshot cache %s is not valid JSON: %s", self._path, exc)
        except OSError as exc:
            LOGGER.warning("Failed to read screenshot cache %s: %s", self._path, exc)
        return {}
