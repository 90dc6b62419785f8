"""Tests for session bootstrap wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from seeva.services.context_detector import ContextDetector
from seeva.services.local_backend import LocalBackend
from seeva.services.settings import SecretVault, Settings, SettingsStore
from seeva.ui.bootstrap import CAPTURE_CACHE_FILENAME, DATABASE_FILENAME, create_session
from tests.helpers import FakeBackend, ready_settings


def test_create_session_builds_local_backend(tmp_path: Path) -> None:
    components = create_session(Settings(), data_dir=tmp_path / "data")

    assert isinstance(components.backend, LocalBackend)
    assert components.data_dir == tmp_path / "data"
    assert (tmp_path / "data" / DATABASE_FILENAME).exists()
    assert components.session.event_bus is components.event_bus
    assert isinstance(components.session._context_detector, ContextDetector)


def test_data_dir_falls_back_to_settings(tmp_path: Path) -> None:
    settings = Settings(data_dir=str(tmp_path / "from-settings"))

    components = create_session(settings, backend=FakeBackend())

    assert components.data_dir == tmp_path / "from-settings"
    assert components.session._context_detector is None


@pytest.mark.asyncio
async def test_injected_backend_and_persisted_credentials(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))
    backend = FakeBackend()
    components = create_session(ready_settings(), settings_store=store, data_dir=tmp_path, backend=backend)

    async with components.session as session:
        await session.capture_screenshot()
        session.set_key("openai", "sk-persisted")

    await components.aclose()

    assert components.backend is backend
    assert store.load().provider("openai").api_key == "sk-persisted"
    assert (tmp_path / CAPTURE_CACHE_FILENAME).exists()
