"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from seeva.services.settings import Settings
from seeva.ui.domain.notifier import Notifier
from seeva.ui.events import EventBus
from tests.helpers import FakeBackend, ready_settings


@pytest.fixture(autouse=True)
def _clear_seeva_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment overrides from the developer's shell must not leak into tests."""
    for name in list(os.environ):
        if name.startswith("SEEVA_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def notifier(event_bus: EventBus) -> Notifier:
    return Notifier(event_bus)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings() -> Settings:
    return ready_settings()
