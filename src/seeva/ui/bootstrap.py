"""Application bootstrap module.

This module provides the factory function that creates and wires together
the session components, returning a session ready to start.

The bootstrap process:
1. Creates the event bus
2. Opens the thread database and the durable capture store
3. Creates the local backend (stream channel, screen grabber, providers)
   and the active-window context detector
4. Instantiates the session orchestrator with all dependencies
5. Returns configured components

Usage:
    from seeva.ui.bootstrap import create_session

    components = create_session(settings, settings_store=store)
    async with components.session:
        ...
    await components.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .events import EventBus

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from ..services.backend_types import Backend
    from ..services.capture_store import CaptureStore
    from ..services.context_detector import ContextDetector
    from ..services.settings import Settings, SettingsStore
    from .application.session import SessionOrchestrator

_LOGGER = logging.getLogger(__name__)

DATABASE_FILENAME = "seeva.db"
CAPTURE_CACHE_FILENAME = "capture_cache.json"


def default_data_dir() -> Path:
    return Path.home() / ".seeva"


@dataclass(slots=True)
class SessionComponents:
    """Everything :func:`create_session` built."""

    event_bus: EventBus
    session: "SessionOrchestrator"
    backend: "Backend"
    data_dir: Path

    async def aclose(self) -> None:
        await self.session.shutdown()
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()


def create_session(
    settings: "Settings",
    *,
    settings_store: "SettingsStore | None" = None,
    data_dir: Path | None = None,
    backend: "Backend | None" = None,
    capture_store: "CaptureStore | None" = None,
    context_detector: "ContextDetector | None" = None,
) -> SessionComponents:
    """Create and wire all session components.

    Args:
        settings: Loaded settings (credentials, tunables).
        settings_store: Store used to persist credential changes. When None,
            changes stay in memory.
        data_dir: Directory holding the database and capture cache. Defaults
            to ``settings.data_dir`` or ``~/.seeva``.
        backend: Optional pre-built backend (tests inject fakes here).
        capture_store: Optional pre-built durable capture store.
        context_detector: Optional active-window detector. Built alongside the
            local backend when neither is injected.

    Returns:
        The wired :class:`SessionComponents`.
    """
    _LOGGER.info("Bootstrapping session...")

    # =========================================================================
    # 1. Create Event Bus
    # =========================================================================
    event_bus = EventBus()
    _LOGGER.debug("Created event bus")

    # =========================================================================
    # 2. Resolve storage
    # =========================================================================
    from ..services.capture_store import CaptureStore

    root = Path(data_dir or settings.data_dir or default_data_dir()).expanduser()
    if capture_store is None:
        capture_store = CaptureStore(root / CAPTURE_CACHE_FILENAME)
    _LOGGER.debug("Using data directory %s", root)

    # =========================================================================
    # 3. Create Backend
    # =========================================================================
    if backend is None:
        from ..services.database import ThreadDatabase
        from ..services.local_backend import LocalBackend

        database = ThreadDatabase(root / DATABASE_FILENAME)
        backend = LocalBackend(database, settings=settings)
        _LOGGER.debug("Created local backend")
        if context_detector is None:
            from ..services.context_detector import ContextDetector

            context_detector = ContextDetector()

    # =========================================================================
    # 4. Create Session Orchestrator
    # =========================================================================
    from .application.session import SessionOrchestrator

    persist = settings_store.save if settings_store is not None else None
    session = SessionOrchestrator(
        backend,
        settings=settings,
        event_bus=event_bus,
        capture_store=capture_store,
        persist_settings=persist,
        context_detector=context_detector,
    )
    _LOGGER.info("Session bootstrap complete")

    return SessionComponents(event_bus=event_bus, session=session, backend=backend, data_dir=root)


__all__ = ["CAPTURE_CACHE_FILENAME", "DATABASE_FILENAME", "SessionComponents", "create_session"]
