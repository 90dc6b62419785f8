"""Presentation layer for the chat session.

Thin components that respond to session events and delegate user actions
to the :class:`~seeva.ui.application.session.SessionOrchestrator`:

1. **ConsoleRenderer**: Subscribes to events and writes them as text
2. **ConsoleApp**: Reads input lines, runs slash commands, sends the rest

Design Principles:
    - No session rules here, only rendering and input dispatch
    - Testable in isolation with in-memory text streams
"""

from __future__ import annotations

from .console import ConsoleApp, ConsoleRenderer, format_message, format_thread_list

__all__: list[str] = ["ConsoleApp", "ConsoleRenderer", "format_message", "format_thread_list"]
