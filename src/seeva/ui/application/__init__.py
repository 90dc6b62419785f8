"""Application layer for the chat session.

Coordinator:
    - SessionOrchestrator: Owned session object that wires the domain
      managers, runs the stream pump and exposes a facade to renderers.
"""

from __future__ import annotations

from .session import SessionOrchestrator

__all__: list[str] = ["SessionOrchestrator"]
