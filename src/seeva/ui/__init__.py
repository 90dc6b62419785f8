"""UI package: session models, the event bus, domain components and presentation."""

from .events import EventBus

__all__ = ["EventBus"]
