"""Error taxonomy for the session layer."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "RequestError",
    "SessionError",
    "StreamError",
    "ValidationError",
    "extract_error_message",
]

_UNKNOWN_ERROR = "Unknown error occurred"


class SessionError(Exception):
    """Base class for failures surfaced by the session components."""


class ValidationError(SessionError):
    """A send precondition failed (missing or unvalidated credential).

    Raised before any backend call is made.
    """

    def __init__(self, message: str, *, provider: str | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.reason = reason


class RequestError(SessionError):
    """A backend request was rejected; ``str(error)`` is already user-readable."""


class StreamError(SessionError):
    """A streamed reply failed part-way through."""


def extract_error_message(error: Any) -> str:
    """Return the most specific human-readable message carried by ``error``.

    Handles exceptions (following ``__cause__`` when the outer message is
    empty), plain strings, and mappings shaped like ``{"message": ...}`` or
    ``{"error": {"message": ...}}`` including SDK exceptions exposing such a
    mapping as ``body``.
    """

    seen: set[int] = set()
    current: Any = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, str):
            text = current.strip()
            return text or _UNKNOWN_ERROR
        if isinstance(current, Mapping):
            nested = current.get("error")
            if nested is not None and not isinstance(nested, (str, int, float)):
                current = nested
                continue
            message = current.get("message") or nested
            if message:
                return str(message).strip() or _UNKNOWN_ERROR
            return _UNKNOWN_ERROR
        if isinstance(current, BaseException):
            body = getattr(current, "body", None)
            if isinstance(body, Mapping):
                nested_message = extract_error_message(body)
                if nested_message != _UNKNOWN_ERROR:
                    return nested_message
            text = str(current).strip()
            if text:
                return text
            current = current.__cause__ or current.__context__
            continue
        message = getattr(current, "message", None)
        if message:
            return str(message).strip() or _UNKNOWN_ERROR
        return str(current).strip() or _UNKNOWN_ERROR
    return _UNKNOWN_ERROR
