"""Parsing helpers for console slash commands."""

from __future__ import annotations

import shlex
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConsoleCommandType(str, Enum):
    """Commands handled locally by the console instead of being sent."""

    NEW = "new"
    THREADS = "threads"
    SWITCH = "switch"
    RENAME = "rename"
    DELETE = "delete"
    CLEAR = "clear"
    CAPTURE = "capture"
    CONTEXT = "context"
    DROP = "drop"
    PROVIDER = "provider"
    KEY = "key"
    VALIDATE = "validate"
    HISTORY = "history"
    DELETE_MESSAGE = "delmsg"
    HELP = "help"
    QUIT = "quit"


@dataclass(slots=True)
class ConsoleCommand:
    """Parsed representation of a console command string."""

    command: ConsoleCommandType
    args: dict[str, Any] = field(default_factory=dict)
    raw: str = ""


_COMMAND_PREFIX = "/"
_COMMAND_ALIASES: dict[str, ConsoleCommandType] = {
    **{member.value: member for member in ConsoleCommandType},
    "ls": ConsoleCommandType.THREADS,
    "sw": ConsoleCommandType.SWITCH,
    "rm": ConsoleCommandType.DELETE,
    "shot": ConsoleCommandType.CAPTURE,
    "?": ConsoleCommandType.HELP,
    "q": ConsoleCommandType.QUIT,
    "exit": ConsoleCommandType.QUIT,
}

HELP_TEXT = """\
/new [name]            start a new conversation
/threads               list conversations
/switch <n|id>         make conversation n current
/rename <n|id> <name>  rename a conversation
/delete <n|id>         delete a conversation
/clear                 delete every conversation
/capture               attach a screenshot to the next message
/drop                  discard the pending screenshot
/context               detect the active window to send as context
/provider <id>         choose the provider used for sends
/key <provider> <key>  store an API key (validated immediately)
/validate [provider]   re-validate a stored API key
/history               show the current conversation
/delmsg <n|id>         delete message n of the current conversation
/help                  show this help
/quit                  exit
Any other line is sent to the assistant."""


def is_command(text: str) -> bool:
    return (text or "").lstrip().startswith(_COMMAND_PREFIX)


def parse_console_command(text: str) -> ConsoleCommand | None:
    """Parse ``text`` into a :class:`ConsoleCommand` when it starts with ``/``.

    Returns None for plain chat input. Raises :class:`ValueError` with a
    user-readable message for unknown commands or missing arguments.
    """

    normalized = (text or "").strip()
    if not normalized or not normalized.startswith(_COMMAND_PREFIX):
        return None
    remainder = normalized[len(_COMMAND_PREFIX) :].strip()
    if not remainder:
        raise ValueError("Command is missing a verb. Try /help.")
    tokens = _tokenize(remainder)
    verb = tokens.popleft().lower()
    command = _COMMAND_ALIASES.get(verb)
    if command is None:
        raise ValueError(f"Unknown command '/{verb}'. Try /help.")
    args = _parse_args(command, tokens)
    return ConsoleCommand(command=command, args=args, raw=normalized)


def parse_target(token: str) -> int | str:
    """Interpret ``token`` as a 1-based list index when numeric, otherwise as an id."""

    stripped = token.strip()
    if stripped.isdigit():
        index = int(stripped, 10)
        if index < 1:
            raise ValueError("Indexes start at 1.")
        return index
    return stripped


def _parse_args(command: ConsoleCommandType, tokens: deque[str]) -> dict[str, Any]:
    if command is ConsoleCommandType.NEW:
        name = " ".join(tokens).strip()
        return {"name": name} if name else {}
    if command in (
        ConsoleCommandType.SWITCH,
        ConsoleCommandType.DELETE,
        ConsoleCommandType.DELETE_MESSAGE,
    ):
        target = _require(tokens, f"/{command.value} needs a number or id.")
        return {"target": parse_target(target)}
    if command is ConsoleCommandType.RENAME:
        target = _require(tokens, "/rename needs a conversation and a new name.")
        name = " ".join(tokens).strip()
        if not name:
            raise ValueError("/rename needs a conversation and a new name.")
        return {"target": parse_target(target), "name": name}
    if command is ConsoleCommandType.PROVIDER:
        return {"provider": _require(tokens, "/provider needs a provider id.").lower()}
    if command is ConsoleCommandType.KEY:
        provider = _require(tokens, "/key needs a provider and a key.").lower()
        key = _require(tokens, "/key needs a provider and a key.")
        return {"provider": provider, "key": key}
    if command is ConsoleCommandType.VALIDATE:
        return {"provider": tokens.popleft().lower()} if tokens else {}
    return {}


def _require(tokens: deque[str], message: str) -> str:
    if not tokens:
        raise ValueError(message)
    return tokens.popleft()


def _tokenize(text: str) -> deque[str]:
    try:
        parts = shlex.split(text, posix=True)
    except ValueError as exc:
        raise ValueError(f"Unable to parse command: {exc}") from exc
    return deque(parts)


__all__ = [
    "ConsoleCommand",
    "ConsoleCommandType",
    "HELP_TEXT",
    "is_command",
    "parse_console_command",
    "parse_target",
]
