"""Logging setup for the Seeva console assistant.

Everything goes to a rotating file under ``~/.seeva/logs`` (or
``$SEEVA_LOG_DIR``). The terminal is shared with the chat prompt, so only
warnings and errors reach stderr, in a short one-line form. Both handlers
mask API keys before a record is written.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from pathlib import Path

__all__ = ["SecretRedactingFilter", "get_log_path", "setup_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".seeva" / "logs"
_LOG_FILENAME = "seeva.log"
_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONSOLE_FORMAT = "seeva: %(levelname)s: %(message)s"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai", "PySide6")

# OpenAI/Anthropic style ``sk-...`` keys, Google ``AIza...`` keys and bearer tokens.
_SECRET_PATTERNS = (
    re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"),
    re.compile(r"\bAIza[0-9A-Za-z_-]{20,}"),
    re.compile(r"(?i)(?<=bearer )[A-Za-z0-9._-]{8,}"),
)
_MASK = "[redacted]"

_CONFIGURED = False
_LOG_PATH: Path | None = None


class SecretRedactingFilter(logging.Filter):
    """Replaces API-key-shaped substrings in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Malformed format arguments; the handler reports those itself.
            return True
        redacted = message
        for pattern in _SECRET_PATTERNS:
            redacted = pattern.sub(_MASK, redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the file and console handlers on the root logger; returns the log file path."""

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILENAME
    redactor = SecretRedactingFilter()

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    file_handler.addFilter(redactor)
    handlers: list[logging.Handler] = [file_handler]

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(max(level, logging.WARNING))
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        console_handler.addFilter(redactor)
        handlers.append(console_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_libraries(level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the log file chosen by the last :func:`setup_logging` call."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get("SEEVA_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def _quiet_libraries(root_level: int) -> None:
    # HTTP client chatter would otherwise flood the file at DEBUG.
    quiet_level = max(root_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
