"""Tests for the logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from seeva.utils import logging as logging_utils


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_writes_rotating_file(tmp_path: Path, restore_root_logger: None) -> None:
    path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    logging.getLogger("seeva.tests").info("hello from the test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert path == tmp_path / "seeva.log"
    assert logging_utils.get_log_path() == path
    assert "hello from the test" in path.read_text(encoding="utf-8")


def test_setup_logging_honours_env_directory(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, restore_root_logger: None
) -> None:
    monkeypatch.setenv("SEEVA_LOG_DIR", str(tmp_path / "env-logs"))

    path = logging_utils.setup_logging(console=False, force=True)

    assert path.parent == tmp_path / "env-logs"


def test_noisy_libraries_are_quietened(tmp_path: Path, restore_root_logger: None) -> None:
    logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING


def test_second_call_without_force_is_a_no_op(tmp_path: Path, restore_root_logger: None) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False, force=True)

    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert second == first
    assert not (tmp_path / "b").exists()


def test_api_keys_are_masked_in_the_log_file(tmp_path: Path, restore_root_logger: None) -> None:
    path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    logging.getLogger("seeva.tests").info("validating key %s", "sk-live-1234567890abcdef")
    logging.getLogger("seeva.tests").info("Authorization: Bearer abcdefghijklmnop")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text = path.read_text(encoding="utf-8")
    assert "sk-live-1234567890abcdef" not in text
    assert "abcdefghijklmnop" not in text
    assert text.count("[redacted]") == 2


def test_redacting_filter_leaves_plain_records_untouched() -> None:
    record = logging.LogRecord("seeva", logging.INFO, __file__, 1, "sent %d messages", (3,), None)

    assert logging_utils.SecretRedactingFilter().filter(record) is True
    assert record.args == (3,)
    assert record.getMessage() == "sent 3 messages"


def test_console_only_shows_warnings(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], restore_root_logger: None
) -> None:
    logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=True, force=True)

    logging.getLogger("seeva.tests").info("chatty detail")
    logging.getLogger("seeva.tests").warning("disk nearly full")

    err = capsys.readouterr().err
    assert "chatty detail" not in err
    assert "seeva: WARNING: disk nearly full" in err
