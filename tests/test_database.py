"""Tests for the SQLite thread database."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from seeva.services.database import ThreadDatabase
from seeva.ui.models.chat_models import Message, Thread


@pytest.fixture
def db(tmp_path: Path) -> Iterator[ThreadDatabase]:
    database = ThreadDatabase(tmp_path / "data" / "seeva.db")
    yield database
    database.close()


def _thread(thread_id: str, at: int = 1_000) -> Thread:
    return Thread(id=thread_id, name=f"Thread {thread_id}", created_at=at, updated_at=at)


def _message(message_id: str, thread_id: str, at: int, content: str = "hi", **kwargs) -> Message:
    return Message(
        id=message_id,
        thread_id=thread_id,
        role=kwargs.pop("role", "user"),
        content=content,
        created_at=at,
        **kwargs,
    )


def test_creates_parent_directory(tmp_path: Path) -> None:
    database = ThreadDatabase(tmp_path / "nested" / "dir" / "seeva.db")
    try:
        assert database.path.parent.is_dir()
    finally:
        database.close()


def test_list_threads_orders_by_recent_activity(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a", 1_000))
    db.create_thread(_thread("b", 2_000))
    db.create_message(_message("m1", "a", 3_000))

    assert [thread.id for thread in db.list_threads()] == ["a", "b"]


def test_thread_summary_counts_and_preview(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))
    db.create_message(_message("m1", "a", 2_000, "first"))
    db.create_message(_message("m2", "a", 3_000, "second", role="assistant"))

    thread = db.get_thread("a")

    assert thread is not None
    assert thread.message_count == 2
    assert thread.last_message_preview == "second"
    assert thread.updated_at == 3_000


def test_empty_thread_summary(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))

    thread = db.get_thread("a")

    assert thread is not None
    assert thread.message_count == 0
    assert thread.last_message_preview is None


def test_messages_roundtrip_with_images_and_metadata(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))
    db.create_message(_message("m1", "a", 2_000, "look", images=("aW1nMQ==", "aW1nMg==")))
    db.create_message(
        _message("m2", "a", 2_001, "ok", role="assistant", metadata={"model": "gpt-5-mini"})
    )

    first, second = db.get_messages("a")

    assert first.images == ("aW1nMQ==", "aW1nMg==")
    assert first.role == "user"
    assert dict(second.metadata) == {"model": "gpt-5-mini"}
    assert db.get_message("m1") == first


def test_messages_with_equal_timestamps_keep_insertion_order(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))
    for index in range(3):
        db.create_message(_message(f"m{index}", "a", 5_000, str(index)))

    assert [message.content for message in db.get_messages("a")] == ["0", "1", "2"]


def test_rename_thread(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))

    assert db.rename_thread("a", "Renamed", 9_000) is True
    assert db.rename_thread("missing", "x", 9_000) is False
    assert db.get_thread("a").name == "Renamed"


def test_delete_thread_cascades(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))
    db.create_message(_message("m1", "a", 2_000, images=("aW1n",)))

    assert db.delete_thread("a") is True
    assert db.delete_thread("a") is False
    assert db.get_messages("a") == []
    assert db.get_message("m1") is None


def test_delete_message(db: ThreadDatabase) -> None:
    db.create_thread(_thread("a"))
    db.create_message(_message("m1", "a", 2_000))

    assert db.delete_message("m1") is True
    assert db.delete_message("m1") is False


def test_current_thread_pointer(db: ThreadDatabase) -> None:
    assert db.get_current_thread_id() is None

    db.set_current_thread_id("a")
    db.set_current_thread_id("b")
    assert db.get_current_thread_id() == "b"

    db.set_current_thread_id(None)
    assert db.get_current_thread_id() is None


def test_data_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "seeva.db"
    first = ThreadDatabase(path)
    first.create_thread(_thread("a"))
    first.set_current_thread_id("a")
    first.close()

    second = ThreadDatabase(path)
    try:
        assert [thread.id for thread in second.list_threads()] == ["a"]
        assert second.get_current_thread_id() == "a"
    finally:
        second.close()
