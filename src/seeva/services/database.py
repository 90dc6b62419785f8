"""SQLite persistence for threads, messages and attached images."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any, Sequence

from ..ui.models.chat_models import Message, Thread

__all__ = ["ThreadDatabase"]

LOGGER = logging.getLogger(__name__)
_CURRENT_THREAD_KEY = "current_thread_id"
_THREAD_SELECT = """
    SELECT t.id, t.name, t.created_at, t.updated_at,
           COUNT(m.id) AS message_count,
           (SELECT content FROM messages
             WHERE thread_id = t.id
             ORDER BY created_at DESC, rowid DESC LIMIT 1) AS last_message
    FROM threads t
    LEFT JOIN messages m ON m.thread_id = t.id
"""


class ThreadDatabase:
    """SQLite-backed store for threads and their timelines.

    Calls are synchronous and serialized by a re-entrant lock; the local
    backend runs them in the default executor.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._path = Path(db_path)
        if str(db_path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._lock = RLock()
        self._create_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _create_schema(self) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS threads (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        updated_at INTEGER NOT NULL,
                        metadata TEXT
                    )
                    """
                )
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS messages (
                        id TEXT PRIMARY KEY,
                        thread_id TEXT NOT NULL,
                        role TEXT NOT NULL,
                        content TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        metadata TEXT,
                        FOREIGN KEY (thread_id) REFERENCES threads(id) ON DELETE CASCADE
                    )
                    """
                )
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS images (
                        id TEXT PRIMARY KEY,
                        message_id TEXT NOT NULL,
                        position INTEGER NOT NULL,
                        data TEXT NOT NULL,
                        mime_type TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
                    )
                    """
                )
                self._conn.execute(
                    "CREATE TABLE IF NOT EXISTS state (key TEXT PRIMARY KEY, value TEXT)"
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id)"
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at)"
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_images_message ON images(message_id)"
                )

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def create_thread(self, thread: Thread) -> Thread:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO threads (id, name, created_at, updated_at, metadata) VALUES (?, ?, ?, ?, NULL)",
                    (thread.id, thread.name, thread.created_at, thread.updated_at),
                )
        LOGGER.debug("Created thread %s (%s)", thread.id, thread.name)
        return self.get_thread(thread.id) or thread

    def get_thread(self, thread_id: str) -> Thread | None:
        with self._lock:
            row = self._conn.execute(
                f"{_THREAD_SELECT} WHERE t.id = ? GROUP BY t.id", (thread_id,)
            ).fetchone()
        return self._row_to_thread(row) if row is not None else None

    def list_threads(self) -> list[Thread]:
        """Return all threads, most recently updated first."""
        with self._lock:
            rows = self._conn.execute(
                f"{_THREAD_SELECT} GROUP BY t.id ORDER BY t.updated_at DESC, t.rowid DESC"
            ).fetchall()
        return [self._row_to_thread(row) for row in rows]

    def rename_thread(self, thread_id: str, name: str, updated_at: int) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE threads SET name = ?, updated_at = ? WHERE id = ?",
                    (name, updated_at, thread_id),
                )
        return cursor.rowcount > 0

    def touch_thread(self, thread_id: str, updated_at: int) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "UPDATE threads SET updated_at = ? WHERE id = ?", (updated_at, thread_id)
                )

    def delete_thread(self, thread_id: str) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM threads WHERE id = ?", (thread_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def create_message(self, message: Message) -> Message:
        metadata = json.dumps(dict(message.metadata)) if message.metadata else None
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO messages (id, thread_id, role, content, created_at, metadata) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        message.id,
                        message.thread_id,
                        message.role,
                        message.content,
                        message.created_at,
                        metadata,
                    ),
                )
                self._conn.executemany(
                    "INSERT INTO images (id, message_id, position, data, mime_type, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                    [
                        (f"{message.id}-{index}", message.id, index, data, "image/png", message.created_at)
                        for index, data in enumerate(message.images)
                    ],
                )
                self._conn.execute(
                    "UPDATE threads SET updated_at = MAX(updated_at, ?) WHERE id = ?",
                    (message.created_at, message.thread_id),
                )
        return message

    def get_messages(self, thread_id: str) -> list[Message]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, thread_id, role, content, created_at, metadata FROM messages
                WHERE thread_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (thread_id,),
            ).fetchall()
            images = self._images_for([row["id"] for row in rows])
        return [self._row_to_message(row, images.get(row["id"], ())) for row in rows]

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, thread_id, role, content, created_at, metadata FROM messages WHERE id = ?",
                (message_id,),
            ).fetchone()
            if row is None:
                return None
            images = self._images_for([message_id])
        return self._row_to_message(row, images.get(message_id, ()))

    def delete_message(self, message_id: str) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Key/value state
    # ------------------------------------------------------------------

    def get_current_thread_id(self) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM state WHERE key = ?", (_CURRENT_THREAD_KEY,)
            ).fetchone()
        return row["value"] if row is not None else None

    def set_current_thread_id(self, thread_id: str | None) -> None:
        with self._lock:
            with self._conn:
                if thread_id is None:
                    self._conn.execute("DELETE FROM state WHERE key = ?", (_CURRENT_THREAD_KEY,))
                else:
                    self._conn.execute(
                        "INSERT INTO state (key, value) VALUES (?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (_CURRENT_THREAD_KEY, thread_id),
                    )

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:  # pragma: no cover - close on a broken connection
                LOGGER.debug("Failed to close thread database", exc_info=True)

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _images_for(self, message_ids: Sequence[str]) -> dict[str, tuple[str, ...]]:
        if not message_ids:
            return {}
        placeholders = ",".join("?" for _ in message_ids)
        rows = self._conn.execute(
            f"SELECT message_id, data FROM images WHERE message_id IN ({placeholders}) ORDER BY position ASC",
            list(message_ids),
        ).fetchall()
        grouped: dict[str, list[str]] = {}
        for row in rows:
            grouped.setdefault(row["message_id"], []).append(row["data"])
        return {key: tuple(values) for key, values in grouped.items()}

    @staticmethod
    def _row_to_thread(row: sqlite3.Row) -> Thread:
        return Thread(
            id=row["id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row["message_count"],
            last_message_preview=row["last_message"],
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row, images: Sequence[str]) -> Message:
        metadata: dict[str, Any] = {}
        if row["metadata"]:
            try:
                metadata = json.loads(row["metadata"])
            except json.JSONDecodeError:
                LOGGER.warning("Message %s has unreadable metadata", row["id"])
        return Message(
            id=row["id"],
            thread_id=row["thread_id"],
            role=row["role"],
            content=row["content"],
            images=tuple(images),
            created_at=row["created_at"],
            metadata=metadata,
        )
