"""SQLite backed persistence for verbalist tasks."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .models import TaskRecord

APP_DIR = Path.home() / ".verbalist"
DB_PATH = APP_DIR / "tasks.db"
SCHEMA_VERSION = 1


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


class TaskNotFoundError(StorageError):
    """Raised when a task id is not present in the database."""


class Storage:
    """Manage persistence of tasks using SQLite."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = db_path or DB_PATH
        self._ensure_initialised()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open task database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            row = cur.fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    def add_task(self, record: TaskRecord) -> TaskRecord:
        title = _normalise_title(record.title)
        now = datetime.utcnow().isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tasks(id, title, completed, sort_order, created_at, updated_at)
                    VALUES(?, ?, ?, ?, ?, ?)
                    """,
                    (record.id, title, int(record.completed), record.sort_order, now, now),
                )
        except sqlite3.IntegrityError as exc:
            raise StorageError(f"Task with id {record.id} already exists") from exc
        return self.get_task(record.id)

    def list_tasks(self) -> Iterator[TaskRecord]:
        with self._connect() as conn:
            for row in conn.execute("SELECT * FROM tasks ORDER BY created_at DESC"):
                yield _row_to_record(row)

    def get_task(self, task_id: str) -> TaskRecord:
        with self._connect() as conn:
            cur = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
            row = cur.fetchone()
            if row is None:
                raise TaskNotFoundError(f"Task with id {task_id} not found")
            return _row_to_record(row)

    def update_task(self, record: TaskRecord) -> TaskRecord:
        title = _normalise_title(record.title)
        now = datetime.utcnow().isoformat()
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE tasks SET title = ?, completed = ?, sort_order = ?, updated_at = ? WHERE id = ?",
                (title, int(record.completed), record.sort_order, now, record.id),
            )
            if cur.rowcount == 0:
                raise TaskNotFoundError(f"Task with id {record.id} not found")
        return self.get_task(record.id)

    def update_many(self, records: Iterable[TaskRecord]) -> List[TaskRecord]:
        """Update every record that still exists; missing ids are skipped."""

        updated = []
        for record in records:
            try:
                updated.append(self.update_task(record))
            except StorageError:
                continue
        return updated

    def delete_task(self, task_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))


def _normalise_title(title: str) -> str:
    title = title.strip()
    if not title:
        raise StorageError("Task title cannot be empty")
    return title


def _row_to_record(row: sqlite3.Row) -> TaskRecord:
    return TaskRecord(
        id=row["id"],
        title=row["title"],
        completed=bool(row["completed"]),
        sort_order=row["sort_order"],
    )
