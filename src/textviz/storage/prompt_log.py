"""SQLite-backed prompt log with WAL mode.

One row per generation attempt: who asked what, the parsed instructions, the
narrative guide, the resulting HTML and whether it succeeded. The API's
history route and the CLI's ``history`` command read it back newest first.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from textviz.core.contracts.prompt_log import PromptLogRecord, PromptStatus
from textviz.core.errors import PersistenceError
from textviz.core.settings import get_logger

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS prompt_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    prompt TEXT NOT NULL DEFAULT '',
    instructions TEXT,
    narrative_guide TEXT,
    visualization_html TEXT,
    status TEXT NOT NULL,
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_prompt_logs_user_created
    ON prompt_logs (user_id, created_at DESC, id DESC);
"""

_COLUMNS = (
    "id, user_id, prompt, instructions, narrative_guide, visualization_html, "
    "status, error_message, created_at, updated_at"
)


def _dump(value: dict[str, Any] | None) -> str | None:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def _load(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _row_to_record(row: tuple[Any, ...]) -> PromptLogRecord:
    return PromptLogRecord(
        id=row[0],
        user_id=row[1],
        prompt=row[2],
        instructions=_load(row[3]),
        narrative_guide=_load(row[4]),
        visualization_html=row[5],
        status=PromptStatus(row[6]),
        error_message=row[7],
        created_at=datetime.fromisoformat(row[8]),
        updated_at=datetime.fromisoformat(row[9]),
    )


class PromptLogStore:
    """Synchronous SQLite persistence for prompt log records.

    One connection is shared across threads (FastAPI runs sync routes and
    background tasks in a thread pool), serialized by a lock. ``":memory:"``
    is accepted for tests.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._lock = threading.Lock()
        target = str(db_path)
        try:
            if target != ":memory:":
                path = Path(target).expanduser().resolve()
                path.parent.mkdir(parents=True, exist_ok=True)
                target = str(path)
            self._conn = sqlite3.connect(target, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"cannot open prompt log at {db_path}: {exc}") from exc
        self.path = target

    def create(self, record: PromptLogRecord) -> PromptLogRecord:
        """Insert ``record`` and return a copy carrying its new ``id``."""
        try:
            with self._lock:
                cursor = self._conn.execute(
                    "INSERT INTO prompt_logs (user_id, prompt, instructions, narrative_guide, "
                    "visualization_html, status, error_message, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.user_id,
                        record.prompt,
                        _dump(record.instructions),
                        _dump(record.narrative_guide),
                        record.visualization_html,
                        record.status.value,
                        record.error_message,
                        record.created_at.isoformat(),
                        record.updated_at.isoformat(),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"prompt log insert failed: {exc}") from exc
        return record.model_copy(update={"id": cursor.lastrowid})

    def list(self, user_id: str, limit: int = 50, offset: int = 0) -> list[PromptLogRecord]:
        """Return the user's records, most recent first."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM prompt_logs WHERE user_id = ? "
                    "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                    (user_id, max(limit, 0), max(offset, 0)),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"prompt log query failed: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def count(self, user_id: str) -> int:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM prompt_logs WHERE user_id = ?", (user_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"prompt log count failed: {exc}") from exc
        return int(row[0]) if row else 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def record_prompt(store: PromptLogStore | None, record: PromptLogRecord) -> PromptLogRecord | None:
    """Write ``record``; log and swallow any persistence failure."""
    if store is None:
        return None
    try:
        return store.create(record)
    except PersistenceError as exc:
        logger.error("Failed to persist prompt log for user %s: %s", record.user_id, exc)
        return None


__all__ = ["PromptLogStore", "record_prompt"]
