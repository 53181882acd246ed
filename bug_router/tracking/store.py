"""Persistent storage for issue records."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from ..errors import ActiveRecordExistsError
from ..models import TERMINAL_STATES, Fingerprint, IssueRecord, LifecycleState, TrainingExample


class IssueStore(Protocol):
    """Keyed store for issue records.

    Fingerprint lookups only ever see non-terminal records.
    """

    def get(self, record_id: str) -> IssueRecord | None: ...

    def find_active(self, fingerprint: Fingerprint) -> IssueRecord | None: ...

    def insert(self, record: IssueRecord) -> None: ...

    def upsert(self, record: IssueRecord) -> None: ...

    def list_stuck(
        self,
        now: datetime,
        thresholds: Mapping[LifecycleState, timedelta],
        limit: int | None = None,
    ) -> list[IssueRecord]: ...

    def find_by_message(self, message_ref: str) -> IssueRecord | None: ...

    def get_marker(self, name: str) -> str | None: ...

    def set_marker(self, name: str, value: str) -> None: ...

    def add_training_example(self, example: TrainingExample) -> None: ...


def _sortable(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteIssueStore:
    """SQLite-backed :class:`IssueStore`.

    The full record is kept as JSON; the columns exist for lookups. A partial
    unique index allows at most one non-terminal record per content hash.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Open the store.

        Args:
            db_path: Path to SQLite database file. If None, uses in-memory database.
        """
        self._db_path = str(db_path) if db_path else ":memory:"
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS issue_records (
                    id TEXT PRIMARY KEY,
                    combined_key TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    content_bucket_key TEXT NOT NULL,
                    state TEXT NOT NULL,
                    terminal INTEGER NOT NULL,
                    message_ref TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    record_data TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS run_markers (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS training_examples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_id TEXT NOT NULL,
                    text TEXT NOT NULL,
                    routed_action TEXT,
                    confidence REAL,
                    added_by TEXT NOT NULL,
                    added_at TEXT NOT NULL,
                    note TEXT NOT NULL DEFAULT ''
                )
            """)
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_active_content
                ON issue_records(content_hash) WHERE terminal = 0
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_combined_key
                ON issue_records(combined_key, terminal)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_content_bucket
                ON issue_records(content_bucket_key, terminal)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_state_updated
                ON issue_records(state, updated_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_message_ref
                ON issue_records(message_ref)
            """)
            self._conn.commit()

    @staticmethod
    def _row_values(record: IssueRecord) -> tuple:
        fingerprint = record.fingerprint
        return (
            record.id,
            fingerprint.combined_key,
            fingerprint.content_hash,
            fingerprint.content_bucket_key,
            record.state.value,
            int(record.is_terminal),
            record.message_ref,
            _sortable(record.created_at),
            _sortable(record.updated_at),
            json.dumps(record.to_dict(), sort_keys=True),
        )

    @staticmethod
    def _to_record(row: sqlite3.Row | None) -> IssueRecord | None:
        if row is None:
            return None
        return IssueRecord.from_dict(json.loads(row["record_data"]))

    def get(self, record_id: str) -> IssueRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_data FROM issue_records WHERE id = ?", (record_id,)
            ).fetchone()
        return self._to_record(row)

    def find_active(self, fingerprint: Fingerprint) -> IssueRecord | None:
        """Look up a non-terminal record by combined key, then content, then content+bucket."""

        searches = (
            ("combined_key", fingerprint.combined_key),
            ("content_hash", fingerprint.content_hash),
            ("content_bucket_key", fingerprint.content_bucket_key),
        )
        with self._lock:
            for column, key in searches:
                row = self._conn.execute(
                    f"SELECT record_data FROM issue_records WHERE {column} = ? AND terminal = 0 "
                    "ORDER BY created_at DESC LIMIT 1",
                    (key,),
                ).fetchone()
                if row is not None:
                    return self._to_record(row)
        return None

    def insert(self, record: IssueRecord) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO issue_records (id, combined_key, content_hash, content_bucket_key, state, "
                    "terminal, message_ref, created_at, updated_at, record_data) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._row_values(record),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ActiveRecordExistsError(record.fingerprint.content_hash) from exc

    def upsert(self, record: IssueRecord) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO issue_records (id, combined_key, content_hash, content_bucket_key, state, "
                    "terminal, message_ref, created_at, updated_at, record_data) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET state = excluded.state, terminal = excluded.terminal, "
                    "message_ref = excluded.message_ref, updated_at = excluded.updated_at, "
                    "record_data = excluded.record_data",
                    self._row_values(record),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ActiveRecordExistsError(record.fingerprint.content_hash) from exc

    def list_stuck(
        self,
        now: datetime,
        thresholds: Mapping[LifecycleState, timedelta],
        limit: int | None = None,
    ) -> list[IssueRecord]:
        """Non-terminal records whose time in state has reached the state's threshold."""

        clauses: list[str] = []
        params: list[object] = []
        for state, threshold in thresholds.items():
            if state in TERMINAL_STATES:
                continue
            clauses.append("(state = ? AND updated_at <= ?)")
            params.extend((state.value, _sortable(now - threshold)))
        if not clauses:
            return []

        query = (
            "SELECT record_data FROM issue_records WHERE terminal = 0 AND ("
            + " OR ".join(clauses)
            + ") ORDER BY updated_at ASC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [record for record in (self._to_record(row) for row in rows) if record is not None]

    def find_by_message(self, message_ref: str) -> IssueRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_data FROM issue_records WHERE message_ref = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (message_ref,),
            ).fetchone()
        return self._to_record(row)

    def all_records(self) -> Iterable[IssueRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_data FROM issue_records ORDER BY created_at ASC"
            ).fetchall()
        return [IssueRecord.from_dict(json.loads(row["record_data"])) for row in rows]

    def get_marker(self, name: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM run_markers WHERE name = ?", (name,)).fetchone()
        return row["value"] if row else None

    def set_marker(self, name: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO run_markers (name, value) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
                (name, value),
            )
            self._conn.commit()

    def add_training_example(self, example: TrainingExample) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO training_examples (record_id, text, routed_action, confidence, added_by, added_at, note) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    example.record_id,
                    example.text,
                    example.routed_action,
                    example.confidence,
                    example.added_by,
                    _sortable(example.added_at),
                    example.note,
                ),
            )
            self._conn.commit()

    def list_training_examples(self) -> list[TrainingExample]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_id, text, routed_action, confidence, added_by, added_at, note "
                "FROM training_examples ORDER BY id ASC"
            ).fetchall()
        return [
            TrainingExample(
                record_id=row["record_id"],
                text=row["text"],
                routed_action=row["routed_action"],
                confidence=row["confidence"],
                added_by=row["added_by"],
                added_at=datetime.fromisoformat(row["added_at"]),
                note=row["note"],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SQLiteIssueStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
