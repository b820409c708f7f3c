"""SQLite backed persistence for dictation records and usage stats."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List

from .config import APP_DIR
from .errors import StoreError
from .models import AggregateStats, Record, utcnow

DB_PATH = APP_DIR / "fluency.db"
SCHEMA_VERSION = 1

__all__ = ["DB_PATH", "Storage", "StoreError"]


class Storage:
    """Manage persistence of records and the aggregate stats row using SQLite.

    Every mutation runs under a single re-entrant lock so that counter
    increments, resets and sync-state flips coming from different threads
    never interleave.
    """

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._lock = threading.RLock()
        self._ensure_initialised()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    duration REAL NOT NULL,
                    word_count INTEGER NOT NULL,
                    remote_id TEXT,
                    is_synced INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stats (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    total_words INTEGER NOT NULL,
                    total_transcriptions INTEGER NOT NULL,
                    total_duration REAL NOT NULL,
                    first_use_at TEXT NOT NULL
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

    # Records

    def append(self, record: Record) -> Record:
        with self._lock, self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO records(id, text, created_at, duration, word_count, remote_id, is_synced)
                    VALUES(?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.text,
                        _format_timestamp(record.created_at),
                        record.duration_seconds,
                        record.word_count,
                        record.remote_id,
                        int(record.is_synced),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise StoreError(f"Record with id {record.id} already exists") from exc
        return record

    def get(self, record_id: str) -> Record:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            raise StoreError(f"Record with id {record_id} not found")
        return _row_to_record(row)

    def list_all(self) -> List[Record]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM records ORDER BY created_at DESC, rowid DESC").fetchall()
        return [_row_to_record(row) for row in rows]

    def list_unsynced(self) -> List[Record]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM records WHERE is_synced = 0 ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def search(self, query: str) -> List[Record]:
        needle = query.lower()
        return [record for record in self.list_all() if needle in record.text.lower()]

    def delete(self, record_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cur = conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
        return cur.rowcount > 0

    def delete_all(self) -> int:
        with self._lock, self._connect() as conn:
            cur = conn.execute("DELETE FROM records")
        return cur.rowcount

    def mark_synced(self, record_id: str, remote_id: str) -> bool:
        """Flip a record to synced. Returns False when it was already synced or is gone."""
        if not remote_id:
            raise StoreError("A remote id is required to mark a record as synced")
        with self._lock, self._connect() as conn:
            cur = conn.execute(
                "UPDATE records SET remote_id = ?, is_synced = 1 WHERE id = ? AND is_synced = 0",
                (remote_id, record_id),
            )
        return cur.rowcount == 1

    # Stats

    def stats(self) -> AggregateStats:
        with self._lock, self._connect() as conn:
            return self._read_stats(conn)

    def record_event(self, word_count: int, duration_seconds: float) -> AggregateStats:
        if word_count < 0 or duration_seconds < 0:
            raise StoreError("Word count and duration must not be negative")
        with self._lock, self._connect() as conn:
            self._ensure_stats(conn)
            conn.execute(
                """
                UPDATE stats
                SET total_words = total_words + ?,
                    total_transcriptions = total_transcriptions + 1,
                    total_duration = total_duration + ?
                WHERE id = 1
                """,
                (int(word_count), float(duration_seconds)),
            )
            return self._read_stats(conn)

    def reset(self) -> AggregateStats:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO stats(id, total_words, total_transcriptions, total_duration, first_use_at)
                VALUES(1, 0, 0, 0, ?)
                ON CONFLICT(id) DO UPDATE SET
                    total_words = 0,
                    total_transcriptions = 0,
                    total_duration = 0,
                    first_use_at = excluded.first_use_at
                """,
                (_format_timestamp(utcnow()),),
            )
            return self._read_stats(conn)

    def _ensure_stats(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO stats(id, total_words, total_transcriptions, total_duration, first_use_at)
            VALUES(1, 0, 0, 0, ?)
            """,
            (_format_timestamp(utcnow()),),
        )

    def _read_stats(self, conn: sqlite3.Connection) -> AggregateStats:
        self._ensure_stats(conn)
        row = conn.execute("SELECT * FROM stats WHERE id = 1").fetchone()
        return AggregateStats(
            total_words=row["total_words"],
            total_transcriptions=row["total_transcriptions"],
            total_duration_seconds=row["total_duration"],
            first_use_at=datetime.fromisoformat(row["first_use_at"]),
        )


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _row_to_record(row: sqlite3.Row) -> Record:
    return Record(
        id=row["id"],
        text=row["text"],
        created_at=datetime.fromisoformat(row["created_at"]),
        duration_seconds=row["duration"],
        word_count=row["word_count"],
        remote_id=row["remote_id"],
        is_synced=bool(row["is_synced"]),
    )
