# src/weft/storage/db.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator


@dataclass(frozen=True)
class SQLiteDB:
    """
    SQLite connection factory for the snapshot store.

    Saves arrive from whichever thread mutated the registry, so callers open
    a short-lived connection per operation (`session`) instead of sharing one.
    WAL mode lets a load proceed while a snapshot is being replaced.
    """
    db_path: Path
    timeout_s: float = 5.0

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout_s,        # also the busy-wait on a locked database
            isolation_level=None,          # transactions are managed manually (BEGIN/COMMIT)
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()


def begin_immediate(conn: sqlite3.Connection) -> None:
    """
    Begins a transaction that takes the write lock up front, so a snapshot
    replacement never interleaves with another writer.
    """
    conn.execute("BEGIN IMMEDIATE;")


def commit(conn: sqlite3.Connection) -> None:
    conn.execute("COMMIT;")


def rollback(conn: sqlite3.Connection) -> None:
    conn.execute("ROLLBACK;")
