# src/weft/storage/repo.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Sequence

from weft.domain.models import UnitSnapshot
from weft.logging import get_logger

from .db import begin_immediate, commit, rollback

_LOG = get_logger(__name__)


@dataclass
class SnapshotRepo:
    """
    SQL access for unit snapshots.

    Important invariants:
    - A save replaces the whole table in one BEGIN IMMEDIATE transaction, so
      readers see either the previous snapshot or the new one.
    - Rows keep registration order through `position`.
    """
    conn: sqlite3.Connection

    def load_all(self) -> list[UnitSnapshot]:
        rows = self.conn.execute(
            "SELECT payload FROM unit_snapshots ORDER BY position ASC;"
        ).fetchall()
        return [UnitSnapshot.model_validate_json(row["payload"]) for row in rows]

    def count(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) AS c FROM unit_snapshots;").fetchone()["c"])

    def replace_all(self, snapshots: Sequence[UnitSnapshot], now_ms: int) -> None:
        try:
            begin_immediate(self.conn)
            self.conn.execute("DELETE FROM unit_snapshots;")
            self.conn.executemany(
                """
                INSERT INTO unit_snapshots(id, kind, position, payload, updated_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                [
                    (snap.id, snap.kind, position, snap.model_dump_json(), now_ms)
                    for position, snap in enumerate(snapshots)
                ],
            )
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        _LOG.debug("Saved %d unit snapshot(s).", len(snapshots))
