# src/weft/storage/adapters.py
from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional, Protocol

from pydantic import TypeAdapter, ValidationError

from weft.domain.models import UnitSnapshot
from weft.logging import get_logger

from .db import SQLiteDB
from .migrations import apply_migrations
from .repo import SnapshotRepo

_LOG = get_logger(__name__)

_SNAPSHOTS = TypeAdapter(list[UnitSnapshot])


class StorageAdapter(Protocol):
    def save_state(self, units: list[UnitSnapshot]) -> None:
        ...

    def load_state(self) -> Optional[list[UnitSnapshot]]:
        ...


class SQLiteStorageAdapter:
    """
    Snapshot store backed by SQLite. Migrations are applied on construction.
    Each call opens its own connection, so saves may come from any thread.
    """

    def __init__(self, db: SQLiteDB, *, migrations_dir: Optional[Path] = None) -> None:
        self._db = db
        with db.session() as conn:
            apply_migrations(conn, migrations_dir)

    def save_state(self, units: list[UnitSnapshot]) -> None:
        with self._db.session() as conn:
            SnapshotRepo(conn).replace_all(units, now_ms=int(time.time() * 1000))

    def load_state(self) -> Optional[list[UnitSnapshot]]:
        with self._db.session() as conn:
            snapshots = SnapshotRepo(conn).load_all()
        return snapshots or None


class JsonFileStorageAdapter:
    """
    Snapshot store kept in one JSON document. Writes go to a sibling temp
    file first and are moved into place.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save_state(self, units: list[UnitSnapshot]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_bytes(_SNAPSHOTS.dump_json(units, indent=2))
        os.replace(tmp, self._path)

    def load_state(self) -> Optional[list[UnitSnapshot]]:
        if not self._path.exists():
            return None
        try:
            return _SNAPSHOTS.validate_json(self._path.read_bytes())
        except ValidationError:
            _LOG.exception("Failed to load state from %s (starting fresh).", self._path)
            return None
