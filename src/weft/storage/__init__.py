# src/weft/storage/__init__.py
"""
Snapshot persistence for weft.

- db: SQLite connection factory + pragmas
- migrations: lightweight SQL migrations runner
- repo: transactional snapshot access
- adapters: StorageAdapter implementations (SQLite, JSON file)
"""

from .adapters import JsonFileStorageAdapter, SQLiteStorageAdapter, StorageAdapter
from .db import SQLiteDB
from .migrations import apply_migrations
from .repo import SnapshotRepo

__all__ = [
    "SQLiteDB",
    "apply_migrations",
    "SnapshotRepo",
    "StorageAdapter",
    "SQLiteStorageAdapter",
    "JsonFileStorageAdapter",
]
