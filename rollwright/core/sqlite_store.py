"""Shared SQLite plumbing for the durable stores.

One connection per operation, WAL journal mode so the CLI can read while
a deployment writes.  Several stores may share one database file.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from pathlib import Path


class SqliteStore:
    """Base class: owns the database path and schema creation.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    _SCHEMA: Sequence[str] = ()

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            for ddl in self._SCHEMA:
                conn.execute(ddl)
            conn.commit()
