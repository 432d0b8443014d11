"""SQLite persistence for the Interfold stores.

One ``SQLiteStorage`` owns one connection. Every table carries a ``user_id``
column; the stores add it to every WHERE clause, which is what keeps users
isolated from each other.

Thread Safety:
    All access goes through an internal RLock, so one instance can be shared
    by several threads. Writes run inside ``BEGIN IMMEDIATE`` transactions,
    which also serializes writers that use separate connections to the same
    file.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from interfold.exceptions import ConstraintViolation

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS atomic_set (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, name)
);

CREATE TABLE IF NOT EXISTS intersection (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_via_path TEXT NOT NULL,
    content TEXT,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS intersection_element (
    intersection_id TEXT NOT NULL,
    atomic_set_id TEXT NOT NULL,
    PRIMARY KEY (intersection_id, atomic_set_id),
    FOREIGN KEY (intersection_id) REFERENCES intersection(id) ON DELETE CASCADE,
    FOREIGN KEY (atomic_set_id) REFERENCES atomic_set(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS outline_node (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    parent_id TEXT,
    content TEXT NOT NULL,
    order_index INTEGER NOT NULL CHECK (order_index >= 0),
    is_expanded INTEGER NOT NULL DEFAULT 1,
    intersection_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (parent_id) REFERENCES outline_node(id) ON DELETE CASCADE,
    FOREIGN KEY (intersection_id) REFERENCES intersection(id)
);

CREATE INDEX IF NOT EXISTS idx_atomic_set_user ON atomic_set(user_id);
CREATE INDEX IF NOT EXISTS idx_intersection_user ON intersection(user_id);
CREATE INDEX IF NOT EXISTS idx_intersection_deleted ON intersection(is_deleted);
CREATE INDEX IF NOT EXISTS idx_intersection_element_atomic_set
    ON intersection_element(atomic_set_id);
CREATE INDEX IF NOT EXISTS idx_outline_node_user ON outline_node(user_id);
CREATE INDEX IF NOT EXISTS idx_outline_node_parent
    ON outline_node(user_id, parent_id, order_index);
CREATE INDEX IF NOT EXISTS idx_outline_node_intersection ON outline_node(intersection_id);
"""


def utcnow() -> str:
    """Current UTC time as the ISO-8601 text stored in timestamp columns."""
    return datetime.now(timezone.utc).isoformat()


def placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" * len(values))


class SQLiteStorage:
    """SQLite connection, schema management and transactions for Interfold."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        # Autocommit mode: transactions are opened explicitly in transaction().
        self._conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._lock = threading.RLock()
        self._depth = 0
        self._init_schema()

    @property
    def path(self) -> str:
        return self._path

    def _init_schema(self) -> None:
        conn = self._conn
        has_meta = conn.execute(
            "SELECT count(*) FROM sqlite_master WHERE type='table' AND name='meta'"
        ).fetchone()[0]

        if has_meta:
            row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
            if row is None:
                raise ValueError(
                    f"Database has meta table but no schema_version key. "
                    f"The database at '{self._path}' may be corrupted."
                )
            if row[0] != SCHEMA_VERSION:
                raise ValueError(
                    f"Unsupported schema version '{row[0]}' in database "
                    f"'{self._path}'. Expected version {SCHEMA_VERSION}. "
                    f"This database may have been created by a newer version of interfold."
                )
            return

        conn.executescript(_SCHEMA_V1)
        conn.execute(
            "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )
        logger.info("Created interfold schema v%s at %s", SCHEMA_VERSION, self._path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- Access ---

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a block of writes atomically.

        Nested calls join the outermost transaction; only the outermost block
        commits or rolls back. Any exception rolls the whole transaction back,
        so a multi-row write either lands completely or not at all.

        Raises:
            ConstraintViolation: If a write breaks a UNIQUE, CHECK or foreign
                key constraint.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._conn
            except sqlite3.IntegrityError as exc:
                if outermost:
                    self._conn.rollback()
                raise ConstraintViolation(str(exc)) from exc
            except BaseException:
                if outermost:
                    self._conn.rollback()
                raise
            else:
                if outermost:
                    self._conn.commit()
            finally:
                self._depth -= 1

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def table_counts(self, user_id: str) -> dict[str, int]:
        """Row counts per table for one user."""
        with self._lock:
            return {
                table: self._conn.execute(
                    f"SELECT count(*) FROM {table} WHERE user_id = ?", (user_id,)
                ).fetchone()[0]
                for table in ("atomic_set", "intersection", "outline_node")
            }
