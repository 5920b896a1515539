"""SQLite database with WAL mode and immediate write transactions."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from delegator.errors import ConsistencyError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class Database:
    """SQLite storage layer with WAL mode for the delegator."""

    def __init__(self, data_dir: Path | None = None, busy_timeout: float = 30.0) -> None:
        self.data_dir = data_dir or Path.home() / ".delegator"
        self.db_path = self.data_dir / "data" / "delegator.db"
        self.busy_timeout = busy_timeout

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "data").mkdir(exist_ok=True)
        (self.data_dir / "logs").mkdir(exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        self._ensure_dirs()
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.busy_timeout, isolation_level=None
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection running a deferred transaction."""
        with self._transaction("BEGIN") as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a connection holding the write lock for its whole lifetime.

        ``BEGIN IMMEDIATE`` makes concurrent writers queue up, so a
        read-modify-write sequence inside the block sees no interleaved
        writes. Any exception rolls the transaction back; driver errors are
        re-raised as ConsistencyError.
        """
        with self._transaction("BEGIN IMMEDIATE") as conn:
            yield conn

    @contextmanager
    def _transaction(self, begin: str) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = self._open()
        except sqlite3.Error as exc:
            raise ConsistencyError(f"Cannot open database {self.db_path}: {exc}") from exc
        try:
            conn.execute(begin)
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("Transaction rolled back: %s", exc)
            raise ConsistencyError(f"Store transaction failed: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            for statement in _SCHEMA.split(";"):
                if statement.strip():
                    conn.execute(statement)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and return results."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid or 0


_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    skills TEXT NOT NULL DEFAULT '[]',
    capacity INTEGER NOT NULL DEFAULT 5 CHECK (capacity > 0),
    current_load INTEGER NOT NULL DEFAULT 0 CHECK (current_load >= 0),
    success_rate REAL NOT NULL DEFAULT 0.0 CHECK (success_rate BETWEEN 0.0 AND 1.0),
    total_completed INTEGER NOT NULL DEFAULT 0 CHECK (total_completed >= 0),
    status TEXT NOT NULL DEFAULT 'active',
    last_seen REAL
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    required_skills TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'medium',
    complexity INTEGER NOT NULL DEFAULT 5 CHECK (complexity BETWEEN 1 AND 10),
    status TEXT NOT NULL DEFAULT 'pending',
    assigned_to TEXT REFERENCES agents(agent_id),
    created_at REAL NOT NULL,
    assigned_at REAL,
    completed_at REAL,
    estimated_duration INTEGER,
    actual_duration INTEGER
);

CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_ref INTEGER NOT NULL REFERENCES tasks(id),
    agent_ref INTEGER NOT NULL REFERENCES agents(id),
    score REAL NOT NULL,
    assigned_at REAL NOT NULL,
    completed_at REAL,
    success INTEGER
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_kind TEXT NOT NULL,
    subject_id TEXT NOT NULL,
    message TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    logged_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
CREATE INDEX IF NOT EXISTS idx_agents_status ON agents(status);
CREATE INDEX IF NOT EXISTS idx_assignments_open ON assignments(agent_ref, completed_at);
CREATE INDEX IF NOT EXISTS idx_assignments_task ON assignments(task_ref);

INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION});
"""
