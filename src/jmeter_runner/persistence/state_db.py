"""
jmeter-runner — state database

File: src/jmeter_runner/persistence/state_db.py

Purpose
- Own the SQLite file behind the installation record and the optional
  execution history: schema creation, connection settings, and retries
  when another process holds the write lock.

Non-functional requirements
- One short-lived connection per call; nothing is held between calls.
- The schema version lives in ``PRAGMA user_version``.
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Final, NoReturn

from jmeter_runner.constants import STATE_DB_SCHEMA_VERSION
from jmeter_runner.domain.models import ExecutionState

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_STATE_CHECK: Final[str] = ", ".join(f"'{state.value}'" for state in ExecutionState)

_SCHEMA: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS records (
        key TEXT PRIMARY KEY CHECK (length(key) > 0),
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS executions (
        id TEXT PRIMARY KEY,
        seq INTEGER NOT NULL UNIQUE,
        state TEXT NOT NULL CHECK (state IN ({_STATE_CHECK})),
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_executions_state ON executions(state)",
)

_LOCKED_MARKERS: Final[tuple[str, ...]] = ("database is locked", "table is locked")
_CORRUPT_MARKERS: Final[tuple[str, ...]] = ("malformed", "file is not a database")


class StateDBError(RuntimeError):
    """Base class for persistence DB errors."""


class StateDBBusyError(StateDBError):
    """The write lock stayed taken through every retry."""


class StateDBMigrationError(StateDBError):
    """The file holds a schema this version cannot use."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a damaged or foreign file."""


class StateDB:
    """The runner's SQLite file plus the handful of query helpers repositories need."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._backoff_seconds = busy_retry_backoff_ms / 1000.0

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> sqlite3.Connection:
        """Open an autocommit connection in WAL mode with foreign keys on."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            (mode,) = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            conn.close()
            self._raise(exc, operation="open database")
        if str(mode).lower() != "wal":
            conn.close()
            raise StateDBError(f"journal_mode must be WAL, got {mode!r}")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        with closing(self.connect()) as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """``BEGIN IMMEDIATE`` on a fresh connection; rolled back if the block raises."""
        with self.connection() as conn:
            self._run(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
            try:
                yield conn
            except BaseException:
                self._run(conn, "ROLLBACK", (), operation="rollback transaction")
                raise
            self._run(conn, "COMMIT", (), operation="commit transaction")

    def migrate(self) -> int:
        """Create the schema on first use and return the stored schema version."""
        with self.transaction() as conn:
            version = self._user_version(conn)
            if version > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"database schema is newer than supported by this version "
                    f"(db={version}, code={STATE_DB_SCHEMA_VERSION}); "
                    "upgrade jmeter-runner or point paths.state_db at another file"
                )
            if version < STATE_DB_SCHEMA_VERSION:
                for statement in _SCHEMA:
                    self._run(conn, statement, (), operation="create schema")
                self._run(
                    conn,
                    f"PRAGMA user_version={STATE_DB_SCHEMA_VERSION}",
                    (),
                    operation="record schema version",
                )
        return STATE_DB_SCHEMA_VERSION

    def schema_version(self) -> int:
        with self.connection() as conn:
            return self._user_version(conn)

    def execute(self, sql: str, params: SQLParams = ()) -> int:
        """Run one write statement in its own transaction; returns the affected row count."""
        with self.transaction() as conn:
            return self._run(conn, sql, params, operation="execute statement").rowcount

    def query_all(self, sql: str, params: SQLParams = ()) -> list[dict[str, RowValue]]:
        with self.connection() as conn:
            rows = self._run(conn, sql, params, operation="query all").fetchall()
        return [dict(row) for row in rows]

    def query_one(self, sql: str, params: SQLParams = ()) -> dict[str, RowValue] | None:
        with self.connection() as conn:
            row = self._run(conn, sql, params, operation="query one").fetchone()
        return None if row is None else dict(row)

    def _user_version(self, conn: sqlite3.Connection) -> int:
        (version,) = self._run(conn, "PRAGMA user_version", (), operation="read schema").fetchone()
        return int(version)

    def _run(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.OperationalError as exc:
                if not _is_locked(exc) or attempt >= self._busy_retry_limit:
                    self._raise(exc, operation=operation)
                time.sleep(self._backoff_seconds * (2**attempt))
                attempt += 1
            except sqlite3.Error as exc:
                self._raise(exc, operation=operation)

    def _raise(self, exc: sqlite3.Error, *, operation: str) -> NoReturn:
        message = str(exc).lower()
        if any(marker in message for marker in _CORRUPT_MARKERS):
            raise StateDBCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Restore the file from a backup or delete it to start empty."
            ) from exc
        if _is_locked(exc):
            raise StateDBBusyError(
                f"{operation} found {self._path} locked after "
                f"{self._busy_retry_limit + 1} attempt(s): {exc}"
            ) from exc
        raise StateDBError(f"{operation} failed for {self._path}: {exc}") from exc


def _is_locked(exc: sqlite3.Error) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _LOCKED_MARKERS)


def canonical_json(value: object) -> str:
    """Deterministic JSON for persistence payloads."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
]
