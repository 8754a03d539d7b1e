"""SQLite database shared by the confidence store and the execution ledger.

Every hook invocation is its own process, so this file is the only point of
synchronization between them:

- WAL journal so readers never block the single writer
- Short busy timeout; hooks must answer in milliseconds
- Every mutation runs inside ``BEGIN IMMEDIATE`` so a read-modify-write on
  one key is atomic with respect to other processes
- Lock contention is retried a few times with exponential backoff, then
  surfaces as ``StorageError``
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from ..exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_VERSION = 1

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mapping_rules (
        source_token TEXT NOT NULL,
        scope TEXT NOT NULL,
        replacement TEXT NOT NULL,
        confidence REAL NOT NULL,
        anchor_confidence REAL NOT NULL,
        reinforcement_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_reinforced_at TEXT NOT NULL,
        PRIMARY KEY (source_token, scope)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS never_suggest (
        source_token TEXT NOT NULL,
        scope TEXT NOT NULL,
        demoted_at TEXT NOT NULL,
        reason TEXT NOT NULL DEFAULT '',
        PRIMARY KEY (source_token, scope)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reinforcement_log (
        attempt_id TEXT PRIMARY KEY,
        source_token TEXT NOT NULL,
        scope TEXT NOT NULL,
        outcome TEXT NOT NULL,
        applied_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS command_attempts (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        attempt_id TEXT NOT NULL UNIQUE,
        session_id TEXT NOT NULL,
        command TEXT NOT NULL,
        base_token TEXT NOT NULL,
        cwd TEXT NOT NULL DEFAULT '',
        submitted_at TEXT NOT NULL,
        status TEXT NOT NULL,
        exit_code INTEGER,
        resolved_at TEXT,
        suggestion TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_attempts_submitted ON command_attempts(submitted_at)",
    """
    CREATE INDEX IF NOT EXISTS idx_attempts_correlation
        ON command_attempts(session_id, command, cwd, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS closed_sessions (
        session_id TEXT PRIMARY KEY,
        closed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS maintenance_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        last_run_at TEXT,
        last_attempt_seq INTEGER NOT NULL DEFAULT 0
    )
    """,
]


class SQLiteDatabase:
    """Lazily opened connection plus transaction helpers.

    Args:
        path: Database file, or ``:memory:``.
        timeout: Busy timeout in seconds for each lock wait.
        max_retries: Extra attempts when the database stays locked.
        backoff: First retry delay in seconds; doubles on each retry.
    """

    def __init__(
        self,
        path: str | Path,
        timeout: float = 0.25,
        max_retries: int = 4,
        backoff: float = 0.005,
    ) -> None:
        self.path = str(path)
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self._conn: sqlite3.Connection | None = None

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
            if self.path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _migrate(self, conn: sqlite3.Connection) -> None:
        try:
            row = conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
            current = row["v"] or 0
        except sqlite3.OperationalError:
            current = 0
        if current >= SCHEMA_VERSION:
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.execute(
                "INSERT OR IGNORE INTO maintenance_state (id, last_run_at, last_attempt_seq) "
                "VALUES (1, NULL, 0)"
            )
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = self._with_retry(self._open)
                self._with_retry(lambda: self._migrate(conn))
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"Cannot open database {self.path}: {e}") from e
            self._conn = conn
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> SQLiteDatabase:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _with_retry(self, fn: Callable[[], T]) -> T:
        delay = self.backoff
        for attempt in range(self.max_retries + 1):
            try:
                return fn()
            except sqlite3.OperationalError as e:
                if not _is_lock_error(e) or attempt == self.max_retries:
                    raise
                logger.debug("Database busy (%s), retry %d in %.3fs", e, attempt + 1, delay)
                time.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.connection
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def write(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn`` in one immediate transaction, retrying on lock contention.

        ``fn`` may run more than once, so it must only touch the connection.

        Raises:
            StorageError: The transaction could not be committed.
        """

        def attempt() -> T:
            with self._transaction() as conn:
                return fn(conn)

        try:
            return self._with_retry(attempt)
        except sqlite3.Error as e:
            raise StorageError(f"Write to {self.path} failed: {e}") from e

    def read(self, sql: str, params: tuple | dict = ()) -> list[sqlite3.Row]:
        try:
            return self._with_retry(lambda: self.connection.execute(sql, params).fetchall())
        except sqlite3.Error as e:
            raise StorageError(f"Read from {self.path} failed: {e}") from e


def _is_lock_error(e: sqlite3.OperationalError) -> bool:
    message = str(e).lower()
    return "locked" in message or "busy" in message
