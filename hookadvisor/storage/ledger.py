"""Execution ledger: one row per Bash tool invocation.

The host gives no failure signal. An attempt is written as ``pending`` before
the command runs and flipped to ``success`` when the post-execution event
arrives. If that event never comes (the command failed, was blocked or the
session ended) the row stays pending forever, and readers project it:

    pending + session closed      → FAILED
    pending + grace period passed → FAILED
    pending otherwise             → IN_FLIGHT
    success                       → SUCCEEDED

Rows are never deleted and never move backwards.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from ..exceptions import CorrelationMiss, StorageError
from ..models import (
    AttemptOutcome,
    AttemptQuery,
    AttemptStatus,
    CommandAttempt,
    TokenStats,
    base_token,
    format_ts,
    parse_ts,
    utcnow,
)
from .sqlite import SQLiteDatabase

logger = logging.getLogger(__name__)

_SELECT_ATTEMPTS = (
    "SELECT a.*, c.closed_at AS session_closed_at FROM command_attempts a "
    "LEFT JOIN closed_sessions c ON c.session_id = a.session_id"
)

# Pending rows that read as failed; expects the grace cutoff as ``:cutoff``
_FAILED_SQL = "(a.status = 'pending' AND (c.closed_at IS NOT NULL OR a.submitted_at < :cutoff))"


def _attempt_from_row(row: sqlite3.Row) -> CommandAttempt:
    return CommandAttempt(
        attempt_id=row["attempt_id"],
        session_id=row["session_id"],
        command_text=row["command"],
        base_token=row["base_token"],
        cwd=row["cwd"],
        submitted_at=parse_ts(row["submitted_at"]),
        status=AttemptStatus(row["status"]),
        exit_code=row["exit_code"],
        resolved_at=parse_ts(row["resolved_at"]),
        suggestion=row["suggestion"],
    )


class ExecutionLedger:
    """Persisted command attempts and their read-time outcomes.

    Args:
        db: Shared database handle.
        grace_period: How long a pending attempt in an open session stays
            in flight before it reads as failed.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        grace_period: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.grace_period = grace_period
        self.clock = clock

    # =========================================================================
    # Writes
    # =========================================================================

    def record_attempt(
        self,
        session_id: str,
        command: str,
        cwd: str = "",
        attempt_id: str | None = None,
        suggestion: str | None = None,
    ) -> str | None:
        """Insert a pending attempt.

        Idempotent on ``attempt_id``: a duplicate pre-execution event for the
        same tool call leaves the first row untouched.

        Returns:
            The attempt id, or None if storage was unavailable.
        """
        attempt_id = attempt_id or uuid.uuid4().hex
        params = (
            attempt_id,
            session_id,
            command,
            base_token(command),
            cwd or "",
            format_ts(self.clock()),
            AttemptStatus.PENDING.value,
            suggestion,
        )

        def txn(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT OR IGNORE INTO command_attempts (attempt_id, session_id, command, "
                "base_token, cwd, submitted_at, status, suggestion) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                params,
            )

        try:
            self.db.write(txn)
        except StorageError as e:
            logger.warning("Could not record attempt for %r: %s", command, e)
            return None
        logger.debug("Recorded attempt %s: %s", attempt_id, command)
        return attempt_id

    def resolve_attempt(
        self,
        session_id: str,
        command: str,
        cwd: str = "",
        exit_code: int | None = 0,
        attempt_id: str | None = None,
    ) -> str | None:
        """Mark the matching pending attempt as succeeded.

        Matches on ``attempt_id`` when given, otherwise the oldest pending
        attempt with the same (session, command, cwd). With no match the
        post-event is an orphan and a succeeded attempt is inserted directly.
        Never raises.

        Returns:
            The resolved attempt id, or None if storage was unavailable.
        """
        now = format_ts(self.clock())
        cwd = cwd or ""

        def txn(conn: sqlite3.Connection) -> tuple[str, bool]:
            if attempt_id:
                row = conn.execute(
                    "SELECT attempt_id, status FROM command_attempts WHERE attempt_id = ?",
                    (attempt_id,),
                ).fetchone()
                if row is not None:
                    conn.execute(
                        "UPDATE command_attempts SET status = 'success', exit_code = ?, "
                        "resolved_at = ? WHERE attempt_id = ? AND status = 'pending'",
                        (exit_code, now, attempt_id),
                    )
                    return attempt_id, True

            row = conn.execute(
                "SELECT attempt_id FROM command_attempts WHERE session_id = ? AND command = ? "
                "AND cwd = ? AND status = 'pending' ORDER BY seq LIMIT 1",
                (session_id, command, cwd),
            ).fetchone()
            if row is not None:
                conn.execute(
                    "UPDATE command_attempts SET status = 'success', exit_code = ?, "
                    "resolved_at = ? WHERE attempt_id = ? AND status = 'pending'",
                    (exit_code, now, row["attempt_id"]),
                )
                return row["attempt_id"], True

            orphan_id = attempt_id or uuid.uuid4().hex
            conn.execute(
                "INSERT OR IGNORE INTO command_attempts (attempt_id, session_id, command, "
                "base_token, cwd, submitted_at, status, exit_code, resolved_at) "
                "VALUES (?, ?, ?, ?, ?, ?, 'success', ?, ?)",
                (orphan_id, session_id, command, base_token(command), cwd, now, exit_code, now),
            )
            return orphan_id, False

        try:
            resolved_id, matched = self.db.write(txn)
        except StorageError as e:
            logger.warning("Could not resolve attempt for %r: %s", command, e)
            return None
        if not matched:
            logger.info("%s; recorded as a new successful attempt", CorrelationMiss(session_id, command))
        return resolved_id

    def close_session(self, session_id: str) -> bool:
        """Mark a session closed. Its pending attempts now read as failed."""
        now = format_ts(self.clock())

        def txn(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO closed_sessions (session_id, closed_at) VALUES (?, ?)",
                (session_id, now),
            )
            return cursor.rowcount > 0

        return self.db.write(txn)

    # =========================================================================
    # Outcome projection
    # =========================================================================

    def _cutoff(self, now: datetime | None = None) -> str:
        return format_ts((now or self.clock()) - self.grace_period)

    def _project(self, row: sqlite3.Row, now: datetime) -> AttemptOutcome:
        if row["status"] == AttemptStatus.SUCCESS.value:
            return AttemptOutcome.SUCCEEDED
        if row["session_closed_at"] is not None:
            return AttemptOutcome.FAILED
        if parse_ts(row["submitted_at"]) < now - self.grace_period:
            return AttemptOutcome.FAILED
        return AttemptOutcome.IN_FLIGHT

    def outcome_of(self, attempt_id: str, now: datetime | None = None) -> AttemptOutcome | None:
        rows = self.db.read(f"{_SELECT_ATTEMPTS} WHERE a.attempt_id = ?", (attempt_id,))
        if not rows:
            return None
        return self._project(rows[0], now or self.clock())

    def get_attempt(self, attempt_id: str) -> CommandAttempt | None:
        rows = self.db.read(f"{_SELECT_ATTEMPTS} WHERE a.attempt_id = ?", (attempt_id,))
        return _attempt_from_row(rows[0]) if rows else None

    def is_session_closed(self, session_id: str) -> bool:
        rows = self.db.read("SELECT 1 FROM closed_sessions WHERE session_id = ?", (session_id,))
        return bool(rows)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_attempts(
        self, query: AttemptQuery | None = None
    ) -> list[tuple[CommandAttempt, AttemptOutcome]]:
        """Attempts with their projected outcome, newest first."""
        query = query or AttemptQuery()
        now = self.clock()
        clauses: list[str] = []
        params: dict[str, object] = {"cutoff": self._cutoff(now)}

        if query.session_id:
            clauses.append("a.session_id = :session_id")
            params["session_id"] = query.session_id
        if query.status is not None:
            clauses.append("a.status = :status")
            params["status"] = query.status.value
        if query.failures_only:
            clauses.append(_FAILED_SQL)
        if query.command_pattern:
            clauses.append("instr(a.command, :pattern) > 0")
            params["pattern"] = query.command_pattern

        sql = _SELECT_ATTEMPTS
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY a.submitted_at DESC, a.seq DESC"
        if query.limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = query.limit

        return [(_attempt_from_row(r), self._project(r, now)) for r in self.db.read(sql, params)]

    def latest_seq(self) -> int:
        rows = self.db.read("SELECT COALESCE(MAX(seq), 0) AS n FROM command_attempts")
        return rows[0]["n"]

    def count_since(self, seq: int) -> int:
        """Attempts recorded after sequence number ``seq``."""
        rows = self.db.read("SELECT COUNT(*) AS n FROM command_attempts WHERE seq > ?", (seq,))
        return rows[0]["n"]

    def settled_attempts(
        self, since: datetime, now: datetime | None = None
    ) -> list[tuple[CommandAttempt, AttemptOutcome]]:
        """Attempts submitted since ``since`` whose outcome is no longer in flight.

        Oldest first, so reinforcement replays in submission order.
        """
        now = now or self.clock()
        rows = self.db.read(
            f"{_SELECT_ATTEMPTS} WHERE a.submitted_at >= ? ORDER BY a.submitted_at, a.seq",
            (format_ts(since),),
        )
        settled = []
        for row in rows:
            outcome = self._project(row, now)
            if outcome != AttemptOutcome.IN_FLIGHT:
                settled.append((_attempt_from_row(row), outcome))
        return settled

    def stats(self, limit: int | None = None) -> list[TokenStats]:
        """Per base-token totals, most used first."""
        sql = (
            "SELECT a.base_token AS token, COUNT(*) AS total, "
            "SUM(a.status = 'success') AS succeeded, "
            f"SUM({_FAILED_SQL}) AS failed "
            "FROM command_attempts a "
            "LEFT JOIN closed_sessions c ON c.session_id = a.session_id "
            "GROUP BY a.base_token ORDER BY total DESC, token"
        )
        params: dict[str, object] = {"cutoff": self._cutoff()}
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        result = []
        for row in self.db.read(sql, params):
            succeeded = row["succeeded"] or 0
            failed = row["failed"] or 0
            result.append(
                TokenStats(
                    base_token=row["token"],
                    total=row["total"],
                    succeeded=succeeded,
                    failed=failed,
                    in_flight=row["total"] - succeeded - failed,
                )
            )
        return result
