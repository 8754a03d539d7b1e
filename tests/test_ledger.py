"""Tests for the execution ledger: two-phase correlation and outcome projection."""

from datetime import timedelta

import pytest

from hookadvisor.models import AttemptOutcome, AttemptQuery, AttemptStatus
from hookadvisor.storage import ExecutionLedger, SQLiteDatabase


@pytest.fixture
def ledger(db, clock):
    return ExecutionLedger(db, grace_period=timedelta(minutes=30), clock=clock)


class TestRecordAndResolve:
    def test_record_creates_pending(self, ledger):
        attempt_id = ledger.record_attempt("s1", "npm test", "/work")
        attempt = ledger.get_attempt(attempt_id)
        assert attempt.status == AttemptStatus.PENDING
        assert attempt.base_token == "npm"
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.IN_FLIGHT

    def test_resolve_marks_success(self, ledger):
        attempt_id = ledger.record_attempt("s1", "npm test", "/work")
        assert ledger.resolve_attempt("s1", "npm test", "/work", exit_code=0) == attempt_id
        attempt = ledger.get_attempt(attempt_id)
        assert attempt.status == AttemptStatus.SUCCESS
        assert attempt.exit_code == 0
        assert attempt.resolved_at is not None
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.SUCCEEDED

    def test_duplicate_record_is_idempotent(self, ledger):
        ledger.record_attempt("s1", "ls", "/w", attempt_id="toolu_1")
        ledger.record_attempt("s1", "ls", "/w", attempt_id="toolu_1")
        assert len(ledger.list_attempts()) == 1

    def test_resolves_oldest_pending_first(self, ledger, clock):
        first = ledger.record_attempt("s1", "make", "/w")
        clock.advance(seconds=1)
        second = ledger.record_attempt("s1", "make", "/w")
        ledger.resolve_attempt("s1", "make", "/w", exit_code=0)
        assert ledger.outcome_of(first) == AttemptOutcome.SUCCEEDED
        assert ledger.outcome_of(second) == AttemptOutcome.IN_FLIGHT

    def test_tool_use_id_matched_first(self, ledger, clock):
        first = ledger.record_attempt("s1", "make", "/w", attempt_id="toolu_a")
        clock.advance(seconds=1)
        second = ledger.record_attempt("s1", "make", "/w", attempt_id="toolu_b")
        ledger.resolve_attempt("s1", "make", "/w", exit_code=0, attempt_id="toolu_b")
        assert ledger.outcome_of(second) == AttemptOutcome.SUCCEEDED
        assert ledger.outcome_of(first) == AttemptOutcome.IN_FLIGHT

    def test_repeated_post_event_does_not_resolve_another(self, ledger, clock):
        ledger.record_attempt("s1", "make", "/w", attempt_id="toolu_a")
        ledger.record_attempt("s1", "make", "/w", attempt_id="toolu_b")
        ledger.resolve_attempt("s1", "make", "/w", attempt_id="toolu_a")
        ledger.resolve_attempt("s1", "make", "/w", attempt_id="toolu_a")
        assert ledger.outcome_of("toolu_b") == AttemptOutcome.IN_FLIGHT

    def test_correlation_scoped_to_session_and_cwd(self, ledger):
        attempt_id = ledger.record_attempt("s1", "make", "/w")
        ledger.resolve_attempt("s2", "make", "/w")
        ledger.resolve_attempt("s1", "make", "/other")
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.IN_FLIGHT

    def test_orphan_post_event_records_success(self, ledger):
        attempt_id = ledger.resolve_attempt("s1", "cargo build", "/w", exit_code=0)
        assert attempt_id is not None
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.SUCCEEDED
        assert len(ledger.list_attempts()) == 1

    def test_suggestion_recorded(self, ledger):
        attempt_id = ledger.record_attempt("s1", "npm i", "/w", suggestion="bun i")
        assert ledger.get_attempt(attempt_id).suggestion == "bun i"


class TestOutcomeProjection:
    def test_pending_fails_after_grace(self, ledger, clock):
        attempt_id = ledger.record_attempt("s1", "npm test", "/w")
        clock.advance(minutes=29)
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.IN_FLIGHT
        clock.advance(minutes=2)
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.FAILED

    def test_pending_fails_when_session_closed(self, ledger):
        attempt_id = ledger.record_attempt("s1", "npm test", "/w")
        assert ledger.close_session("s1")
        assert ledger.is_session_closed("s1")
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.FAILED

    def test_close_session_twice(self, ledger):
        assert ledger.close_session("s1")
        assert not ledger.close_session("s1")

    def test_success_never_reads_as_failed(self, ledger, clock):
        attempt_id = ledger.record_attempt("s1", "ls", "/w")
        ledger.resolve_attempt("s1", "ls", "/w")
        ledger.close_session("s1")
        clock.advance(days=10)
        assert ledger.outcome_of(attempt_id) == AttemptOutcome.SUCCEEDED

    def test_unknown_attempt(self, ledger):
        assert ledger.outcome_of("missing") is None


class TestQueries:
    def test_list_newest_first(self, ledger, clock):
        ledger.record_attempt("s1", "one", "/w")
        clock.advance(seconds=1)
        ledger.record_attempt("s1", "two", "/w")
        rows = ledger.list_attempts()
        assert [a.command_text for a, _ in rows] == ["two", "one"]

    def test_filters(self, ledger, clock):
        ledger.record_attempt("s1", "npm test", "/w")
        ledger.record_attempt("s1", "npm run lint", "/w")
        ledger.resolve_attempt("s1", "npm run lint", "/w")
        ledger.record_attempt("s2", "cargo test", "/w")
        clock.advance(hours=1)

        failed = ledger.list_attempts(AttemptQuery(failures_only=True))
        assert {a.command_text for a, _ in failed} == {"npm test", "cargo test"}
        assert all(outcome == AttemptOutcome.FAILED for _, outcome in failed)

        by_session = ledger.list_attempts(AttemptQuery(session_id="s2"))
        assert [a.command_text for a, _ in by_session] == ["cargo test"]

        by_pattern = ledger.list_attempts(AttemptQuery(command_pattern="npm"))
        assert len(by_pattern) == 2

        succeeded = ledger.list_attempts(AttemptQuery(status=AttemptStatus.SUCCESS))
        assert [a.command_text for a, _ in succeeded] == ["npm run lint"]

    def test_limit(self, ledger):
        for i in range(5):
            ledger.record_attempt("s1", f"cmd {i}", "/w")
        assert len(ledger.list_attempts(AttemptQuery(limit=3))) == 3

    def test_count_since(self, ledger):
        ledger.record_attempt("s1", "a", "/w")
        mark = ledger.latest_seq()
        ledger.record_attempt("s1", "b", "/w")
        ledger.record_attempt("s1", "c", "/w")
        assert ledger.count_since(mark) == 2
        assert ledger.count_since(0) == 3

    def test_settled_excludes_in_flight(self, ledger, clock):
        start = clock()
        done = ledger.record_attempt("s1", "a", "/w")
        ledger.resolve_attempt("s1", "a", "/w")
        ledger.record_attempt("s1", "b", "/w")
        settled = ledger.settled_attempts(start)
        assert [(a.attempt_id, o) for a, o in settled] == [(done, AttemptOutcome.SUCCEEDED)]

    def test_stats(self, ledger, clock):
        ledger.record_attempt("s1", "npm test", "/w")
        ledger.record_attempt("s1", "npm ci", "/w")
        ledger.resolve_attempt("s1", "npm ci", "/w")
        ledger.record_attempt("s1", "ls", "/w")
        clock.advance(hours=1)
        ledger.record_attempt("s1", "npm run", "/w")

        stats = {s.base_token: s for s in ledger.stats()}
        npm = stats["npm"]
        assert (npm.total, npm.succeeded, npm.failed, npm.in_flight) == (3, 1, 1, 1)
        assert npm.success_rate == pytest.approx(0.5)
        assert stats["ls"].failed == 1


class TestDegradation:
    def test_unwritable_database_degrades(self, tmp_path, clock):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        ledger = ExecutionLedger(SQLiteDatabase(blocker / "history.db"), clock=clock)
        assert ledger.record_attempt("s1", "ls", "/w") is None
        assert ledger.resolve_attempt("s1", "ls", "/w") is None
