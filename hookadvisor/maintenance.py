"""Maintenance: turn ledger outcomes into confidence changes.

Runs opportunistically at the end of a PostToolUse hook. Any hook process may
try; at most one wins each window. The claim is a compare-and-set on the
single ``maintenance_state`` row and requires both:

- ``interval_hours`` since the previous run
- at least ``min_attempts`` attempts recorded since the previous run

A run first applies time decay, then replays settled attempts from the
lookback window. Each attempt whose command a learned rule matches, or whose
command starts with that rule's replacement, reinforces the rule once: Success
if the post-event arrived, Failure if it never did.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .config import MaintenanceConfig
from .matcher import PatternMatcher
from .models import (
    AttemptOutcome,
    MappingRule,
    NeverSuggestEntry,
    Outcome,
    RuleOrigin,
    ScopeContext,
    format_ts,
    parse_ts,
    utcnow,
)
from .storage.confidence import ConfidenceStore
from .storage.ledger import ExecutionLedger

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceReport:
    """What one maintenance pass did."""

    ran: bool
    skipped_reason: str = ""
    decayed: int = 0
    attempts_considered: int = 0
    reinforced: int = 0
    demoted: list[str] = field(default_factory=list)

    def summary(self) -> str:
        if not self.ran:
            return f"Maintenance skipped: {self.skipped_reason}"
        text = (
            f"Maintenance: decayed {self.decayed} rules, "
            f"applied {self.reinforced} outcomes from {self.attempts_considered} attempts"
        )
        if self.demoted:
            text += f", demoted {', '.join(self.demoted)}"
        return text


def _empty_context(cwd: str) -> ScopeContext:
    return ScopeContext()


class MaintenanceScheduler:
    """Gated decay and reinforcement over the shared stores.

    Args:
        confidence: Learned rule store.
        ledger: Attempt ledger.
        config: Gating and lookback settings.
        context_for: Maps an attempt's cwd to its active scopes.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        confidence: ConfidenceStore,
        ledger: ExecutionLedger,
        config: MaintenanceConfig | None = None,
        context_for: Callable[[str], ScopeContext] = _empty_context,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.confidence = confidence
        self.ledger = ledger
        self.config = config or MaintenanceConfig()
        self.context_for = context_for
        self.clock = clock

    def try_claim(self, now: datetime | None = None) -> str | None:
        """Claim this maintenance window.

        Returns:
            None when claimed, otherwise why the run is not due.
        """
        now = now or self.clock()
        interval = timedelta(hours=self.config.interval_hours)
        min_attempts = self.config.min_attempts

        def txn(conn: sqlite3.Connection) -> str | None:
            state = conn.execute(
                "SELECT last_run_at, last_attempt_seq FROM maintenance_state WHERE id = 1"
            ).fetchone()
            last_run = parse_ts(state["last_run_at"])
            if last_run is not None and now - last_run < interval:
                return f"last run at {state['last_run_at']}"
            latest = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) AS n FROM command_attempts"
            ).fetchone()["n"]
            new_attempts = latest - state["last_attempt_seq"]
            if new_attempts < min_attempts:
                return f"{new_attempts} new attempts (need {min_attempts})"
            cursor = conn.execute(
                "UPDATE maintenance_state SET last_run_at = ?, last_attempt_seq = ? "
                "WHERE id = 1 AND last_run_at IS ? AND last_attempt_seq = ?",
                (format_ts(now), latest, state["last_run_at"], state["last_attempt_seq"]),
            )
            if cursor.rowcount != 1:
                return "claimed by another process"
            return None

        return self.confidence.db.write(txn)

    def maybe_run(self) -> MaintenanceReport:
        now = self.clock()
        reason = self.try_claim(now)
        if reason is not None:
            logger.debug("Maintenance not due: %s", reason)
            return MaintenanceReport(ran=False, skipped_reason=reason)
        return self.run(now)

    def run(self, now: datetime | None = None) -> MaintenanceReport:
        """Decay then reinforce, without consulting the gate."""
        now = now or self.clock()
        report = MaintenanceReport(ran=True)
        report.decayed = self.confidence.decay(now)

        learned = [r for r in self.confidence.active_rules() if r.origin == RuleOrigin.LEARNED]
        if not learned:
            logger.info(report.summary())
            return report
        never = self.confidence.never_entries()

        since = now - timedelta(days=self.config.lookback_days)
        settled = self.ledger.settled_attempts(since, now)
        done = self.confidence.accounted_attempts([a.attempt_id for a, _ in settled])
        matchers: dict[str, PatternMatcher] = {}

        for attempt, outcome in settled:
            if attempt.attempt_id in done:
                continue
            matcher = matchers.get(attempt.cwd)
            if matcher is None:
                matcher = PatternMatcher(learned, never, self.context_for(attempt.cwd))
                matchers[attempt.cwd] = matcher
            match = matcher.match(attempt.command_text)
            rule = match.rule if match else matcher.followed_rule(attempt.command_text)
            if rule is None or rule.created_at > attempt.submitted_at:
                continue

            report.attempts_considered += 1
            signal = Outcome.SUCCESS if outcome == AttemptOutcome.SUCCEEDED else Outcome.FAILURE
            result = self.confidence.reinforce_attempt(
                attempt.attempt_id, rule.source_token, rule.scope, signal
            )
            if isinstance(result, MappingRule):
                report.reinforced += 1
            elif isinstance(result, NeverSuggestEntry):
                report.reinforced += 1
                report.demoted.append(result.source_token)
                # Later attempts for this token no longer count against a rule
                matchers.clear()
                learned = [r for r in learned if r.key != result.key]
                never.append(result)

        logger.info(report.summary())
        return report
