"""Confidence store: learned mapping rules and never-suggest entries.

Owns three tables: ``mapping_rules``, ``never_suggest`` and the
``reinforcement_log`` that makes per-attempt reinforcement idempotent.

Every mutation is one ``BEGIN IMMEDIATE`` transaction, so concurrent hook
processes never lose an update. Two writers on the same key serialize
(last writer wins); writers on different keys never interfere.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..config import LearningConfig
from ..models import (
    LearningEvent,
    LearningResult,
    MappingRule,
    NeverSuggestEntry,
    Outcome,
    RuleOrigin,
    Scope,
    format_ts,
    parse_ts,
    utcnow,
)
from .sqlite import SQLiteDatabase

logger = logging.getLogger(__name__)

_WEEK_SECONDS = 7 * 24 * 3600
SNAPSHOT_VERSION = 1


def _clamp(value: float) -> float:
    return round(min(1.0, max(0.0, value)), 6)


def _rule_from_row(row: sqlite3.Row) -> MappingRule:
    return MappingRule(
        source_token=row["source_token"],
        replacement=row["replacement"],
        scope=Scope.parse(row["scope"]),
        origin=RuleOrigin.LEARNED,
        confidence=row["confidence"],
        created_at=parse_ts(row["created_at"]),
        last_reinforced_at=parse_ts(row["last_reinforced_at"]),
        reinforcement_count=row["reinforcement_count"],
        anchor_confidence=row["anchor_confidence"],
    )


def _entry_from_row(row: sqlite3.Row) -> NeverSuggestEntry:
    return NeverSuggestEntry(
        source_token=row["source_token"],
        scope=Scope.parse(row["scope"]),
        demoted_at=parse_ts(row["demoted_at"]),
        reason=row["reason"],
    )


def _importable(
    items: list[dict[str, Any]],
    timestamps: tuple[str, ...] = (),
    numbers: dict[str, type] | None = None,
) -> list[tuple[dict[str, Any], str]]:
    """Snapshot items with a source token and a valid scope, paired with the scope key.

    Timestamp fields are re-serialized and numeric fields coerced. An item
    with a value that cannot be read is skipped.
    """
    kept = []
    for item in items:
        if not isinstance(item, dict) or not str(item.get("source_token", "")).strip():
            logger.warning("Skipping snapshot entry without a source token: %r", item)
            continue
        try:
            scope = Scope.parse(str(item.get("scope", "global")))
        except ValueError:
            logger.warning("Skipping snapshot entry with unknown scope %r", item.get("scope"))
            continue
        item = dict(item)
        try:
            for name in timestamps:
                if item.get(name):
                    item[name] = format_ts(parse_ts(str(item[name])))
            for name, kind in (numbers or {}).items():
                if item.get(name) is not None:
                    item[name] = kind(item[name])
        except (TypeError, ValueError) as e:
            logger.warning("Skipping snapshot entry for %r: %s", item["source_token"], e)
            continue
        kept.append((item, scope.key))
    return kept


class ConfidenceStore:
    """Persisted learned rules with confidence scores.

    Args:
        db: Shared database handle.
        config: Step sizes and thresholds.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        config: LearningConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.config = config or LearningConfig()
        self.clock = clock

    # =========================================================================
    # Queries
    # =========================================================================

    def active_rules(self) -> list[MappingRule]:
        rows = self.db.read(
            "SELECT * FROM mapping_rules ORDER BY source_token, confidence DESC, "
            "last_reinforced_at DESC"
        )
        return [_rule_from_row(r) for r in rows]

    def never_entries(self) -> list[NeverSuggestEntry]:
        rows = self.db.read("SELECT * FROM never_suggest ORDER BY demoted_at DESC")
        return [_entry_from_row(r) for r in rows]

    def get_rule(self, token: str, scope: Scope | None = None) -> MappingRule | None:
        scope = scope or Scope.global_()
        rows = self.db.read(
            "SELECT * FROM mapping_rules WHERE source_token = ? AND scope = ?",
            (token, scope.key),
        )
        return _rule_from_row(rows[0]) if rows else None

    def get_never_entry(self, token: str, scope: Scope | None = None) -> NeverSuggestEntry | None:
        scope = scope or Scope.global_()
        rows = self.db.read(
            "SELECT * FROM never_suggest WHERE source_token = ? AND scope = ?",
            (token, scope.key),
        )
        return _entry_from_row(rows[0]) if rows else None

    # =========================================================================
    # Learning events
    # =========================================================================

    def apply_learning(self, event: LearningEvent) -> LearningResult:
        """Apply one learning event atomically.

        A positive event lifts any never-suggest entry for the key, then
        creates the rule, reinforces it (same replacement) or overwrites it
        (different replacement). A negative event swaps the rule for a
        never-suggest entry.
        """
        if not event.scope.is_bound:
            raise ValueError(f"Learning event scope is not bound: {event.scope}")
        now = format_ts(self.clock())
        key = (event.source_token, event.scope.key)

        if event.is_negative:

            def suppress(conn: sqlite3.Connection) -> LearningResult:
                conn.execute(
                    "DELETE FROM mapping_rules WHERE source_token = ? AND scope = ?", key
                )
                conn.execute(
                    "INSERT OR REPLACE INTO never_suggest (source_token, scope, demoted_at, reason) "
                    "VALUES (?, ?, ?, ?)",
                    (*key, now, "user asked never to suggest a replacement"),
                )
                return LearningResult.SUPPRESSED

            result = self.db.write(suppress)
            logger.info("Never suggesting replacements for %s (%s)", *key)
            return result

        target = event.target_token or ""
        initial = _clamp(self.config.initial_confidence)

        def learn(conn: sqlite3.Connection) -> LearningResult:
            restored = (
                conn.execute(
                    "DELETE FROM never_suggest WHERE source_token = ? AND scope = ?", key
                ).rowcount
                > 0
            )
            row = conn.execute(
                "SELECT * FROM mapping_rules WHERE source_token = ? AND scope = ?", key
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO mapping_rules (source_token, scope, replacement, confidence, "
                    "anchor_confidence, reinforcement_count, created_at, last_reinforced_at) "
                    "VALUES (?, ?, ?, ?, ?, 0, ?, ?)",
                    (*key, target, initial, initial, now, now),
                )
                return LearningResult.RESTORED if restored else LearningResult.CREATED
            if row["replacement"] == target:
                self._reinforce_row(conn, row, Outcome.SUCCESS, now)
                return LearningResult.REINFORCED
            conn.execute(
                "UPDATE mapping_rules SET replacement = ?, confidence = ?, anchor_confidence = ?, "
                "reinforcement_count = 0, last_reinforced_at = ? "
                "WHERE source_token = ? AND scope = ?",
                (target, initial, initial, now, *key),
            )
            return LearningResult.REPLACED

        result = self.db.write(learn)
        logger.info("Learned %s -> %s (%s): %s", event.source_token, target, event.scope.key, result.value)
        return result

    # =========================================================================
    # Reinforcement
    # =========================================================================

    def _reinforce_row(
        self, conn: sqlite3.Connection, row: sqlite3.Row, outcome: Outcome, now: str
    ) -> MappingRule | NeverSuggestEntry:
        cfg = self.config
        if outcome == Outcome.SUCCESS:
            confidence = _clamp(row["confidence"] + cfg.success_step)
        else:
            confidence = _clamp(row["confidence"] - cfg.failure_step)
        count = row["reinforcement_count"] + 1
        key = (row["source_token"], row["scope"])

        if count >= cfg.min_reinforcements and confidence < cfg.demotion_threshold:
            reason = (
                f"confidence {confidence:.2f} fell below {cfg.demotion_threshold:.2f} "
                f"after {count} reinforcements"
            )
            conn.execute("DELETE FROM mapping_rules WHERE source_token = ? AND scope = ?", key)
            conn.execute(
                "INSERT OR REPLACE INTO never_suggest (source_token, scope, demoted_at, reason) "
                "VALUES (?, ?, ?, ?)",
                (*key, now, reason),
            )
            logger.info("Demoted %s (%s) to never-suggest: %s", key[0], key[1], reason)
            return NeverSuggestEntry(
                source_token=key[0],
                scope=Scope.parse(key[1]),
                demoted_at=parse_ts(now),
                reason=reason,
            )

        conn.execute(
            "UPDATE mapping_rules SET confidence = ?, anchor_confidence = ?, "
            "reinforcement_count = ?, last_reinforced_at = ? "
            "WHERE source_token = ? AND scope = ?",
            (confidence, confidence, count, now, *key),
        )
        rule = _rule_from_row(row)
        rule.confidence = confidence
        rule.anchor_confidence = confidence
        rule.reinforcement_count = count
        rule.last_reinforced_at = parse_ts(now)
        return rule

    def _reinforce_in(
        self, conn: sqlite3.Connection, token: str, scope: Scope, outcome: Outcome, now: str
    ) -> MappingRule | NeverSuggestEntry | None:
        row = conn.execute(
            "SELECT * FROM mapping_rules WHERE source_token = ? AND scope = ?",
            (token, scope.key),
        ).fetchone()
        if row is None:
            return None
        return self._reinforce_row(conn, row, outcome, now)

    def reinforce(
        self, token: str, scope: Scope, outcome: Outcome
    ) -> MappingRule | NeverSuggestEntry | None:
        """Move a learned rule's confidence one step.

        Returns:
            The updated rule, the never-suggest entry that replaced it, or
            None when no learned rule exists for the key.
        """
        now = format_ts(self.clock())
        return self.db.write(lambda conn: self._reinforce_in(conn, token, scope, outcome, now))

    def reinforce_attempt(
        self, attempt_id: str, token: str, scope: Scope, outcome: Outcome
    ) -> MappingRule | NeverSuggestEntry | None:
        """Reinforce from one ledger attempt, at most once per attempt."""
        now = format_ts(self.clock())

        def txn(conn: sqlite3.Connection) -> MappingRule | NeverSuggestEntry | None:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO reinforcement_log "
                "(attempt_id, source_token, scope, outcome, applied_at) VALUES (?, ?, ?, ?, ?)",
                (attempt_id, token, scope.key, outcome.value, now),
            )
            if cursor.rowcount == 0:
                return None
            return self._reinforce_in(conn, token, scope, outcome, now)

        return self.db.write(txn)

    def accounted_attempts(self, attempt_ids: list[str]) -> set[str]:
        """Subset of ``attempt_ids`` whose outcome was already applied."""
        found: set[str] = set()
        # Stay well under SQLite's bound-parameter limit
        for i in range(0, len(attempt_ids), 500):
            chunk = attempt_ids[i : i + 500]
            placeholders = ",".join("?" * len(chunk))
            rows = self.db.read(
                f"SELECT attempt_id FROM reinforcement_log WHERE attempt_id IN ({placeholders})",
                tuple(chunk),
            )
            found.update(r["attempt_id"] for r in rows)
        return found

    # =========================================================================
    # Decay
    # =========================================================================

    def decayed_confidence(self, rule: MappingRule, now: datetime) -> float:
        """Confidence after time decay, computed from the last reinforcement."""
        cfg = self.config
        anchor = rule.anchor_confidence if rule.anchor_confidence is not None else rule.confidence
        weeks = int((now - rule.last_reinforced_at).total_seconds() // _WEEK_SECONDS)
        if weeks < 1:
            return anchor
        factor = max((1.0 - cfg.weekly_decay_rate) ** weeks, 1.0 - cfg.max_decay)
        floor = min(cfg.decay_floor, anchor)
        return _clamp(max(anchor * factor, floor))

    def decay(self, now: datetime | None = None) -> int:
        """Apply time decay to every learned rule. Returns rules changed.

        Idempotent: the result depends only on the anchor and the time since
        the last reinforcement, not on how often decay ran.
        """
        now = now or self.clock()

        def txn(conn: sqlite3.Connection) -> int:
            changed = 0
            for row in conn.execute("SELECT * FROM mapping_rules").fetchall():
                rule = _rule_from_row(row)
                confidence = self.decayed_confidence(rule, now)
                if abs(confidence - rule.confidence) < 1e-9:
                    continue
                conn.execute(
                    "UPDATE mapping_rules SET confidence = ? "
                    "WHERE source_token = ? AND scope = ? AND last_reinforced_at = ?",
                    (confidence, row["source_token"], row["scope"], row["last_reinforced_at"]),
                )
                changed += 1
            return changed

        changed = self.db.write(txn)
        if changed:
            logger.debug("Decayed %d learned rules", changed)
        return changed

    # =========================================================================
    # Administration
    # =========================================================================

    def forget(self, token: str, scope: Scope | None = None) -> bool:
        """Remove the learned rule and any never-suggest entry for a key."""
        key = (token, (scope or Scope.global_()).key)

        def txn(conn: sqlite3.Connection) -> bool:
            removed = conn.execute(
                "DELETE FROM mapping_rules WHERE source_token = ? AND scope = ?", key
            ).rowcount
            removed += conn.execute(
                "DELETE FROM never_suggest WHERE source_token = ? AND scope = ?", key
            ).rowcount
            return removed > 0

        return self.db.write(txn)

    def export_snapshot(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "exported_at": format_ts(self.clock()),
            "rules": [
                {
                    "source_token": r.source_token,
                    "replacement": r.replacement,
                    "scope": r.scope.key,
                    "confidence": r.confidence,
                    "anchor_confidence": r.anchor_confidence,
                    "reinforcement_count": r.reinforcement_count,
                    "created_at": format_ts(r.created_at),
                    "last_reinforced_at": format_ts(r.last_reinforced_at),
                }
                for r in self.active_rules()
            ],
            "never_suggest": [
                {
                    "source_token": e.source_token,
                    "scope": e.scope.key,
                    "demoted_at": format_ts(e.demoted_at),
                    "reason": e.reason,
                }
                for e in self.never_entries()
            ],
        }

    def import_snapshot(self, data: dict[str, Any]) -> int:
        """Upsert rules and entries from ``export_snapshot`` output.

        Each imported key overwrites the existing state for that key. Entries
        without a source token, or with an unreadable timestamp or number, are
        skipped. Returns the number imported.
        """
        now = format_ts(self.clock())
        rules = _importable(
            data.get("rules", []),
            timestamps=("created_at", "last_reinforced_at"),
            numbers={"confidence": float, "anchor_confidence": float, "reinforcement_count": int},
        )
        entries = _importable(data.get("never_suggest", []), timestamps=("demoted_at",))

        def txn(conn: sqlite3.Connection) -> int:
            for r, scope_key in rules:
                confidence = r.get("confidence")
                if confidence is None:
                    confidence = self.config.initial_confidence
                confidence = _clamp(confidence)
                anchor = r.get("anchor_confidence")
                conn.execute(
                    "DELETE FROM never_suggest WHERE source_token = ? AND scope = ?",
                    (r["source_token"], scope_key),
                )
                conn.execute(
                    "INSERT OR REPLACE INTO mapping_rules (source_token, scope, replacement, "
                    "confidence, anchor_confidence, reinforcement_count, created_at, "
                    "last_reinforced_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        r["source_token"],
                        scope_key,
                        str(r.get("replacement", "")),
                        confidence,
                        _clamp(anchor) if anchor is not None else confidence,
                        r.get("reinforcement_count") or 0,
                        r.get("created_at") or now,
                        r.get("last_reinforced_at") or now,
                    ),
                )
            for e, scope_key in entries:
                conn.execute(
                    "DELETE FROM mapping_rules WHERE source_token = ? AND scope = ?",
                    (e["source_token"], scope_key),
                )
                conn.execute(
                    "INSERT OR REPLACE INTO never_suggest (source_token, scope, demoted_at, reason) "
                    "VALUES (?, ?, ?, ?)",
                    (e["source_token"], scope_key, e.get("demoted_at") or now, e.get("reason", "")),
                )
            return len(rules) + len(entries)

        return self.db.write(txn)
