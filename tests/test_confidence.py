"""Tests for the confidence store: learning, reinforcement, demotion, decay."""

import threading

import pytest

from hookadvisor.config import LearningConfig
from hookadvisor.models import (
    LearningEvent,
    LearningResult,
    MappingRule,
    NeverSuggestEntry,
    Outcome,
    PhraseFamily,
    Scope,
)
from hookadvisor.storage import ConfidenceStore, SQLiteDatabase


def _event(
    source: str = "yarn",
    target: str | None = "pnpm",
    family: PhraseFamily = PhraseFamily.DIRECT,
    scope: Scope | None = None,
) -> LearningEvent:
    return LearningEvent(
        family=family, source_token=source, target_token=target, scope=scope or Scope.global_()
    )


def _never(source: str = "yarn") -> LearningEvent:
    return _event(source=source, target=None, family=PhraseFamily.NEVER_SUGGEST)


@pytest.fixture
def store(db, clock):
    return ConfidenceStore(db, LearningConfig(), clock=clock)


class TestApplyLearning:
    def test_creates_rule_at_initial_confidence(self, store):
        assert store.apply_learning(_event()) == LearningResult.CREATED
        rule = store.get_rule("yarn")
        assert rule.replacement == "pnpm"
        assert rule.confidence == pytest.approx(0.6)
        assert rule.reinforcement_count == 0

    def test_same_mapping_reinforces(self, store):
        store.apply_learning(_event())
        assert store.apply_learning(_event()) == LearningResult.REINFORCED
        assert store.get_rule("yarn").confidence == pytest.approx(0.7)

    def test_different_replacement_overwrites(self, store):
        store.apply_learning(_event())
        store.apply_learning(_event())
        assert store.apply_learning(_event(target="npm")) == LearningResult.REPLACED
        rules = store.active_rules()
        assert len(rules) == 1
        assert rules[0].replacement == "npm"
        assert rules[0].confidence == pytest.approx(0.6)

    def test_never_event_replaces_rule(self, store):
        store.apply_learning(_event())
        assert store.apply_learning(_never()) == LearningResult.SUPPRESSED
        assert store.get_rule("yarn") is None
        assert store.get_never_entry("yarn") is not None

    def test_positive_event_lifts_never_entry(self, store):
        store.apply_learning(_never())
        assert store.apply_learning(_event()) == LearningResult.RESTORED
        assert store.get_never_entry("yarn") is None
        assert store.get_rule("yarn").confidence == pytest.approx(0.6)

    def test_scopes_are_separate_keys(self, store):
        store.apply_learning(_event())
        store.apply_learning(_event(target="npm", scope=Scope.context("node")))
        assert store.get_rule("yarn").replacement == "pnpm"
        assert store.get_rule("yarn", Scope.context("node")).replacement == "npm"

    def test_unbound_project_scope_rejected(self, store):
        with pytest.raises(ValueError):
            store.apply_learning(_event(scope=Scope.project()))


class TestReinforce:
    def test_success_and_failure_steps(self, store):
        store.apply_learning(_event())
        rule = store.reinforce("yarn", Scope.global_(), Outcome.SUCCESS)
        assert rule.confidence == pytest.approx(0.7)
        rule = store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)
        assert rule.confidence == pytest.approx(0.55)
        assert store.get_rule("yarn").reinforcement_count == 2

    def test_success_capped_at_one(self, store):
        store.apply_learning(_event())
        for _ in range(10):
            store.reinforce("yarn", Scope.global_(), Outcome.SUCCESS)
        assert store.get_rule("yarn").confidence == pytest.approx(1.0)

    def test_three_failures_demote(self, store):
        store.apply_learning(_event())
        store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)
        store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)
        result = store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)
        assert isinstance(result, NeverSuggestEntry)
        assert store.get_rule("yarn") is None
        assert "0.15" in store.get_never_entry("yarn").reason

    def test_no_demotion_before_min_reinforcements(self, db, clock):
        store = ConfidenceStore(db, LearningConfig(failure_step=0.5), clock=clock)
        store.apply_learning(_event())
        result = store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)
        assert isinstance(result, MappingRule)
        assert result.confidence == pytest.approx(0.1)
        result = store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)
        assert isinstance(result, MappingRule)
        assert result.confidence == pytest.approx(0.0)

    def test_missing_rule(self, store):
        assert store.reinforce("nope", Scope.global_(), Outcome.SUCCESS) is None

    def test_reinforce_attempt_applies_once(self, store):
        store.apply_learning(_event())
        first = store.reinforce_attempt("a1", "yarn", Scope.global_(), Outcome.SUCCESS)
        second = store.reinforce_attempt("a1", "yarn", Scope.global_(), Outcome.SUCCESS)
        assert first.confidence == pytest.approx(0.7)
        assert second is None
        assert store.get_rule("yarn").confidence == pytest.approx(0.7)
        assert store.accounted_attempts(["a1", "a2"]) == {"a1"}


class TestDecay:
    def test_no_decay_within_first_week(self, store, clock):
        store.apply_learning(_event())
        clock.advance(days=6)
        assert store.decay() == 0
        assert store.get_rule("yarn").confidence == pytest.approx(0.6)

    def test_weekly_decay(self, store, clock):
        store.apply_learning(_event())
        clock.advance(weeks=2)
        store.decay()
        assert store.get_rule("yarn").confidence == pytest.approx(0.6 * 0.95**2, abs=1e-6)

    def test_decay_is_idempotent(self, store, clock):
        store.apply_learning(_event())
        clock.advance(weeks=3)
        store.decay()
        once = store.get_rule("yarn").confidence
        store.decay()
        store.decay()
        assert store.get_rule("yarn").confidence == pytest.approx(once)

    def test_decay_capped_at_thirty_percent(self, store, clock):
        store.apply_learning(_event())
        clock.advance(weeks=52)
        store.decay()
        assert store.get_rule("yarn").confidence == pytest.approx(0.42)

    def test_decay_floor(self, db, clock):
        store = ConfidenceStore(db, LearningConfig(max_decay=1.0), clock=clock)
        store.apply_learning(_event())
        clock.advance(weeks=200)
        store.decay()
        assert store.get_rule("yarn").confidence == pytest.approx(0.10)

    def test_rule_below_floor_not_raised(self, db, clock):
        store = ConfidenceStore(db, LearningConfig(failure_step=0.55), clock=clock)
        store.apply_learning(_event())
        store.reinforce("yarn", Scope.global_(), Outcome.FAILURE)  # 0.05
        clock.advance(weeks=10)
        store.decay()
        assert store.get_rule("yarn").confidence == pytest.approx(0.05)

    def test_reinforcement_resets_decay_anchor(self, store, clock):
        store.apply_learning(_event())
        clock.advance(weeks=2)
        store.decay()
        store.reinforce("yarn", Scope.global_(), Outcome.SUCCESS)
        rule = store.get_rule("yarn")
        assert rule.confidence == pytest.approx(0.6 * 0.95**2 + 0.1, abs=1e-6)
        assert rule.anchor_confidence == pytest.approx(rule.confidence)


class TestAdministration:
    def test_forget(self, store):
        store.apply_learning(_event())
        assert store.forget("yarn")
        assert store.get_rule("yarn") is None
        assert not store.forget("yarn")

    def test_snapshot_restores_state(self, store, tmp_path, clock):
        store.apply_learning(_event())
        store.apply_learning(_never("docker"))
        snapshot = store.export_snapshot()

        other = ConfidenceStore(SQLiteDatabase(tmp_path / "other.db"), clock=clock)
        assert other.import_snapshot(snapshot) == 2
        assert other.get_rule("yarn").replacement == "pnpm"
        assert other.get_never_entry("docker") is not None
        other.db.close()

    def test_import_skips_entries_without_source(self, store):
        data = {"rules": [{"source_token": "", "replacement": "x"}], "never_suggest": []}
        assert store.import_snapshot(data) == 0
        assert store.active_rules() == []

    def test_import_skips_unreadable_values(self, store):
        data = {
            "rules": [
                {"source_token": "yarn", "replacement": "pnpm", "created_at": "yesterday"},
                {"source_token": "npm", "replacement": "bun", "confidence": "high"},
                {"source_token": "pip", "replacement": "uv", "reinforcement_count": "many"},
                {"source_token": "make", "replacement": "just", "confidence": "0.8"},
            ],
            "never_suggest": [{"source_token": "docker", "demoted_at": "last week"}],
        }
        assert store.import_snapshot(data) == 1
        assert [r.source_token for r in store.active_rules()] == ["make"]
        assert store.get_rule("make").confidence == pytest.approx(0.8)
        assert store.never_entries() == []

    def test_import_normalizes_timestamps(self, store):
        data = {
            "rules": [
                {
                    "source_token": "yarn",
                    "replacement": "pnpm",
                    "created_at": "2026-01-05T10:00:00",
                    "last_reinforced_at": "2026-01-06T10:00:00+02:00",
                }
            ]
        }
        assert store.import_snapshot(data) == 1
        rule = store.get_rule("yarn")
        assert rule.created_at.isoformat() == "2026-01-05T10:00:00+00:00"
        assert rule.last_reinforced_at.isoformat() == "2026-01-06T08:00:00+00:00"


class TestConcurrency:
    def test_parallel_writers_lose_no_updates(self, db_path, clock):
        setup = ConfidenceStore(SQLiteDatabase(db_path), clock=clock)
        setup.apply_learning(_event())
        setup.db.close()
        errors: list[Exception] = []

        def worker() -> None:
            database = SQLiteDatabase(db_path, timeout=2.0, max_retries=8)
            store = ConfidenceStore(database, LearningConfig(success_step=0.01), clock=clock)
            try:
                for _ in range(5):
                    store.reinforce("yarn", Scope.global_(), Outcome.SUCCESS)
            except Exception as e:  # noqa: BLE001
                errors.append(e)
            finally:
                database.close()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        check = ConfidenceStore(SQLiteDatabase(db_path), clock=clock)
        rule = check.get_rule("yarn")
        assert rule.reinforcement_count == 20
        assert rule.confidence == pytest.approx(0.8)
        check.db.close()
