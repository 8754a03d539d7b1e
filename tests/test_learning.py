"""Tests for the learning phrase parser."""

import pytest

from hookadvisor.exceptions import AmbiguousLearning
from hookadvisor.learning import LearningParser, normalize_context, parse_learning_event
from hookadvisor.models import PhraseFamily, Scope, ScopeContext, ScopeKind


class TestPhraseFamilies:
    def test_direct(self):
        event = parse_learning_event("use pnpm instead of yarn")
        assert event.family == PhraseFamily.DIRECT
        assert event.source_token == "yarn"
        assert event.target_token == "pnpm"
        assert event.scope == Scope.global_()
        assert not event.is_negative

    def test_always(self):
        event = parse_learning_event("Always use bun instead of npm please")
        assert event.family == PhraseFamily.ALWAYS
        assert (event.source_token, event.target_token) == ("npm", "bun")

    def test_preference(self):
        event = parse_learning_event("I prefer ripgrep over grep")
        assert event.family == PhraseFamily.PREFERENCE
        assert (event.source_token, event.target_token) == ("grep", "ripgrep")

    def test_replace_all(self):
        event = parse_learning_event("replace all curl commands with httpie")
        assert event.family == PhraseFamily.REPLACE_ALL
        assert (event.source_token, event.target_token) == ("curl", "httpie")

    def test_switch_from_to(self):
        event = parse_learning_event("Let's switch from pip to uv.")
        assert event.family == PhraseFamily.SWITCH_FROM_TO
        assert (event.source_token, event.target_token) == ("pip", "uv")

    def test_project_scoped(self):
        event = parse_learning_event("For this project, use poetry instead of pip")
        assert event.family == PhraseFamily.PROJECT_SCOPED
        assert event.scope.kind == ScopeKind.PROJECT
        assert not event.scope.is_bound

    def test_project_scoped_trailing_form(self):
        event = parse_learning_event("use make instead of just in this repo")
        assert event.family == PhraseFamily.PROJECT_SCOPED
        assert (event.source_token, event.target_token) == ("just", "make")

    def test_context_scoped(self):
        event = parse_learning_event("In Python projects, use uv instead of pip")
        assert event.family == PhraseFamily.CONTEXT_SCOPED
        assert event.scope == Scope.context("python")

    def test_context_scoped_trailing_form(self):
        event = parse_learning_event("use bun instead of npm for node.js projects")
        assert event.scope == Scope.context("node")

    def test_never_suggest_single_token(self):
        event = parse_learning_event("never suggest docker")
        assert event.family == PhraseFamily.NEVER_SUGGEST
        assert event.source_token == "docker"
        assert event.target_token is None
        assert event.is_negative

    def test_never_use_x_instead_of_y_targets_y(self):
        event = parse_learning_event("never use podman instead of docker")
        assert event.family == PhraseFamily.NEVER_SUGGEST
        assert event.source_token == "docker"
        assert event.target_token == "podman"

    def test_dont_contraction(self):
        event = parse_learning_event("don't replace make")
        assert event.family == PhraseFamily.NEVER_SUGGEST
        assert event.source_token == "make"


class TestTokens:
    def test_quoted_multi_word_tokens(self):
        event = parse_learning_event('use "uv pip" instead of "pip3"')
        assert (event.source_token, event.target_token) == ("pip3", "uv pip")

    def test_backticked_tokens(self):
        event = parse_learning_event("use `bun run` instead of `npm run`")
        assert (event.source_token, event.target_token) == ("npm run", "bun run")

    def test_trailing_punctuation_stripped(self):
        event = parse_learning_event("use pnpm instead of yarn!")
        assert event.source_token == "yarn"

    def test_case_and_whitespace_tolerant(self):
        event = parse_learning_event("USE   pnpm\n  INSTEAD OF   yarn")
        assert (event.source_token, event.target_token) == ("yarn", "pnpm")

    def test_identical_source_and_target_discarded(self):
        assert parse_learning_event("use npm instead of npm") is None


class TestNoMatch:
    @pytest.mark.parametrize(
        "text",
        ["", "please fix the tests", "how do I use docker compose?", "npm is slow"],
    )
    def test_unrecognized_returns_none(self, text):
        assert parse_learning_event(text) is None

    def test_strict_raises(self):
        with pytest.raises(AmbiguousLearning):
            LearningParser().parse_strict("run the build")


class TestOrdering:
    def test_never_beats_direct(self):
        # "never use X instead of Y" also contains the direct form
        event = parse_learning_event("never use yarn instead of npm")
        assert event.family == PhraseFamily.NEVER_SUGGEST

    def test_always_beats_direct(self):
        event = parse_learning_event("always use bun instead of node")
        assert event.family == PhraseFamily.ALWAYS

    def test_scoped_beats_direct(self):
        event = parse_learning_event("in go projects, use gotestsum instead of go")
        assert event.family == PhraseFamily.CONTEXT_SCOPED
        assert event.scope == Scope.context("go")


class TestContextNormalization:
    @pytest.mark.parametrize(
        "raw,expected",
        [("node.js", "node"), ("NodeJS", "node"), ("javascript", "node"), ("py", "python"),
         ("golang", "go"), ("rust", "rust")],
    )
    def test_aliases(self, raw, expected):
        assert normalize_context(raw) == expected


class TestBinding:
    def test_bind_project_scope(self):
        event = parse_learning_event("for this project use poetry instead of pip")
        bound = event.bind(ScopeContext(project_root="/work/app"))
        assert bound.scope == Scope.project("/work/app")
        assert bound.scope.is_bound

    def test_bind_leaves_global_alone(self):
        event = parse_learning_event("use pnpm instead of yarn")
        assert event.bind(ScopeContext(project_root="/work/app")).scope == Scope.global_()
