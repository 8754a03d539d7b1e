"""Data models for Hook Advisor: rules, attempts and learning events.

These are plain dataclasses shared by the matcher, the parser and the two
stores. Persistence lives in ``hookadvisor.storage``; nothing here touches disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(ts: datetime) -> str:
    """Serialize a timestamp so that string order equals time order."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def base_token(command: str) -> str:
    """First whitespace-delimited word of a command line."""
    parts = command.split(None, 1)
    return parts[0] if parts else ""


# =============================================================================
# Scopes
# =============================================================================


class ScopeKind(str, Enum):
    """Applicability boundary of a rule."""

    GLOBAL = "global"
    PROJECT = "project"  # value = absolute project root
    CONTEXT = "context"  # value = tag such as "python" or "node"


@dataclass(frozen=True)
class Scope:
    kind: ScopeKind = ScopeKind.GLOBAL
    value: str = ""

    @classmethod
    def global_(cls) -> Scope:
        return cls(ScopeKind.GLOBAL)

    @classmethod
    def project(cls, root: str = "") -> Scope:
        return cls(ScopeKind.PROJECT, root)

    @classmethod
    def context(cls, tag: str) -> Scope:
        return cls(ScopeKind.CONTEXT, tag.lower())

    @classmethod
    def parse(cls, key: str) -> Scope:
        """Inverse of ``key``: ``global``, ``project:/abs/path``, ``context:tag``."""
        if not key or key == ScopeKind.GLOBAL.value:
            return cls.global_()
        kind, _, value = key.partition(":")
        return cls(ScopeKind(kind), value)

    @property
    def key(self) -> str:
        if self.kind == ScopeKind.GLOBAL:
            return ScopeKind.GLOBAL.value
        return f"{self.kind.value}:{self.value}"

    @property
    def is_bound(self) -> bool:
        return self.kind == ScopeKind.GLOBAL or bool(self.value)

    def describe(self) -> str:
        if self.kind == ScopeKind.GLOBAL:
            return "everywhere"
        if self.kind == ScopeKind.PROJECT:
            return f"in project {self.value or '(current)'}"
        return f"in {self.value} projects"


@dataclass(frozen=True)
class ScopeContext:
    """Which scopes are active for one hook invocation."""

    project_root: str | None = None
    tags: frozenset[str] = frozenset()

    def applies(self, scope: Scope) -> bool:
        if scope.kind == ScopeKind.GLOBAL:
            return True
        if scope.kind == ScopeKind.PROJECT:
            return bool(self.project_root) and scope.value == self.project_root
        return scope.value in self.tags

    def bind(self, scope: Scope) -> Scope:
        """Attach the current project root to an unbound project scope."""
        if scope.kind == ScopeKind.PROJECT and not scope.value and self.project_root:
            return Scope.project(self.project_root)
        return scope


# =============================================================================
# Rules
# =============================================================================


class RuleOrigin(str, Enum):
    STATIC = "static"  # From the project config file
    LEARNED = "learned"  # From a user phrase


class Outcome(str, Enum):
    """Reinforcement signal for a learned rule."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class MappingRule:
    """A source command token and its preferred replacement."""

    source_token: str
    replacement: str
    scope: Scope = field(default_factory=Scope.global_)
    origin: RuleOrigin = RuleOrigin.STATIC
    confidence: float = 1.0
    created_at: datetime = field(default_factory=utcnow)
    last_reinforced_at: datetime = field(default_factory=utcnow)
    reinforcement_count: int = 0
    anchor_confidence: float | None = None  # Confidence at last reinforcement; decay base

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_token, self.scope.key)


@dataclass
class NeverSuggestEntry:
    """Terminal demotion: suppresses every rule for the token."""

    source_token: str
    scope: Scope = field(default_factory=Scope.global_)
    demoted_at: datetime = field(default_factory=utcnow)
    reason: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_token, self.scope.key)


# =============================================================================
# Command attempts
# =============================================================================


class AttemptStatus(str, Enum):
    """Persisted status. Failure is never written; see AttemptOutcome."""

    PENDING = "pending"
    SUCCESS = "success"


class AttemptOutcome(str, Enum):
    """Read-time projection of an attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"  # Still pending after its session closed or the grace period
    IN_FLIGHT = "in_flight"  # Still pending, session open, within grace


@dataclass
class CommandAttempt:
    attempt_id: str
    session_id: str
    command_text: str
    base_token: str
    cwd: str
    submitted_at: datetime
    status: AttemptStatus = AttemptStatus.PENDING
    exit_code: int | None = None
    resolved_at: datetime | None = None
    suggestion: str | None = None  # Replacement suggested when the command was blocked


@dataclass
class AttemptQuery:
    """Filters for listing the ledger. Results are newest first."""

    limit: int | None = 50
    session_id: str | None = None
    status: AttemptStatus | None = None
    failures_only: bool = False  # Pending attempts, read as failed
    command_pattern: str | None = None


@dataclass
class TokenStats:
    """Per-token analytics over the ledger."""

    base_token: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    in_flight: int = 0

    @property
    def success_rate(self) -> float:
        settled = self.succeeded + self.failed
        if not settled:
            return 0.0
        return self.succeeded / settled


# =============================================================================
# Learning
# =============================================================================


class PhraseFamily(str, Enum):
    """Recognized learning phrase families, in trial order.

    Order resolves overlaps: never-suggest first ("never use X" also contains
    "use X"), the scoped families before the unscoped ones they embed, and
    "always use X instead of Y" before the plain direct form.
    """

    NEVER_SUGGEST = "never_suggest"
    PROJECT_SCOPED = "project_scoped"
    CONTEXT_SCOPED = "context_scoped"
    SWITCH_FROM_TO = "switch_from_to"
    REPLACE_ALL = "replace_all"
    PREFERENCE = "preference"
    ALWAYS = "always"
    DIRECT = "direct"


@dataclass(frozen=True)
class LearningEvent:
    """One learning intent extracted from a prompt. Never persisted itself."""

    family: PhraseFamily
    source_token: str
    target_token: str | None
    scope: Scope = field(default_factory=Scope.global_)

    @property
    def is_negative(self) -> bool:
        return self.family == PhraseFamily.NEVER_SUGGEST

    def bind(self, context: ScopeContext) -> LearningEvent:
        return replace(self, scope=context.bind(self.scope))


class LearningResult(str, Enum):
    """What applying a learning event did to the store."""

    CREATED = "created"
    REINFORCED = "reinforced"
    REPLACED = "replaced"
    RESTORED = "restored"  # A never-suggest entry was lifted first
    SUPPRESSED = "suppressed"
