"""Pattern matcher: decides whether a command line has a preferred replacement.

Precedence, highest first:
    1. A never-suggest entry for the source token (no suggestion at all)
    2. Exact full-string match of the command
    3. Anchored match: the source occupies position 0 and is followed by
       whitespace or end of line. Longest source wins.
    4. No match (the command passes through)

Among rules for one source token the highest confidence wins, ties broken by
the most recent reinforcement.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from .exceptions import ConfigError
from .models import MappingRule, NeverSuggestEntry, RuleOrigin, ScopeContext

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    rule: MappingRule
    suggested_command: str
    exact: bool = False

    @property
    def reason(self) -> str:
        return (
            f"Command '{self.rule.source_token}' is mapped to use "
            f"'{self.rule.replacement}' instead. Try: {self.suggested_command}"
        )


def anchored_remainder(source: str, command: str) -> str | None:
    """Rest of ``command`` after a leading ``source`` token, or None.

    ``npm`` matches ``npm install`` (remainder `` install``) and ``npm``
    (remainder ``""``) but not ``npmc``, ``my-npm`` or ``npx npm``.
    """
    if not source or not command.startswith(source):
        return None
    rest = command[len(source) :]
    if rest and not rest[0].isspace():
        return None
    return rest


def _rank(rule: MappingRule) -> tuple[float, float, int]:
    return (
        rule.confidence,
        rule.last_reinforced_at.timestamp(),
        1 if rule.origin == RuleOrigin.LEARNED else 0,
    )


class PatternMatcher:
    """Compiled view of a rule set for one invocation.

    Args:
        rules: Static and learned mapping rules.
        never_suggest: Never-suggest entries; they suppress matching tokens.
        context: Active scopes. When omitted, every rule participates.
    """

    def __init__(
        self,
        rules: Iterable[MappingRule],
        never_suggest: Iterable[NeverSuggestEntry] = (),
        context: ScopeContext | None = None,
    ) -> None:
        self.rejected: list[ConfigError] = []
        by_key: dict[tuple[str, str], MappingRule] = {}

        for rule in rules:
            if not rule.source_token or not rule.source_token.strip():
                error = ConfigError("Mapping rule has an empty source token", key=rule.source_token)
                logger.warning("Rejecting rule -> %r: %s", rule.replacement, error)
                self.rejected.append(error)
                continue
            if context is not None and not context.applies(rule.scope):
                continue
            existing = by_key.get(rule.key)
            # A learned rule shadows the static rule for the same key
            if existing is None or existing.origin == RuleOrigin.STATIC:
                by_key[rule.key] = rule

        self._by_source: dict[str, list[MappingRule]] = defaultdict(list)
        for rule in by_key.values():
            self._by_source[rule.source_token].append(rule)
        for candidates in self._by_source.values():
            candidates.sort(key=_rank, reverse=True)

        self._never: set[str] = {
            entry.source_token
            for entry in never_suggest
            if context is None or context.applies(entry.scope)
        }
        self._sources = sorted(self._by_source, key=len, reverse=True)

    def is_suppressed(self, token: str) -> bool:
        return token in self._never

    def best_rule(self, source: str) -> MappingRule | None:
        if source in self._never:
            return None
        candidates = self._by_source.get(source)
        return candidates[0] if candidates else None

    def followed_rule(self, command: str) -> MappingRule | None:
        """The winning rule whose replacement ``command`` starts with, if any.

        Longest replacement wins, so ``bun run`` is preferred over ``bun``.
        """
        text = command.strip()
        followed = None
        for source in self._sources:
            rule = self.best_rule(source)
            if rule is None or anchored_remainder(rule.replacement, text) is None:
                continue
            if followed is None or len(rule.replacement) > len(followed.replacement):
                followed = rule
        return followed

    def match(self, command: str) -> MatchResult | None:
        text = command.strip()
        if not text:
            return None

        rule = self.best_rule(text)
        if rule is not None:
            return MatchResult(rule=rule, suggested_command=rule.replacement, exact=True)

        for source in self._sources:
            remainder = anchored_remainder(source, text)
            if remainder is None:
                continue
            rule = self.best_rule(source)
            if rule is None:
                continue
            return MatchResult(rule=rule, suggested_command=f"{rule.replacement}{remainder}")

        return None
