"""Learning parser: extract a command-preference intent from a user prompt.

Recognizes a fixed set of phrase templates; this is not general NLP. Each
template belongs to a ``PhraseFamily`` and the families are tried in the
order the enum declares them. First match wins.

Tokens are single words (``bun``, ``./gradlew``, ``@scope/cli``) or quoted /
back-ticked phrases for multi-word commands (``"uv pip"``).

    never suggest X / never use X instead of Y   → never-suggest (source Y, else X)
    for this project, use X instead of Y         → project-scoped
    in python projects, use X instead of Y       → context-scoped
    switch from Y to X                           → switch-from-to
    replace all Y with X                         → replace-all
    prefer X over Y                              → preference
    always use X instead of Y                    → always
    use X instead of Y                           → direct
"""

from __future__ import annotations

import logging
import re

from .exceptions import AmbiguousLearning
from .models import LearningEvent, PhraseFamily, Scope

logger = logging.getLogger(__name__)

_TOKEN = r"(?:`[^`]+`|\"[^\"]+\"|'[^']+'|[\w./@:+~=-]+)"
_INSTEAD = r"(?:instead\s+of|rather\s+than)"
_PROJECT = r"(?:this|the\s+current)\s+(?:project|repo|repository|codebase)"


def _t(name: str) -> str:
    return f"(?P<{name}>{_TOKEN})"


def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


# (family, patterns). Order of this list is the trial order.
_FAMILY_PATTERNS: list[tuple[PhraseFamily, list[re.Pattern]]] = [
    (
        PhraseFamily.NEVER_SUGGEST,
        [
            _compile(
                r"\b(?:never|don['’]?t|do\s+not|stop)\s+"
                r"(?:suggest(?:ing)?|replac(?:e|ing)|us(?:e|ing))\s+"
                + _t("target")
                + r"\s+(?:"
                + _INSTEAD
                + r"|for|over)\s+"
                + _t("source")
            ),
            _compile(
                r"\b(?:never|don['’]?t|do\s+not|stop)\s+"
                r"(?:suggest(?:ing)?|replac(?:e|ing)|us(?:e|ing))\s+"
                + _t("source")
            ),
        ],
    ),
    (
        PhraseFamily.PROJECT_SCOPED,
        [
            _compile(
                r"\b(?:for|in)\s+"
                + _PROJECT
                + r"\s*,?\s+(?:always\s+)?use\s+"
                + _t("target")
                + r"\s+"
                + _INSTEAD
                + r"\s+"
                + _t("source")
            ),
            _compile(
                r"\buse\s+"
                + _t("target")
                + r"\s+"
                + _INSTEAD
                + r"\s+"
                + _t("source")
                + r"\s+(?:for|in)\s+"
                + _PROJECT
            ),
        ],
    ),
    (
        PhraseFamily.CONTEXT_SCOPED,
        [
            _compile(
                r"\bin\s+(?P<context>[\w.+#-]+)\s+projects?\s*,?\s+(?:always\s+)?use\s+"
                + _t("target")
                + r"\s+"
                + _INSTEAD
                + r"\s+"
                + _t("source")
            ),
            _compile(
                r"\buse\s+"
                + _t("target")
                + r"\s+"
                + _INSTEAD
                + r"\s+"
                + _t("source")
                + r"\s+(?:in|for)\s+(?P<context>[\w.+#-]+)\s+projects?\b"
            ),
        ],
    ),
    (
        PhraseFamily.SWITCH_FROM_TO,
        [_compile(r"\bswitch\s+from\s+" + _t("source") + r"\s+to\s+" + _t("target"))],
    ),
    (
        PhraseFamily.REPLACE_ALL,
        [
            _compile(
                r"\breplace\s+(?:all\s+|every\s+|any\s+)?(?:uses?\s+of\s+)?"
                + _t("source")
                + r"(?:\s+(?:commands?|calls?|invocations?))?\s+with\s+"
                + _t("target")
            )
        ],
    ),
    (
        PhraseFamily.PREFERENCE,
        [
            _compile(
                r"\bprefer\s+"
                + _t("target")
                + r"\s+(?:over|to|"
                + _INSTEAD
                + r")\s+"
                + _t("source")
            )
        ],
    ),
    (
        PhraseFamily.ALWAYS,
        [
            _compile(
                r"\balways\s+use\s+"
                + _t("target")
                + r"\s+(?:"
                + _INSTEAD
                + r"|over|for)\s+"
                + _t("source")
            )
        ],
    ),
    (
        PhraseFamily.DIRECT,
        [_compile(r"\buse\s+" + _t("target") + r"\s+" + _INSTEAD + r"\s+" + _t("source"))],
    ),
]

_CONTEXT_ALIASES = {
    "node.js": "node",
    "nodejs": "node",
    "js": "node",
    "javascript": "node",
    "typescript": "node",
    "ts": "node",
    "py": "python",
    "golang": "go",
    "rs": "rust",
}


def normalize_context(tag: str) -> str:
    tag = tag.lower().strip(".,")
    return _CONTEXT_ALIASES.get(tag, tag)


def _clean_token(raw: str) -> str:
    token = raw.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "`\"'":
        token = token[1:-1]
    # Sentence punctuation that the bare-token pattern swallowed
    token = token.rstrip(".,;:!?")
    return " ".join(token.split())


def _scope_for(family: PhraseFamily, match: re.Match) -> Scope:
    if family == PhraseFamily.PROJECT_SCOPED:
        return Scope.project()
    if family == PhraseFamily.CONTEXT_SCOPED:
        return Scope.context(normalize_context(match.group("context")))
    return Scope.global_()


def _event_from_match(family: PhraseFamily, match: re.Match) -> LearningEvent | None:
    groups = match.groupdict()
    source = _clean_token(groups.get("source") or "")
    target = _clean_token(groups["target"]) if groups.get("target") else None
    if not source:
        return None
    if target is not None and target == source:
        logger.debug("Discarding no-op learning phrase (%s -> %s)", source, target)
        return None
    return LearningEvent(
        family=family,
        source_token=source,
        target_token=target,
        scope=_scope_for(family, match),
    )


class LearningParser:
    """Tries each phrase family in order; first match wins."""

    def __init__(
        self,
        families: list[tuple[PhraseFamily, list[re.Pattern]]] | None = None,
    ) -> None:
        self.families = families if families is not None else _FAMILY_PATTERNS

    def parse_strict(self, text: str) -> LearningEvent | None:
        """Like ``parse`` but raises when no family matches.

        Returns None only for a recognized phrase that is a no-op
        (source equals target).

        Raises:
            AmbiguousLearning: No phrase family matched.
        """
        normalized = " ".join(text.split())
        if normalized:
            for family, patterns in self.families:
                for pattern in patterns:
                    match = pattern.search(normalized)
                    if match:
                        return _event_from_match(family, match)
        raise AmbiguousLearning(f"No learning phrase in {text[:80]!r}")

    def parse(self, text: str) -> LearningEvent | None:
        try:
            return self.parse_strict(text)
        except AmbiguousLearning:
            return None


_default_parser: LearningParser | None = None


def parse_learning_event(text: str) -> LearningEvent | None:
    """Module-level convenience using the default phrase set."""
    global _default_parser
    if _default_parser is None:
        _default_parser = LearningParser()
    return _default_parser.parse(text)
