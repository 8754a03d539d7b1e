"""Central configuration for Hook Advisor.

Defaults live in the dataclasses below; the project file
``.claude-hook-advisor.toml`` overrides them, and environment variables override
the storage and logging locations:

    HOOKADVISOR_DB         Database path or URL (sqlite:///path/to/history.db)
    HOOKADVISOR_LOG_LEVEL  DEBUG, INFO, WARNING (default WARNING)
    HOOKADVISOR_LOG_FILE   Also write diagnostics to this file

Example project file:

    [commands]
    npm = "bun"
    "npm test" = "bun test"

    [scope]
    tags = ["node"]

    [learning]
    failure_step = 0.2

    [maintenance]
    min_attempts = 5
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigError
from .models import MappingRule, RuleOrigin, Scope, ScopeContext

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".claude-hook-advisor.toml"
DEFAULT_HISTORY_PATH = "~/.claude-hook-advisor/bash-history.db"

# Marker file → context tag, checked at the project root
_CONTEXT_MARKERS: list[tuple[str, str]] = [
    ("package.json", "node"),
    ("pyproject.toml", "python"),
    ("requirements.txt", "python"),
    ("setup.py", "python"),
    ("Cargo.toml", "rust"),
    ("go.mod", "go"),
    ("pom.xml", "java"),
    ("build.gradle", "java"),
    ("Dockerfile", "docker"),
]

_PROJECT_ROOT_MARKERS = (".git", DEFAULT_CONFIG_FILE)


@dataclass
class LearningConfig:
    """Confidence tunables for learned rules.

    One failure costs more than one success earns.

    Attributes:
        initial_confidence: Confidence of a freshly learned rule.
        success_step: Added on a Success reinforcement (capped at 1.0).
        failure_step: Subtracted on a Failure reinforcement (floored at 0.0).
        demotion_threshold: Below this, a rule becomes a never-suggest entry...
        min_reinforcements: ...but only after at least this many reinforcements.
        weekly_decay_rate: Fraction lost per full week without reinforcement.
        max_decay: Cap on cumulative decay since the last reinforcement.
        decay_floor: Decay alone never takes a rule below this.
    """

    initial_confidence: float = 0.6
    success_step: float = 0.10
    failure_step: float = 0.15
    demotion_threshold: float = 0.2
    min_reinforcements: int = 3
    weekly_decay_rate: float = 0.05
    max_decay: float = 0.30
    decay_floor: float = 0.10


@dataclass
class MaintenanceConfig:
    """Gating for the opportunistic maintenance pass run after PostToolUse."""

    interval_hours: float = 24.0
    min_attempts: int = 10
    grace_period_minutes: float = 30.0
    lookback_days: int = 30


@dataclass
class HistoryConfig:
    enabled: bool = True
    log_file: str = field(
        default_factory=lambda: os.environ.get("HOOKADVISOR_DB", DEFAULT_HISTORY_PATH)
    )


@dataclass
class HookAdvisorConfig:
    """Everything the dispatcher consumes from the configuration layer."""

    static_rules: list[MappingRule] = field(default_factory=list)
    rejected_rules: list[ConfigError] = field(default_factory=list)
    semantic_directories: dict[str, str] = field(default_factory=dict)
    directory_variables: dict[str, str] = field(default_factory=dict)
    scope_tags: list[str] = field(default_factory=list)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    replace_mode: bool = False
    source_path: Path | None = None

    @property
    def database_url(self) -> str:
        url = self.history.log_file
        if "://" in url:
            return url
        return str(Path(url).expanduser())

    def scope_context(self, cwd: str | None) -> ScopeContext:
        """Active scopes for a command run in ``cwd``."""
        tags = {t.lower() for t in self.scope_tags}
        if not cwd:
            return ScopeContext(project_root=None, tags=frozenset(tags))
        root = find_project_root(Path(cwd))
        tags |= detect_context_tags(root)
        return ScopeContext(project_root=str(root), tags=frozenset(tags))


# =============================================================================
# Project detection
# =============================================================================


def find_project_root(cwd: Path) -> Path:
    """Nearest ancestor holding a VCS or config marker; ``cwd`` if none."""
    try:
        start = cwd.expanduser().resolve()
    except OSError:
        return cwd
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in _PROJECT_ROOT_MARKERS):
            return candidate
    return start


def detect_context_tags(root: Path) -> set[str]:
    tags: set[str] = set()
    for marker, tag in _CONTEXT_MARKERS:
        if (root / marker).exists():
            tags.add(tag)
    return tags


# =============================================================================
# Loading
# =============================================================================


def parse_static_rules(commands: dict[str, Any]) -> tuple[list[MappingRule], list[ConfigError]]:
    """Validate ``[commands]`` entries. A bad entry is rejected on its own."""
    rules: list[MappingRule] = []
    rejected: list[ConfigError] = []
    for source, replacement in commands.items():
        source_token = source.strip() if isinstance(source, str) else ""
        if not source_token:
            rejected.append(ConfigError("Mapping rule has an empty source token", key=source))
            continue
        if not isinstance(replacement, str) or not replacement.strip():
            rejected.append(
                ConfigError(f"Mapping rule {source!r} has no replacement command", key=source)
            )
            continue
        rules.append(
            MappingRule(
                source_token=source_token,
                replacement=replacement.strip(),
                scope=Scope.global_(),
                origin=RuleOrigin.STATIC,
                confidence=1.0,
            )
        )
    for error in rejected:
        logger.warning("Ignoring malformed rule: %s", error)
    return rules, rejected


def _fraction(table: dict[str, Any], name: str, default: float) -> float:
    value = table.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        logger.warning("Invalid %s=%r (expected 0..1), using %s", name, value, default)
        return default
    return float(value)


def _positive(table: dict[str, Any], name: str, default: float) -> float:
    value = table.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        logger.warning("Invalid %s=%r (expected >= 0), using %s", name, value, default)
        return default
    return value


def _learning_config(table: dict[str, Any]) -> LearningConfig:
    d = LearningConfig()
    return LearningConfig(
        initial_confidence=_fraction(table, "initial_confidence", d.initial_confidence),
        success_step=_fraction(table, "success_step", d.success_step),
        failure_step=_fraction(table, "failure_step", d.failure_step),
        demotion_threshold=_fraction(table, "demotion_threshold", d.demotion_threshold),
        min_reinforcements=int(_positive(table, "min_reinforcements", d.min_reinforcements)),
        weekly_decay_rate=_fraction(table, "weekly_decay_rate", d.weekly_decay_rate),
        max_decay=_fraction(table, "max_decay", d.max_decay),
        decay_floor=_fraction(table, "decay_floor", d.decay_floor),
    )


def _maintenance_config(table: dict[str, Any]) -> MaintenanceConfig:
    d = MaintenanceConfig()
    return MaintenanceConfig(
        interval_hours=float(_positive(table, "interval_hours", d.interval_hours)),
        min_attempts=int(_positive(table, "min_attempts", d.min_attempts)),
        grace_period_minutes=float(
            _positive(table, "grace_period_minutes", d.grace_period_minutes)
        ),
        lookback_days=int(_positive(table, "lookback_days", d.lookback_days)),
    )


def config_from_dict(data: dict[str, Any], source_path: Path | None = None) -> HookAdvisorConfig:
    static_rules, rejected = parse_static_rules(data.get("commands", {}))

    history = HistoryConfig()
    history_table = data.get("command_history", {})
    if "enabled" in history_table:
        history.enabled = bool(history_table["enabled"])
    if "log_file" in history_table and "HOOKADVISOR_DB" not in os.environ:
        history.log_file = str(history_table["log_file"])

    scope_table = data.get("scope", {})
    tags = [str(t).lower() for t in scope_table.get("tags", [])]

    return HookAdvisorConfig(
        static_rules=static_rules,
        rejected_rules=rejected,
        semantic_directories={
            str(k): str(v) for k, v in data.get("semantic_directories", {}).items()
        },
        directory_variables={
            str(k): str(v) for k, v in data.get("directory_variables", {}).items()
        },
        scope_tags=tags,
        history=history,
        learning=_learning_config(data.get("learning", {})),
        maintenance=_maintenance_config(data.get("maintenance", {})),
        replace_mode=bool(data.get("replace_mode", False)),
        source_path=source_path,
    )


def load_config(config_path: str | Path = DEFAULT_CONFIG_FILE) -> HookAdvisorConfig:
    """Load the project configuration file.

    A missing file yields an empty configuration (no static mappings) and a
    warning, so the hooks still run.

    Raises:
        ConfigError: The file exists but cannot be read or parsed.
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning("Config file '%s' not found. No command mappings will be applied.", path)
        return HookAdvisorConfig()

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    return config_from_dict(data, source_path=path)
