"""Hook Advisor: command suggestions for coding agents that learn from outcomes.

Intercepts the host's tool-execution lifecycle, suggests preferred commands and
learns which mappings actually work.

Architecture:
    Hook event  →  HookDispatcher  →  stores (SQLite)
    ├── PreToolUse        ├── PatternMatcher     ├── ConfidenceStore
    ├── UserPromptSubmit  ├── LearningParser     └── ExecutionLedger
    ├── PostToolUse       └── MaintenanceScheduler
    └── SessionEnd

Every hook invocation is a separate short-lived process. All durable state lives
in the database; the dispatcher itself is stateless.
"""

from .config import HookAdvisorConfig, LearningConfig, MaintenanceConfig, load_config
from .exceptions import (
    AmbiguousLearning,
    ConfigError,
    CorrelationMiss,
    HookAdvisorError,
    StorageError,
)
from .hooks import Allow, Block, HookDispatcher, HookEventKind, PlainText
from .learning import LearningParser, parse_learning_event
from .matcher import PatternMatcher

__version__ = "0.4.0"

__all__ = [
    "Allow",
    "AmbiguousLearning",
    "Block",
    "ConfigError",
    "CorrelationMiss",
    "HookAdvisorConfig",
    "HookAdvisorError",
    "HookDispatcher",
    "HookEventKind",
    "LearningConfig",
    "LearningParser",
    "MaintenanceConfig",
    "PatternMatcher",
    "PlainText",
    "StorageError",
    "load_config",
    "parse_learning_event",
]
