"""Exception hierarchy for Hook Advisor.

None of these ever cross ``HookDispatcher.handle_event``: the dispatcher logs
them and answers the host with the safest default instead.
"""

from __future__ import annotations


class HookAdvisorError(Exception):
    """Base class for all Hook Advisor errors."""


class ConfigError(HookAdvisorError):
    """A configured rule or setting is malformed.

    Raised at load time and scoped to the offending rule; the rest of the
    configuration still loads.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class StorageError(HookAdvisorError):
    """The database could not be opened, locked or written."""


class CorrelationMiss(HookAdvisorError):
    """A post-execution event found no matching pending attempt.

    Informational only: the ledger records a new successful attempt instead.
    """

    def __init__(self, session_id: str, command: str) -> None:
        super().__init__(f"No pending attempt for {command!r} in session {session_id}")
        self.session_id = session_id
        self.command = command


class AmbiguousLearning(HookAdvisorError):
    """Free text matched no learning phrase family. Silently ignored."""


class DirectoryError(HookAdvisorError, LookupError):
    """A directory alias is unknown or its path cannot be resolved."""
