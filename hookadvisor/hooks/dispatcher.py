"""Hook dispatcher: routes one host event to the matcher, parser and stores.

Each hook invocation is a fresh process, so the dispatcher holds no state
between events; everything durable goes through the stores. It never raises:
any failure is logged and answered with the safest default (Allow for
PreToolUse, empty text otherwise). If storage is unavailable the dispatcher
keeps working on static rules alone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from ..config import HookAdvisorConfig
from ..directory import detect_directory_references
from ..exceptions import StorageError
from ..learning import LearningParser
from ..maintenance import MaintenanceScheduler
from ..matcher import PatternMatcher
from ..models import LearningEvent, LearningResult, Scope, ScopeContext, utcnow
from ..storage import ConfidenceStore, ExecutionLedger, SQLiteDatabase, create_storage
from .events import Allow, Block, HookEventKind, HookInput, HookResponse, PlainText

logger = logging.getLogger(__name__)


def acknowledge(event: LearningEvent, result: LearningResult) -> str:
    """Plain-text confirmation shown to the agent after a learning phrase."""
    where = event.scope.describe()
    if event.is_negative:
        return f"Learned: will not suggest a replacement for '{event.source_token}' {where}."
    text = f"Learned: use '{event.target_token}' instead of '{event.source_token}' {where}"
    if result == LearningResult.REINFORCED:
        text += " (already known, confidence increased)"
    elif result == LearningResult.REPLACED:
        text += " (replaces the previous mapping)"
    return text + "."


class HookDispatcher:
    """Stateless event router.

    Args:
        config: Loaded project configuration.
        db: Database handle. Opened from ``config.database_url`` on first use
            when omitted.
        clock: Returns the current UTC time; injectable for tests.
        parser: Learning phrase parser.
    """

    def __init__(
        self,
        config: HookAdvisorConfig,
        db: SQLiteDatabase | None = None,
        clock: Callable[[], datetime] = utcnow,
        parser: LearningParser | None = None,
    ) -> None:
        self.config = config
        self.clock = clock
        self.parser = parser or LearningParser()
        self._db = db
        self._confidence: ConfidenceStore | None = None
        self._ledger: ExecutionLedger | None = None

    # =========================================================================
    # Stores
    # =========================================================================

    @property
    def db(self) -> SQLiteDatabase:
        if self._db is None:
            try:
                self._db = create_storage(self.config.database_url)
            except ValueError as e:
                raise StorageError(str(e)) from e
        return self._db

    @property
    def confidence(self) -> ConfidenceStore:
        if self._confidence is None:
            self._confidence = ConfidenceStore(self.db, self.config.learning, clock=self.clock)
        return self._confidence

    @property
    def ledger(self) -> ExecutionLedger:
        if self._ledger is None:
            grace = timedelta(minutes=self.config.maintenance.grace_period_minutes)
            self._ledger = ExecutionLedger(self.db, grace_period=grace, clock=self.clock)
        return self._ledger

    def maintenance(self) -> MaintenanceScheduler:
        return MaintenanceScheduler(
            self.confidence,
            self.ledger,
            self.config.maintenance,
            context_for=self.config.scope_context,
            clock=self.clock,
        )

    def close(self) -> None:
        if self._db is not None:
            self._db.close()

    def build_matcher(self, context: ScopeContext) -> PatternMatcher:
        """Static rules plus learned state; static rules only if storage fails."""
        rules = list(self.config.static_rules)
        try:
            learned = self.confidence.active_rules()
            never = self.confidence.never_entries()
        except (StorageError, ValueError) as e:
            logger.warning("Learned rules unavailable, using static rules only: %s", e)
            never = []
        else:
            rules.extend(learned)
        return PatternMatcher(rules, never, context)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def handle_event(self, kind: HookEventKind | str, payload: dict[str, Any]) -> HookResponse:
        name = kind.value if isinstance(kind, HookEventKind) else str(kind)
        event_kind = HookEventKind.from_name(name)
        if event_kind is None:
            logger.warning("Unknown hook event type: %s", name)
            return PlainText()

        default: HookResponse = Allow() if event_kind == HookEventKind.PRE_TOOL_USE else PlainText()
        handlers = {
            HookEventKind.PRE_TOOL_USE: self._pre_tool_use,
            HookEventKind.USER_PROMPT_SUBMIT: self._user_prompt_submit,
            HookEventKind.POST_TOOL_USE: self._post_tool_use,
            HookEventKind.SESSION_END: self._session_end,
        }
        try:
            hook_input = HookInput.from_payload(payload, name)
            return handlers[event_kind](hook_input)
        except Exception:
            logger.exception("%s hook failed; answering with the default", name)
            return default

    def _pre_tool_use(self, hook_input: HookInput) -> HookResponse:
        if not hook_input.is_bash:
            return Allow()
        command = hook_input.command or ""
        context = self.config.scope_context(hook_input.cwd)
        match = self.build_matcher(context).match(command)

        if self.config.history.enabled:
            try:
                self.ledger.record_attempt(
                    hook_input.session_id,
                    command,
                    hook_input.cwd,
                    attempt_id=hook_input.tool_use_id,
                    suggestion=match.suggested_command if match else None,
                )
            except StorageError as e:
                logger.warning("Could not record command: %s", e)

        if match is None:
            return Allow()
        logger.info("Suggesting %r for %r", match.suggested_command, command)
        return Block(reason=match.reason, suggested_replacement=match.suggested_command)

    def _user_prompt_submit(self, hook_input: HookInput) -> HookResponse:
        prompt = hook_input.prompt or ""
        lines: list[str] = []

        event = self.parser.parse(prompt)
        if event is not None:
            event = event.bind(self.config.scope_context(hook_input.cwd))
            if not event.scope.is_bound:
                logger.info("No project root for %r, learning it globally", event.source_token)
                event = replace(event, scope=Scope.global_())
            try:
                result = self.confidence.apply_learning(event)
            except StorageError as e:
                logger.warning("Could not store learning event: %s", e)
            else:
                lines.append(acknowledge(event, result))

        for resolution in detect_directory_references(self.config, prompt, hook_input.cwd):
            lines.append(resolution.describe())
            if resolution.variables_substituted:
                pairs = ", ".join(f"{k}={v}" for k, v in resolution.variables_substituted)
                lines.append(f"  Variables substituted: {pairs}")

        return PlainText("\n".join(lines))

    def _post_tool_use(self, hook_input: HookInput) -> HookResponse:
        if not hook_input.is_bash or not self.config.history.enabled:
            return PlainText()
        try:
            self.ledger.resolve_attempt(
                hook_input.session_id,
                hook_input.command or "",
                hook_input.cwd,
                exit_code=hook_input.exit_code,
                attempt_id=hook_input.tool_use_id,
            )
            self.maintenance().maybe_run()
        except StorageError as e:
            logger.warning("Post-tool bookkeeping skipped: %s", e)
        return PlainText()

    def _session_end(self, hook_input: HookInput) -> HookResponse:
        if hook_input.session_id and self.config.history.enabled:
            try:
                self.ledger.close_session(hook_input.session_id)
            except StorageError as e:
                logger.warning("Could not close session %s: %s", hook_input.session_id, e)
        return PlainText()
