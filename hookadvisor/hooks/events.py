"""Hook wire protocol: host payloads in, hook responses out.

The host runs ``hookadvisor hook`` once per lifecycle event with a JSON
payload on stdin:

- PreToolUse: Before a tool runs; may deny it with a reason
- UserPromptSubmit: When the user sends a prompt; stdout is added as context
- PostToolUse: After a tool completed successfully (never after a failure)
- SessionEnd: When the session closes

Reference: https://docs.anthropic.com/en/docs/claude-code/hooks
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class HookEventKind(str, Enum):
    PRE_TOOL_USE = "PreToolUse"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    POST_TOOL_USE = "PostToolUse"
    SESSION_END = "SessionEnd"

    @classmethod
    def from_name(cls, name: str) -> HookEventKind | None:
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass
class HookInput:
    """Fields of a host payload that any handler reads."""

    hook_event_name: str
    session_id: str = ""
    cwd: str = ""
    tool_name: str | None = None
    command: str | None = None
    tool_use_id: str | None = None
    prompt: str | None = None
    exit_code: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], kind: str | None = None) -> HookInput:
        tool_input = payload.get("tool_input") or {}
        tool_response = payload.get("tool_response") or {}
        command = tool_input.get("command") if isinstance(tool_input, dict) else None
        exit_code = tool_response.get("exit_code") if isinstance(tool_response, dict) else None
        return cls(
            hook_event_name=kind or str(payload.get("hook_event_name", "")),
            session_id=str(payload.get("session_id") or ""),
            cwd=str(payload.get("cwd") or ""),
            tool_name=payload.get("tool_name"),
            command=command if isinstance(command, str) else None,
            tool_use_id=payload.get("tool_use_id") or None,
            prompt=payload.get("prompt") if isinstance(payload.get("prompt"), str) else None,
            exit_code=exit_code if isinstance(exit_code, int) else None,
            raw=payload,
        )

    @property
    def is_bash(self) -> bool:
        return self.tool_name == "Bash" and bool(self.command)


# =============================================================================
# Responses
# =============================================================================


@dataclass(frozen=True)
class Allow:
    """Let the tool call proceed untouched."""


@dataclass(frozen=True)
class Block:
    """Deny the tool call and tell the agent what to run instead."""

    reason: str
    suggested_replacement: str


@dataclass(frozen=True)
class PlainText:
    """Text added to the conversation; empty text means no output."""

    text: str = ""


HookResponse = Union[Allow, Block, PlainText]


def render_hook_output(response: HookResponse, replace_mode: bool = False) -> str:
    """Serialize a response for stdout. Empty string means print nothing.

    In replace mode a block becomes an allow with the rewritten command.
    """
    if isinstance(response, Block):
        if replace_mode:
            output = {
                "permissionDecision": "allow",
                "permissionDecisionReason": (
                    f"Command mapped: using '{response.suggested_replacement}' instead"
                ),
                "updatedInput": {"command": response.suggested_replacement},
            }
        else:
            output = {
                "permissionDecision": "deny",
                "permissionDecisionReason": response.reason,
            }
        return json.dumps(
            {"hookSpecificOutput": {"hookEventName": HookEventKind.PRE_TOOL_USE.value, **output}}
        )
    if isinstance(response, PlainText):
        return response.text
    return ""
