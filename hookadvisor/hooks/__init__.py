"""Host hook integration: wire protocol and event dispatch."""

from .dispatcher import HookDispatcher
from .events import (
    Allow,
    Block,
    HookEventKind,
    HookInput,
    HookResponse,
    PlainText,
    render_hook_output,
)

__all__ = [
    "Allow",
    "Block",
    "HookDispatcher",
    "HookEventKind",
    "HookInput",
    "HookResponse",
    "PlainText",
    "render_hook_output",
]
