"""``hookadvisor hook``: the process the host runs for every hook event."""

from __future__ import annotations

import json
import logging

import click

from ..hooks import HookDispatcher, render_hook_output
from .main import CliState, main

logger = logging.getLogger(__name__)


@main.command()
@click.option(
    "--replace",
    is_flag=True,
    default=False,
    help="Rewrite mapped commands instead of blocking them.",
)
@click.option(
    "--event",
    default=None,
    help="Event name to use instead of the payload's hook_event_name.",
)
@click.pass_obj
def hook(state: CliState, replace: bool, event: str | None) -> None:
    """Handle one hook event: JSON payload on stdin, response on stdout.

    Always exits 0. Problems are logged to stderr and the command is allowed.

    \b
    Settings entry:
        "hooks": {"PreToolUse": [{"matcher": "Bash",
                  "hooks": [{"type": "command", "command": "hookadvisor hook"}]}]}
    """
    raw = click.get_text_stream("stdin").read()
    try:
        payload = json.loads(raw) if raw.strip() else {}
    except ValueError as e:
        logger.warning("Ignoring malformed hook payload: %s", e)
        return
    if not isinstance(payload, dict):
        logger.warning("Ignoring hook payload of type %s", type(payload).__name__)
        return

    config = state.lenient_config()
    dispatcher = HookDispatcher(config)
    try:
        response = dispatcher.handle_event(event or str(payload.get("hook_event_name", "")), payload)
    finally:
        dispatcher.close()

    output = render_hook_output(response, replace_mode=replace or config.replace_mode)
    if output:
        click.echo(output)
