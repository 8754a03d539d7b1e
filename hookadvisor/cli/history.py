"""``hookadvisor history`` and ``hookadvisor stats``: read the execution ledger."""

from __future__ import annotations

import click

from ..exceptions import StorageError
from ..models import AttemptOutcome, AttemptQuery
from .main import CliState, main

_OUTCOME_LABELS = {
    AttemptOutcome.SUCCEEDED: "ok",
    AttemptOutcome.FAILED: "FAILED",
    AttemptOutcome.IN_FLIGHT: "running",
}


@main.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Most recent attempts to show.")
@click.option("--session", default=None, help="Only this session id.")
@click.option("--failures", is_flag=True, default=False, help="Only attempts that read as failed.")
@click.option("--pattern", default=None, help="Only commands containing this text.")
@click.pass_obj
def history(
    state: CliState,
    limit: int,
    session: str | None,
    failures: bool,
    pattern: str | None,
) -> None:
    """Show recorded Bash commands, newest first.

    \b
    Examples:
        hookadvisor history --failures
        hookadvisor history --pattern "npm install" -n 50
    """
    dispatcher = state.dispatcher()
    query = AttemptQuery(
        limit=limit, session_id=session, failures_only=failures, command_pattern=pattern
    )
    try:
        rows = dispatcher.ledger.list_attempts(query)
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()

    if not rows:
        click.echo("No commands recorded.")
        return

    for attempt, outcome in rows:
        exit_code = "-" if attempt.exit_code is None else str(attempt.exit_code)
        click.echo(
            f"{attempt.submitted_at:%Y-%m-%d %H:%M:%S}  {_OUTCOME_LABELS[outcome]:8s} "
            f"{exit_code:>3s}  {attempt.command_text}"
        )
        if attempt.suggestion:
            click.echo(f"{'':34s}suggested: {attempt.suggestion}")


@main.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Tokens to show.")
@click.pass_obj
def stats(state: CliState, limit: int) -> None:
    """Per-command success rates over the whole ledger."""
    dispatcher = state.dispatcher()
    try:
        rows = dispatcher.ledger.stats(limit=limit)
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()

    if not rows:
        click.echo("No commands recorded.")
        return

    click.echo(f"{'command':20s} {'total':>6s} {'ok':>6s} {'failed':>6s} {'running':>7s} {'rate':>6s}")
    for row in rows:
        click.echo(
            f"{row.base_token[:20]:20s} {row.total:6d} {row.succeeded:6d} "
            f"{row.failed:6d} {row.in_flight:7d} {row.success_rate:6.0%}"
        )
