"""Rule administration: ``rules``, ``maintain`` and ``directories``."""

from __future__ import annotations

from pathlib import Path

import click

from ..directory import resolve_directory
from ..exceptions import DirectoryError, StorageError
from ..models import Scope
from ..storage.export import read_snapshot, write_snapshot
from .main import CliState, main


def _parse_scope(value: str) -> Scope:
    try:
        scope = Scope.parse(value)
    except ValueError as e:
        raise click.BadParameter(
            f"{value!r} (expected global, project:<path> or context:<tag>)"
        ) from e
    if not scope.is_bound:
        raise click.BadParameter(f"{value!r} needs a value after the colon")
    return scope


# =============================================================================
# rules
# =============================================================================


@main.group()
def rules() -> None:
    """Inspect and manage command mappings."""


@rules.command("list")
@click.option("--learned", "learned_only", is_flag=True, default=False, help="Hide static rules.")
@click.pass_obj
def list_rules(state: CliState, learned_only: bool) -> None:
    """Show static rules, learned rules and never-suggest entries."""
    config = state.config
    dispatcher = state.dispatcher()
    try:
        learned = dispatcher.confidence.active_rules()
        never = dispatcher.confidence.never_entries()
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()

    if not learned_only:
        click.echo(f"Static rules ({len(config.static_rules)}):")
        for rule in config.static_rules:
            click.echo(f"  {rule.source_token} -> {rule.replacement}")
        for error in config.rejected_rules:
            click.echo(f"  [rejected] {error}")

    click.echo(f"Learned rules ({len(learned)}):")
    for rule in learned:
        click.echo(
            f"  {rule.source_token} -> {rule.replacement}  "
            f"[{rule.scope.key}] confidence={rule.confidence:.2f} "
            f"reinforced={rule.reinforcement_count}"
        )

    click.echo(f"Never suggest ({len(never)}):")
    for entry in never:
        reason = f"  ({entry.reason})" if entry.reason else ""
        click.echo(f"  {entry.source_token}  [{entry.scope.key}]{reason}")


@rules.command("export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def export_rules(state: CliState, path: Path) -> None:
    """Write learned rules and never-suggest entries to a JSON file."""
    dispatcher = state.dispatcher()
    try:
        snapshot = dispatcher.confidence.export_snapshot()
        target = write_snapshot(path, snapshot)
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()
    click.echo(
        f"Exported {len(snapshot['rules'])} rules and "
        f"{len(snapshot['never_suggest'])} never-suggest entries to {target}"
    )


@rules.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def import_rules(state: CliState, path: Path) -> None:
    """Load a snapshot written by ``rules export``. Imported keys overwrite."""
    dispatcher = state.dispatcher()
    try:
        count = dispatcher.confidence.import_snapshot(read_snapshot(path))
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()
    click.echo(f"Imported {count} entries from {path}")


@rules.command("forget")
@click.argument("token")
@click.option("--scope", "scope_key", default="global", show_default=True, help="Scope key.")
@click.pass_obj
def forget_rule(state: CliState, token: str, scope_key: str) -> None:
    """Drop the learned rule and never-suggest entry for TOKEN."""
    scope = _parse_scope(scope_key)
    dispatcher = state.dispatcher()
    try:
        removed = dispatcher.confidence.forget(token, scope)
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()
    if removed:
        click.echo(f"Forgot {token} [{scope.key}]")
    else:
        click.echo(f"Nothing learned for {token} [{scope.key}]")


# =============================================================================
# maintain
# =============================================================================


@main.command()
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Run now, ignoring the interval and attempt-count gate.",
)
@click.pass_obj
def maintain(state: CliState, force: bool) -> None:
    """Apply decay and reinforce learned rules from recorded outcomes."""
    dispatcher = state.dispatcher()
    try:
        scheduler = dispatcher.maintenance()
        report = scheduler.run() if force else scheduler.maybe_run()
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        dispatcher.close()
    click.echo(report.summary())


# =============================================================================
# directories
# =============================================================================


@main.group()
def directories() -> None:
    """Semantic directory aliases from [semantic_directories]."""


@directories.command("list")
@click.pass_obj
def list_directories(state: CliState) -> None:
    config = state.config
    if not config.semantic_directories:
        click.echo("No directory aliases configured.")
        return
    for alias, template in sorted(config.semantic_directories.items()):
        click.echo(f"  {alias:20s} {template}")


@directories.command("resolve")
@click.argument("alias")
@click.pass_obj
def resolve_alias(state: CliState, alias: str) -> None:
    """Print the canonical path ALIAS resolves to."""
    try:
        resolution = resolve_directory(state.config, alias, str(Path.cwd()))
    except DirectoryError as e:
        raise click.ClickException(str(e)) from e
    click.echo(resolution.canonical_path)
    for name, value in resolution.variables_substituted:
        click.echo(f"  {name} = {value}", err=True)
