"""Command-line entry point: ``hookadvisor``."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click

from .. import __version__
from ..config import DEFAULT_CONFIG_FILE, HookAdvisorConfig, load_config
from ..exceptions import ConfigError
from ..hooks import HookDispatcher

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Handlers installed by setup_logging, replaced on each call
_handlers: list[logging.Handler] = []


def setup_logging(verbose: int = 0) -> None:
    """Send diagnostics to stderr (and optionally a file); stdout is for the host.

    Level comes from ``HOOKADVISOR_LOG_LEVEL`` (default WARNING); each
    ``-v`` lowers it one step.
    """
    level_name = os.environ.get("HOOKADVISOR_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.WARNING
    level = max(logging.DEBUG, level - 10 * verbose)

    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%H:%M:%S")
    reset_logging()
    package_logger = logging.getLogger("hookadvisor")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    _handlers.append(console_handler)

    log_file = os.environ.get("HOOKADVISOR_LOG_FILE")
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        _handlers.append(file_handler)

    package_logger.setLevel(min(h.level for h in _handlers))
    for handler in _handlers:
        package_logger.addHandler(handler)


def reset_logging() -> None:
    """Detach the handlers installed by ``setup_logging``."""
    package_logger = logging.getLogger("hookadvisor")
    for handler in _handlers:
        package_logger.removeHandler(handler)
        handler.close()
    _handlers.clear()


class CliState:
    """Per-invocation state shared by subcommands via ``ctx.obj``."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        self._config: HookAdvisorConfig | None = None

    @property
    def config(self) -> HookAdvisorConfig:
        """The project config. A parse failure aborts the command."""
        if self._config is None:
            try:
                self._config = load_config(self.config_path)
            except ConfigError as e:
                raise click.ClickException(str(e)) from e
        return self._config

    def lenient_config(self) -> HookAdvisorConfig:
        """The project config, or an empty one if it cannot be parsed."""
        if self._config is None:
            try:
                self._config = load_config(self.config_path)
            except ConfigError as e:
                logging.getLogger(__name__).error("%s; continuing without mappings", e)
                self._config = HookAdvisorConfig()
        return self._config

    def dispatcher(self) -> HookDispatcher:
        return HookDispatcher(self.config)


@click.group()
@click.version_option(version=__version__, prog_name="hookadvisor")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Path to the project configuration file.",
)
@click.option("--verbose", "-v", count=True, help="More diagnostics on stderr (repeatable).")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: int) -> None:
    """Hook Advisor - command suggestions for coding agents that learn from outcomes."""
    setup_logging(verbose)
    ctx.obj = CliState(config_path)
