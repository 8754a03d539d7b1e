"""Hook Advisor CLI."""

from . import history, hook, rules  # noqa: F401  (register subcommands)
from .main import main

__all__ = ["main"]
