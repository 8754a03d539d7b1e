"""Semantic directory aliases: "docs", "central_docs" → canonical paths.

Aliases come from ``[semantic_directories]`` in the project file. Templates
may use ``{project}`` / ``{current_project}`` and ``{user_home}``, filled from
``[directory_variables]`` and falling back to the detected project root name
and ``$HOME``. A resolution only succeeds if the path exists.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from .config import HookAdvisorConfig, find_project_root
from .exceptions import DirectoryError

logger = logging.getLogger(__name__)

_PROJECT_VARS = ("{project}", "{current_project}")


@dataclass
class DirectoryResolution:
    alias: str
    canonical_path: str
    variables_substituted: list[tuple[str, str]] = field(default_factory=list)

    def describe(self) -> str:
        return f"Directory reference '{self.alias}' resolved to: {self.canonical_path}"


@lru_cache(maxsize=256)
def _alias_pattern(alias: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(alias)}\b", re.IGNORECASE)


def _project_name(variables: dict[str, str], cwd: str | None) -> str | None:
    name = variables.get("current_project") or variables.get("project")
    if name:
        return name
    if cwd:
        return find_project_root(Path(cwd)).name or None
    return None


def substitute_variables(
    template: str, variables: dict[str, str], cwd: str | None = None
) -> tuple[str, list[tuple[str, str]]]:
    """Fill placeholders in ``template``.

    Returns:
        The substituted path and the (variable, value) pairs used.

    Raises:
        DirectoryError: The template needs a project name and none is known.
    """
    result = template
    used: list[tuple[str, str]] = []

    if any(var in result for var in _PROJECT_VARS):
        project = _project_name(variables, cwd)
        if not project:
            raise DirectoryError(f"Template {template!r} needs a project name")
        for var in _PROJECT_VARS:
            result = result.replace(var, project)
        used.append(("project", project))

    if "{user_home}" in result:
        home = variables.get("user_home") or os.environ.get("HOME") or "~"
        result = result.replace("{user_home}", home)
        used.append(("user_home", home))

    return result, used


def resolve_directory(
    config: HookAdvisorConfig, alias: str, cwd: str | None = None
) -> DirectoryResolution:
    """Resolve one alias to an existing canonical path.

    Raises:
        DirectoryError: Unknown alias, missing variable or nonexistent path.
    """
    template = config.semantic_directories.get(alias)
    if template is None:
        raise DirectoryError(f"Directory alias '{alias}' not found")

    substituted, used = substitute_variables(template, config.directory_variables, cwd)
    path = Path(substituted).expanduser()
    if not path.is_absolute() and cwd:
        path = Path(cwd) / path
    try:
        canonical = path.resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise DirectoryError(f"Failed to resolve path {path}: {e}") from e

    return DirectoryResolution(
        alias=alias, canonical_path=str(canonical), variables_substituted=used
    )


def detect_directory_references(
    config: HookAdvisorConfig, text: str, cwd: str | None = None
) -> list[DirectoryResolution]:
    """Aliases mentioned in ``text`` (whole words) that resolve, one per path."""
    found: dict[str, DirectoryResolution] = {}
    for alias in config.semantic_directories:
        if not _alias_pattern(alias).search(text):
            continue
        try:
            resolution = resolve_directory(config, alias, cwd)
        except DirectoryError as e:
            logger.debug("Skipping alias %r: %s", alias, e)
            continue
        found.setdefault(resolution.canonical_path, resolution)
    return sorted(found.values(), key=lambda r: r.canonical_path)
