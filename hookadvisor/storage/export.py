"""JSON snapshots of learned rules, for backup and sharing between machines.

Writes are atomic: the snapshot goes to a temp file in the target directory
and is renamed over the destination, so a failed write leaves the old file.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any

from ..exceptions import StorageError

logger = logging.getLogger(__name__)


def write_snapshot(path: str | Path, data: dict[str, Any]) -> Path:
    """Write ``data`` as indented JSON to ``path`` atomically.

    Raises:
        StorageError: The file could not be written.
    """
    target = Path(path).expanduser()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        json_data = json.dumps(data, indent=2, sort_keys=True)

        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=".rules_", suffix=".tmp")
        try:
            with open(fd, "w") as f:
                f.write(json_data)
                f.write("\n")
            Path(tmp_path).replace(target)
        except Exception:
            try:
                Path(tmp_path).unlink()
            except OSError:
                pass
            raise
    except OSError as e:
        raise StorageError(f"Failed to write snapshot to {target}: {e}") from e

    logger.info("Wrote %d rules to %s", len(data.get("rules", [])), target)
    return target


def read_snapshot(path: str | Path) -> dict[str, Any]:
    """Load a snapshot written by ``write_snapshot``.

    Raises:
        StorageError: The file is missing, unreadable or not a snapshot.
    """
    source = Path(path).expanduser()
    try:
        with open(source) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        raise StorageError(f"Failed to read snapshot {source}: {e}") from e

    if not isinstance(data, dict) or not all(
        isinstance(data.get(section, []), list) for section in ("rules", "never_suggest")
    ):
        raise StorageError(f"{source} is not a rules snapshot")
    return data
