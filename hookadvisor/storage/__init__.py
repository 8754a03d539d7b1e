"""Storage for Hook Advisor: one SQLite file, two stores."""

from .confidence import ConfidenceStore
from .ledger import ExecutionLedger
from .sqlite import SQLiteDatabase

__all__ = [
    "ConfidenceStore",
    "ExecutionLedger",
    "SQLiteDatabase",
    "create_storage",
]


def create_storage(store_url: str) -> SQLiteDatabase:
    """
    Create a database handle from a URL or path.

    Supported forms:
    - sqlite:///absolute/path/history.db
    - sqlite://relative/path/history.db
    - /plain/path/history.db or ~/path/history.db
    - :memory:

    Args:
        store_url: Storage URL.

    Returns:
        SQLiteDatabase handle. The file is opened lazily on first use.
    """
    if store_url.startswith("sqlite://"):
        path = store_url.replace("sqlite://", "", 1)
    elif "://" in store_url:
        scheme = store_url.split("://", 1)[0]
        raise ValueError(f"Unsupported storage scheme: {scheme}")
    else:
        path = store_url
    if path != ":memory:" and path.startswith("~"):
        from pathlib import Path

        path = str(Path(path).expanduser())
    return SQLiteDatabase(path)
