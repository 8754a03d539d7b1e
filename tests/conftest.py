"""Shared fixtures: a controllable clock and a throwaway database."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hookadvisor.storage import SQLiteDatabase


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "history.db"


@pytest.fixture
def db(db_path):
    database = SQLiteDatabase(db_path)
    yield database
    database.close()
