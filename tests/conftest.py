"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from radial.tracker.lifecycle import LifecycleEngine
from radial.tracker.repository import TrackerRepository


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    """Keep developer shell settings out of the tests."""
    for name in ("RADIAL_DB_PATH", "RADIAL_BUSY_TIMEOUT_MS", "RADIAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "radial.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[TrackerRepository]:
    repo = TrackerRepository(db_path)
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def engine(repository: TrackerRepository) -> LifecycleEngine:
    return LifecycleEngine(repository)
