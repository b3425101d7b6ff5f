from __future__ import annotations

import logging
from pathlib import Path

import allure
import pytest

from radial.config import Settings
from radial.storage.workspace import (
    DB_FILE_NAME,
    REDIRECT_FILE_NAME,
    STORE_DIR_NAME,
    find_store_dir,
    init_store,
    resolve_db_path,
)
from radial.tracker.errors import StorageError, StoreNotInitializedError

pytestmark = [
    allure.epic("Tracker Core"),
    allure.feature("Configuration & Store Discovery"),
]


def test_settings_defaults() -> None:
    settings = Settings.from_env()
    assert settings.db_path is None
    assert settings.busy_timeout_ms == 5000
    assert settings.log_level == "WARNING"
    assert settings.log_level_value == logging.WARNING
    settings.validate()


def test_settings_read_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RADIAL_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("RADIAL_BUSY_TIMEOUT_MS", "250")
    monkeypatch.setenv("RADIAL_LOG_LEVEL", "debug")

    settings = Settings.from_env()
    assert settings.db_path == tmp_path / "env.db"
    assert settings.busy_timeout_ms == 250
    assert settings.log_level == "DEBUG"


def test_explicit_db_path_wins_over_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RADIAL_DB_PATH", str(tmp_path / "env.db"))
    settings = Settings.from_env(db_path=tmp_path / "cli.db")
    assert settings.db_path == tmp_path / "cli.db"
    assert settings.resolve_db_path() == tmp_path / "cli.db"


def test_invalid_integer_env_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("RADIAL_BUSY_TIMEOUT_MS", "soon")
    with pytest.raises(ValueError, match="RADIAL_BUSY_TIMEOUT_MS"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("busy_timeout_ms", "log_level"),
    [(0, "WARNING"), (100, "LOUD")],
)
def test_validate_rejects_bad_values(busy_timeout_ms: int, log_level: str) -> None:
    with pytest.raises(ValueError):
        Settings(busy_timeout_ms=busy_timeout_ms, log_level=log_level).validate()


def test_missing_store_is_reported(tmp_path: Path) -> None:
    with pytest.raises(StoreNotInitializedError, match="rd init") as excinfo:
        Settings().resolve_db_path(tmp_path)
    assert isinstance(excinfo.value, StorageError)
    assert excinfo.value.code == "storage"


def test_store_is_discovered_from_subdirectories(tmp_path: Path) -> None:
    db_path = init_store(tmp_path)
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)

    assert db_path == tmp_path / STORE_DIR_NAME / DB_FILE_NAME
    assert find_store_dir(nested) == (tmp_path / STORE_DIR_NAME).resolve()
    expected = (tmp_path / STORE_DIR_NAME).resolve() / DB_FILE_NAME
    assert Settings().resolve_db_path(nested) == expected


def test_stealth_init_ignores_store_in_git(tmp_path: Path) -> None:
    init_store(tmp_path, stealth=True)
    gitignore = tmp_path / STORE_DIR_NAME / ".gitignore"
    assert gitignore.read_text(encoding="utf-8") == "*\n"


def test_redirect_points_at_shared_store(tmp_path: Path) -> None:
    shared = tmp_path / "main" / STORE_DIR_NAME
    shared.mkdir(parents=True)
    checkout = tmp_path / "feature"
    checkout.mkdir()

    db_path = init_store(checkout, redirect=Path("../main/.radial"))

    assert db_path == shared.resolve() / DB_FILE_NAME
    redirect_file = checkout / STORE_DIR_NAME / REDIRECT_FILE_NAME
    assert redirect_file.read_text(encoding="utf-8").strip() == "../main/.radial"
    assert resolve_db_path(checkout) == shared.resolve() / DB_FILE_NAME


def test_redirect_to_missing_directory_falls_back_to_local(tmp_path: Path, caplog) -> None:
    init_store(tmp_path)
    (tmp_path / STORE_DIR_NAME / REDIRECT_FILE_NAME).write_text("nowhere\n", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="radial.storage.workspace"):
        resolved = resolve_db_path(tmp_path)

    assert resolved == (tmp_path / STORE_DIR_NAME).resolve() / DB_FILE_NAME
    assert "Ignoring redirect" in caplog.text


def test_init_rejects_missing_redirect_target(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        init_store(tmp_path, redirect=tmp_path / "missing")
