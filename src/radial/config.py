"""Runtime configuration for the radial store and CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from radial.storage.common import DEFAULT_BUSY_TIMEOUT_MS
from radial.storage.workspace import resolve_db_path
from radial.tracker.errors import StoreNotInitializedError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class Settings:
    """Application settings.

    ``db_path`` short-circuits ``.radial`` discovery when set.
    """

    db_path: Path | None = None
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment; explicit arguments win."""

        env_db_path = os.getenv("RADIAL_DB_PATH", "").strip()
        return cls(
            db_path=db_path or (Path(env_db_path) if env_db_path else None),
            busy_timeout_ms=_env_int("RADIAL_BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS),
            log_level=os.getenv("RADIAL_LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
        )

    def validate(self) -> None:
        if self.busy_timeout_ms <= 0:
            raise ValueError("RADIAL_BUSY_TIMEOUT_MS must be > 0.")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid RADIAL_LOG_LEVEL: {self.log_level!r}. Expected one of {LOG_LEVELS}.",
            )

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def resolve_db_path(self, cwd: Path | None = None) -> Path:
        """Explicit path, else the discovered (and redirected) project store."""

        if self.db_path is not None:
            return self.db_path
        discovered = resolve_db_path(cwd or Path.cwd())
        if discovered is None:
            raise StoreNotInitializedError
        return discovered


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error
