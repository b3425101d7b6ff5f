"""Discovery and bootstrap of the project-local ``.radial`` store directory."""

from __future__ import annotations

import logging
from pathlib import Path

STORE_DIR_NAME = ".radial"
DB_FILE_NAME = "radial.db"
REDIRECT_FILE_NAME = "redirect"

logger = logging.getLogger(__name__)


def find_store_dir(start: Path) -> Path | None:
    """Walk up from ``start`` to the nearest ``.radial`` directory."""

    current = start.resolve()
    for directory in (current, *current.parents):
        candidate = directory / STORE_DIR_NAME
        if candidate.is_dir():
            return candidate
    return None


def resolve_store_dir(start: Path) -> Path | None:
    """Nearest store directory, following its redirect file when the target exists.

    A redirect holds an absolute path, or a path relative to the directory that
    contains the local ``.radial``.
    """

    store_dir = find_store_dir(start)
    if store_dir is None:
        return None

    redirect_path = store_dir / REDIRECT_FILE_NAME
    if not redirect_path.is_file():
        return store_dir

    target = redirect_path.read_text(encoding="utf-8").strip()
    if not target:
        return store_dir
    target_path = Path(target).expanduser()
    if not target_path.is_absolute():
        target_path = store_dir.parent / target_path
    if target_path.is_dir():
        return target_path.resolve()

    logger.warning("Ignoring redirect %s: target %s is not a directory", redirect_path, target)
    return store_dir


def resolve_db_path(start: Path) -> Path | None:
    store_dir = resolve_store_dir(start)
    if store_dir is None:
        return None
    return store_dir / DB_FILE_NAME


def init_store(root: Path, *, stealth: bool = False, redirect: Path | None = None) -> Path:
    """Create ``root/.radial`` and return the database path it resolves to.

    ``stealth`` keeps the directory out of git via a nested ``.gitignore``;
    ``redirect`` points the new directory at an existing shared store.
    """

    store_dir = root / STORE_DIR_NAME
    store_dir.mkdir(parents=True, exist_ok=True)

    if stealth:
        (store_dir / ".gitignore").write_text("*\n", encoding="utf-8")

    if redirect is not None:
        target = redirect if redirect.is_absolute() else root / redirect
        if not target.is_dir():
            raise FileNotFoundError(f"Redirect target is not a directory: {target}")
        (store_dir / REDIRECT_FILE_NAME).write_text(f"{redirect}\n", encoding="utf-8")
        return target.resolve() / DB_FILE_NAME

    return store_dir / DB_FILE_NAME
