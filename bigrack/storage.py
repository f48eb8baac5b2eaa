"""SQLite helpers used while the daemon starts."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from .logging_utils import STORAGE_LOGGER

BUSY_TIMEOUT_MS = 5000

PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}",
)


def connect(db_path: Path) -> sqlite3.Connection:
    """Open *db_path* with the connection settings every bigrack process uses."""
    db_dir = db_path.parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, mode=0o700)

    conn = sqlite3.connect(db_path)
    try:
        for pragma in PRAGMAS:
            conn.execute(pragma)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def prepare_database(db_path: Path) -> None:
    """Make sure the database at *db_path* can be opened, then close it.

    Raises ``OSError`` when the directory cannot be created and
    ``sqlite3.Error`` when the file cannot be opened as a database.
    """
    STORAGE_LOGGER.debug("Opening database at %s", db_path)
    conn = connect(db_path)
    try:
        (mode,) = conn.execute("PRAGMA journal_mode").fetchone()
        STORAGE_LOGGER.debug("Database ready (journal_mode=%s)", mode)
    finally:
        conn.close()
