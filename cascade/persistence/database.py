"""SQLite database layer for execution persistence.

Manages the SQLite connection and schema for archived fallback
executions. Uses aiosqlite for async access with WAL mode so analytics
reads never block the writer.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# SQL schema for the executions database
_SCHEMA = """
CREATE TABLE IF NOT EXISTS executions (
    execution_id         TEXT PRIMARY KEY,
    correlation_id       TEXT NOT NULL,
    session_id           TEXT NOT NULL DEFAULT '',
    original_provider_id TEXT,
    request_json         TEXT NOT NULL,
    failure_reason       TEXT NOT NULL DEFAULT '',
    start_tier           INTEGER NOT NULL DEFAULT 1,
    started_at           TEXT NOT NULL,
    completed_at         TEXT,
    success              INTEGER NOT NULL DEFAULT 0,
    exhausted            INTEGER NOT NULL DEFAULT 0,
    cancelled            INTEGER NOT NULL DEFAULT 0,
    provider_id          TEXT,
    fallback_level       INTEGER NOT NULL DEFAULT 0,
    quality_score        REAL NOT NULL DEFAULT 0.0,
    cost                 REAL NOT NULL DEFAULT 0.0,
    total_time_ms        REAL NOT NULL DEFAULT 0.0,
    content              TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS attempts (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_id  TEXT NOT NULL REFERENCES executions(execution_id) ON DELETE CASCADE,
    tier          INTEGER NOT NULL,
    provider_id   TEXT NOT NULL,
    attempt       INTEGER NOT NULL,
    outcome       TEXT NOT NULL,
    latency_ms    REAL NOT NULL DEFAULT 0.0,
    quality_score REAL,
    cost          REAL NOT NULL DEFAULT 0.0,
    error         TEXT,
    timestamp     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_attempts_execution ON attempts(execution_id);
CREATE INDEX IF NOT EXISTS idx_executions_started ON executions(started_at);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Open the execution database, creating it and its tables if needed.

    Args:
        db_path: Path to the SQLite database file. Supports ~ expansion.

    Returns:
        An open aiosqlite connection ready for use.
    """
    resolved = Path(db_path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(str(resolved))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await db.executescript(_SCHEMA)
    await db.commit()

    logger.info("Execution database initialized at %s", resolved)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    await db.close()
