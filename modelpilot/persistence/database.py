"""SQLite database layer for outcome persistence.

Manages the SQLite connection and schema creation for the append-only
outcome log. Uses aiosqlite for async access with WAL mode for concurrent
read performance.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# SQL schema for the outcomes database
_SCHEMA = """
CREATE TABLE IF NOT EXISTS outcomes (
    record_id         TEXT PRIMARY KEY,
    router_id         TEXT NOT NULL DEFAULT '',
    request_id        TEXT NOT NULL DEFAULT '',
    model_id          TEXT NOT NULL,
    attempt_index     INTEGER NOT NULL DEFAULT 0,
    status            TEXT NOT NULL,
    error_kind        TEXT,
    cost_usd          REAL NOT NULL DEFAULT 0.0,
    latency_ms        REAL NOT NULL DEFAULT 0.0,
    quality_proxy     REAL NOT NULL DEFAULT 0.0,
    prompt_tokens     INTEGER NOT NULL DEFAULT 0,
    completion_tokens INTEGER NOT NULL DEFAULT 0,
    embedding_json    TEXT NOT NULL DEFAULT '[]',
    timestamp         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_outcomes_model ON outcomes(model_id);
CREATE INDEX IF NOT EXISTS idx_outcomes_router ON outcomes(router_id);
CREATE INDEX IF NOT EXISTS idx_outcomes_timestamp ON outcomes(timestamp);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Initialize the database connection and create tables if needed.

    Creates parent directories if they don't exist, enables WAL mode,
    then runs the schema DDL.

    Args:
        db_path: Path to the SQLite database file. Supports ~ expansion
                 and ``:memory:``.

    Returns:
        An open aiosqlite connection ready for use.
    """
    if db_path == ":memory:":
        target = db_path
    else:
        resolved = Path(db_path).expanduser()
        resolved.parent.mkdir(parents=True, exist_ok=True)
        target = str(resolved)

    db = await aiosqlite.connect(target)
    await db.execute("PRAGMA journal_mode=WAL")
    await db.executescript(_SCHEMA)
    await db.commit()

    logger.info("Outcome database initialized at %s", target)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()
