"""Outcome persistence: SQLite store and JSONL log."""

from modelpilot.persistence.database import close_db, init_db
from modelpilot.persistence.jsonl import JsonlOutcomeLog
from modelpilot.persistence.outcomes import OutcomeStore

__all__ = [
    "JsonlOutcomeLog",
    "OutcomeStore",
    "close_db",
    "init_db",
]
