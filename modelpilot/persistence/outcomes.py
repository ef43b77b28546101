"""Outcome store for appending and querying dispatch outcomes.

Provides the OutcomeStore class that wraps low-level database operations
with Pydantic schema serialization/deserialization. Rows are only ever
inserted; nothing updates or deletes an outcome.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

import aiosqlite

from modelpilot.errors import ProviderErrorKind
from modelpilot.schemas.outcome import ModelStats, OutcomeRecord, OutcomeStatus

logger = logging.getLogger(__name__)


class OutcomeStore:
    """Append-only outcome log backed by SQLite.

    All methods are async and operate on an aiosqlite connection
    initialized by database.init_db().
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def append(self, record: OutcomeRecord) -> None:
        """Append one outcome.

        Idempotent on record_id so at-least-once delivery never duplicates
        a row.
        """
        await self._db.execute(
            """
            INSERT OR IGNORE INTO outcomes
                (record_id, router_id, request_id, model_id, attempt_index,
                 status, error_kind, cost_usd, latency_ms, quality_proxy,
                 prompt_tokens, completion_tokens, embedding_json, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.record_id,
                record.router_id,
                record.request_id,
                record.model_id,
                record.attempt_index,
                record.status.value,
                record.error_kind.value if record.error_kind else None,
                record.cost_usd,
                record.latency_ms,
                record.quality_proxy,
                record.prompt_tokens,
                record.completion_tokens,
                json.dumps(list(record.embedding)),
                record.timestamp.isoformat(),
            ),
        )
        await self._db.commit()
        logger.debug("Stored outcome %s (%s, %s)", record.record_id,
                     record.model_id, record.status.value)

    async def write(self, record: OutcomeRecord) -> None:
        """OutcomeSink interface."""
        await self.append(record)

    async def recent(
        self,
        limit: int = 1000,
        *,
        router_id: str | None = None,
        model_id: str | None = None,
    ) -> list[OutcomeRecord]:
        """Most recent outcomes, oldest first, optionally filtered."""
        conditions: list[str] = []
        params: list[object] = []
        if router_id:
            conditions.append("router_id = ?")
            params.append(router_id)
        if model_id:
            conditions.append("model_id = ?")
            params.append(model_id)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        self._db.row_factory = aiosqlite.Row
        async with self._db.execute(
            f"SELECT * FROM outcomes {where} "  # noqa: S608
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()

        return [self._row_to_record(row) for row in reversed(rows)]

    async def model_stats(self, router_id: str | None = None) -> list[ModelStats]:
        """Aggregate attempts, successes, latency and quality per model.

        Incomplete (caller-cancelled) attempts are excluded.
        """
        where = "WHERE status != ?"
        params: list[object] = [OutcomeStatus.INCOMPLETE.value]
        if router_id:
            where += " AND router_id = ?"
            params.append(router_id)

        self._db.row_factory = aiosqlite.Row
        async with self._db.execute(
            f"""
            SELECT model_id,
                   COUNT(*) AS attempts,
                   SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes,
                   AVG(CASE WHEN status = 'success' THEN latency_ms END) AS avg_latency,
                   AVG(quality_proxy) AS avg_quality,
                   SUM(cost_usd) AS total_cost
            FROM outcomes {where}
            GROUP BY model_id
            ORDER BY model_id
            """,  # noqa: S608
            params,
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            ModelStats(
                model_id=row["model_id"],
                attempts=row["attempts"],
                successes=row["successes"] or 0,
                avg_latency_ms=row["avg_latency"] or 0.0,
                avg_quality=min(1.0, row["avg_quality"] or 0.0),
                total_cost_usd=row["total_cost"] or 0.0,
            )
            for row in rows
        ]

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM outcomes") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> OutcomeRecord:
        return OutcomeRecord(
            record_id=row["record_id"],
            router_id=row["router_id"],
            request_id=row["request_id"],
            embedding=tuple(json.loads(row["embedding_json"])),
            model_id=row["model_id"],
            attempt_index=row["attempt_index"],
            status=OutcomeStatus(row["status"]),
            error_kind=ProviderErrorKind(row["error_kind"]) if row["error_kind"] else None,
            cost_usd=row["cost_usd"],
            latency_ms=row["latency_ms"],
            quality_proxy=row["quality_proxy"],
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )
