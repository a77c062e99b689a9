"""Execution store for saving, retrieving, listing and pruning records.

Wraps the execution database with ExecutionRecord serialization. Each
record is written with its attempts in a single transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime

import aiosqlite

from cascade.schemas.context import CallerRequest
from cascade.schemas.execution import ExecutionAttempt, ExecutionRecord, FinalResult

logger = logging.getLogger(__name__)

# Shortest id prefix accepted for lookups
_MIN_PREFIX = 4


class ExecutionStore:
    """Persistent execution archive backed by SQLite.

    Operates on a connection opened by ``database.init_db()``.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._db.row_factory = aiosqlite.Row

    async def save_record(self, record: ExecutionRecord) -> None:
        """Insert or replace a record together with its attempts."""
        final = record.final
        await self._db.execute(
            """
            INSERT OR REPLACE INTO executions
                (execution_id, correlation_id, session_id, original_provider_id,
                 request_json, failure_reason, start_tier, started_at, completed_at,
                 success, exhausted, cancelled, provider_id, fallback_level,
                 quality_score, cost, total_time_ms, content)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.correlation_id,
                record.session_id,
                record.original_provider_id,
                record.original_request.model_dump_json(),
                record.failure_reason,
                record.start_tier,
                record.started_at.isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
                int(final.success),
                int(final.exhausted),
                int(final.cancelled),
                final.provider_id,
                final.fallback_level,
                final.quality_score,
                final.cost,
                final.total_time_ms,
                final.content,
            ),
        )

        await self._db.execute(
            "DELETE FROM attempts WHERE execution_id = ?", (record.id,),
        )
        await self._db.executemany(
            """
            INSERT INTO attempts
                (execution_id, tier, provider_id, attempt, outcome,
                 latency_ms, quality_score, cost, error, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    record.id,
                    a.tier,
                    a.provider_id,
                    a.attempt,
                    a.outcome.value,
                    a.latency_ms,
                    a.quality_score,
                    a.cost,
                    a.error,
                    a.timestamp.isoformat(),
                )
                for a in record.attempts
            ],
        )
        await self._db.commit()
        logger.debug("Saved execution %s", record.id)

    async def get_record(self, execution_id: str) -> ExecutionRecord | None:
        """Fetch a record by exact id or unique id prefix (>= 4 chars).

        Returns None when nothing matches or the prefix is ambiguous.
        """
        async with self._db.execute(
            "SELECT * FROM executions WHERE execution_id = ?", (execution_id,),
        ) as cursor:
            row = await cursor.fetchone()

        if not row and len(execution_id) >= _MIN_PREFIX:
            async with self._db.execute(
                "SELECT * FROM executions WHERE execution_id LIKE ?"
                " ORDER BY started_at DESC LIMIT 2",
                (execution_id + "%",),
            ) as cursor:
                rows = await cursor.fetchall()
            if len(rows) == 1:
                row = rows[0]

        if not row:
            return None
        return await self._row_to_record(row)

    async def list_records(
        self, limit: int = 20, success: bool | None = None,
    ) -> list[ExecutionRecord]:
        """Most recent records first, optionally filtered by success."""
        where = ""
        params: list[object] = []
        if success is not None:
            where = "WHERE success = ?"
            params.append(int(success))
        params.append(limit)

        records: list[ExecutionRecord] = []
        async with self._db.execute(
            f"SELECT * FROM executions {where} ORDER BY started_at DESC LIMIT ?",  # noqa: S608
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        for row in rows:
            records.append(await self._row_to_record(row))
        return records

    async def prune_before(self, cutoff: datetime) -> int:
        """Delete records started before ``cutoff``; returns the count removed."""
        cursor = await self._db.execute(
            "DELETE FROM executions WHERE started_at < ?", (cutoff.isoformat(),),
        )
        await self._db.commit()
        if cursor.rowcount:
            logger.info("Pruned %d executions before %s", cursor.rowcount, cutoff.isoformat())
        return cursor.rowcount

    async def _row_to_record(self, row: aiosqlite.Row) -> ExecutionRecord:
        execution_id = row["execution_id"]
        attempts: list[ExecutionAttempt] = []
        async with self._db.execute(
            "SELECT * FROM attempts WHERE execution_id = ? ORDER BY id",
            (execution_id,),
        ) as cursor:
            async for arow in cursor:
                attempts.append(ExecutionAttempt(
                    tier=arow["tier"],
                    provider_id=arow["provider_id"],
                    attempt=arow["attempt"],
                    outcome=arow["outcome"],
                    latency_ms=arow["latency_ms"],
                    quality_score=arow["quality_score"],
                    cost=arow["cost"],
                    error=arow["error"],
                    timestamp=datetime.fromisoformat(arow["timestamp"]),
                ))

        completed_at = (
            datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
        )
        return ExecutionRecord(
            id=execution_id,
            correlation_id=row["correlation_id"],
            session_id=row["session_id"],
            original_provider_id=row["original_provider_id"],
            original_request=CallerRequest.model_validate_json(row["request_json"]),
            failure_reason=row["failure_reason"],
            start_tier=row["start_tier"],
            attempts=attempts,
            final=FinalResult(
                success=bool(row["success"]),
                provider_id=row["provider_id"],
                fallback_level=row["fallback_level"],
                quality_score=row["quality_score"],
                cost=row["cost"],
                total_time_ms=row["total_time_ms"],
                content=row["content"],
                exhausted=bool(row["exhausted"]),
                cancelled=bool(row["cancelled"]),
            ),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=completed_at,
        )
