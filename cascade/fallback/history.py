"""In-memory archive of finished fallback executions.

Records are kept for a bounded retention window (30 days by default) and
pruned on every insert. Appends and prunes share one asyncio.Lock; reads
copy the current list so they never wait on a writer.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from cascade.schemas.execution import ExecutionRecord

logger = logging.getLogger(__name__)


class ExecutionHistory:
    """Retention-bounded list of ExecutionRecords, oldest first."""

    def __init__(self, retention_days: float = 30.0) -> None:
        self._retention = timedelta(days=retention_days)
        self._records: list[ExecutionRecord] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def retention(self) -> timedelta:
        return self._retention

    async def add(self, record: ExecutionRecord) -> None:
        """Archive one record and drop everything past the retention window."""
        async with self._lock:
            cutoff = datetime.now(UTC) - self._retention
            kept = [r for r in self._records if r.started_at > cutoff]
            dropped = len(self._records) - len(kept)
            kept.append(record)
            self._records = kept
        if dropped:
            logger.debug("Pruned %d executions older than %s", dropped, cutoff.isoformat())

    def get(self, execution_id: str) -> ExecutionRecord | None:
        for record in self._records:
            if record.id == execution_id:
                return record
        return None

    def all(self) -> list[ExecutionRecord]:
        return list(self._records)

    def recent(self, window: timedelta) -> list[ExecutionRecord]:
        """Records started within ``window`` of now."""
        cutoff = datetime.now(UTC) - window
        return [r for r in self._records if r.started_at >= cutoff]
