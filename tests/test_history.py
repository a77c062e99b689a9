"""Tests for cascade.fallback.history: the in-memory execution archive."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cascade.fallback.history import ExecutionHistory
from cascade.schemas.context import CallerRequest
from cascade.schemas.execution import ExecutionRecord


def _make_record(execution_id: str, age: timedelta = timedelta(0)) -> ExecutionRecord:
    return ExecutionRecord(
        id=execution_id,
        correlation_id=execution_id,
        original_request=CallerRequest(prompt="hi"),
        started_at=datetime.now(UTC) - age,
    )


@pytest.mark.asyncio()
async def test_add_and_get():
    history = ExecutionHistory()
    await history.add(_make_record("a"))
    await history.add(_make_record("b"))

    assert len(history) == 2
    assert history.get("b").id == "b"
    assert history.get("missing") is None
    assert [r.id for r in history.all()] == ["a", "b"]


@pytest.mark.asyncio()
async def test_old_records_pruned_on_insert():
    history = ExecutionHistory(retention_days=30)
    await history.add(_make_record("stale", age=timedelta(days=31)))
    await history.add(_make_record("fresh", age=timedelta(days=1)))

    assert [r.id for r in history.all()] == ["fresh"]


@pytest.mark.asyncio()
async def test_recent_window():
    history = ExecutionHistory()
    await history.add(_make_record("old", age=timedelta(hours=30)))
    await history.add(_make_record("new", age=timedelta(hours=1)))

    assert [r.id for r in history.recent(timedelta(hours=24))] == ["new"]


@pytest.mark.asyncio()
async def test_all_returns_copy():
    history = ExecutionHistory()
    await history.add(_make_record("a"))
    snapshot = history.all()
    snapshot.clear()
    assert len(history) == 1
