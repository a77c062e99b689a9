"""Tests for cascade.fallback.optimizer: periodic intra-tier re-ranking."""

from __future__ import annotations

import asyncio

import pytest

from cascade.events import EngineEventEmitter, EventType
from cascade.fallback.history import ExecutionHistory
from cascade.fallback.optimizer import (
    StrategyOptimizer,
    aggregate_tier_stats,
    provider_rank_score,
)
from cascade.providers.health import HealthTracker
from cascade.providers.registry import ProviderRegistry
from cascade.schemas.context import CallerRequest
from cascade.schemas.execution import AttemptOutcome, ExecutionAttempt, ExecutionRecord
from cascade.schemas.health import ProviderHealth
from cascade.schemas.provider import FallbackTier, PerformanceBaseline, Provider

# ── Factories ─────────────────────────────────────────────────────


def _make_provider(provider_id: str, **perf) -> Provider:
    return Provider(
        id=provider_id,
        name=provider_id,
        model=f"test/{provider_id}",
        performance=PerformanceBaseline(**perf),
    )


def _make_registry() -> ProviderRegistry:
    return ProviderRegistry([
        FallbackTier(
            rank=1, name="Primary",
            providers=[
                _make_provider("slow", response_time_ms=8000),
                _make_provider("fast", response_time_ms=500),
            ],
        ),
        FallbackTier(rank=2, name="Backup", providers=[_make_provider("solo")]),
    ])


def _make_record(*attempts: tuple[int, str, AttemptOutcome, float]) -> ExecutionRecord:
    return ExecutionRecord(
        id="exec",
        correlation_id="exec",
        original_request=CallerRequest(prompt="hi"),
        attempts=[
            ExecutionAttempt(
                tier=tier, provider_id=pid, attempt=1, outcome=outcome, latency_ms=latency,
            )
            for tier, pid, outcome, latency in attempts
        ],
    )


# ── Scoring ───────────────────────────────────────────────────────


class TestScoring:
    def test_rank_score_from_baseline(self):
        provider = _make_provider(
            "p", availability=0.9, response_time_ms=2000, quality_score=0.8,
        )
        assert provider_rank_score(provider, None) == pytest.approx(
            0.9 * 0.4 + 0.8 * 0.3 + 0.8 * 0.3,
        )

    def test_rank_score_prefers_tracked_health(self):
        provider = _make_provider("p")
        health = ProviderHealth(
            provider_id="p", availability=0.5, average_latency_ms=5000, quality_score=1.0,
        )
        assert provider_rank_score(provider, health) == pytest.approx(
            0.5 * 0.4 + 0.5 * 0.3 + 1.0 * 0.3,
        )

    def test_aggregate_tier_stats(self):
        records = [
            _make_record(
                (1, "a", AttemptOutcome.FAILURE, 100.0),
                (1, "b", AttemptOutcome.SUCCESS, 300.0),
            ),
            _make_record((2, "c", AttemptOutcome.TIMEOUT, 1000.0)),
        ]
        stats = aggregate_tier_stats(records)
        assert stats[1].attempts == 2
        assert stats[1].success_rate == pytest.approx(0.5)
        assert stats[1].average_latency_ms == pytest.approx(200.0)
        assert stats[2].success_rate == 0.0


# ── Passes ────────────────────────────────────────────────────────


class TestOptimizerPass:
    @pytest.mark.asyncio()
    async def test_reorders_by_baseline(self):
        registry = _make_registry()
        optimizer = StrategyOptimizer(registry, HealthTracker(), ExecutionHistory())

        report = await optimizer.run_once()

        assert [p.id for p in registry.providers_in(1)] == ["fast", "slow"]
        assert report.reordered_tiers == [1]
        assert report.provider_order == {1: ["fast", "slow"], 2: ["solo"]}

    @pytest.mark.asyncio()
    async def test_tracked_failures_demote_provider(self):
        registry = _make_registry()
        health = HealthTracker()
        for _ in range(10):
            await health.update("fast", False, 500.0)
        optimizer = StrategyOptimizer(registry, health, ExecutionHistory())

        await optimizer.run_once()
        assert [p.id for p in registry.providers_in(1)] == ["slow", "fast"]

    @pytest.mark.asyncio()
    async def test_membership_and_settings_untouched(self):
        registry = _make_registry()
        before = {t.rank: (t.quality_threshold, t.timeout_seconds) for t in registry.tiers()}
        await StrategyOptimizer(registry, HealthTracker(), ExecutionHistory()).run_once()

        after = {t.rank: (t.quality_threshold, t.timeout_seconds) for t in registry.tiers()}
        assert after == before
        assert sorted(registry.provider_ids()) == ["fast", "slow", "solo"]
        assert all(p.tier == 1 for p in registry.providers_in(1))

    @pytest.mark.asyncio()
    async def test_second_pass_is_stable(self):
        registry = _make_registry()
        optimizer = StrategyOptimizer(registry, HealthTracker(), ExecutionHistory())
        await optimizer.run_once()
        report = await optimizer.run_once()
        assert report.reordered_tiers == []

    @pytest.mark.asyncio()
    async def test_report_counts_recent_executions(self):
        history = ExecutionHistory()
        await history.add(_make_record((1, "fast", AttemptOutcome.SUCCESS, 400.0)))
        emitter = EngineEventEmitter()
        optimizer = StrategyOptimizer(
            _make_registry(), HealthTracker(), history, emitter=emitter,
        )

        report = await optimizer.run_once()

        assert report.total_executions == 1
        assert report.tier_stats[1].successes == 1
        assert emitter.history[-1].type == EventType.OPTIMIZER_PASS_COMPLETED


class TestOptimizerLoop:
    @pytest.mark.asyncio()
    async def test_start_runs_passes_and_stop_cancels(self):
        registry = _make_registry()
        optimizer = StrategyOptimizer(
            registry, HealthTracker(), ExecutionHistory(), interval=0.01,
        )
        optimizer.start()
        assert optimizer.running
        await asyncio.sleep(0.05)
        await optimizer.stop()

        assert not optimizer.running
        assert [p.id for p in registry.providers_in(1)] == ["fast", "slow"]

    @pytest.mark.asyncio()
    async def test_failed_pass_keeps_loop_alive(self, caplog):
        optimizer = StrategyOptimizer(
            _make_registry(), HealthTracker(), ExecutionHistory(), interval=0.01,
        )
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        optimizer.run_once = flaky
        optimizer.start()
        await asyncio.sleep(0.05)
        await optimizer.stop()

        assert calls >= 2
        assert "Optimizer pass failed" in caplog.text
