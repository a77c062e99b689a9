"""Strategy Optimizer: periodic re-ranking of providers inside each tier.

Every pass aggregates recent attempt statistics per tier and re-orders
each tier's providers by a blend of tracked availability, latency and
quality. Tier membership, thresholds and timeouts are never touched.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta

from cascade.events import EngineEventEmitter, EventType, emit_if
from cascade.fallback.history import ExecutionHistory
from cascade.providers.health import HealthTracker
from cascade.providers.registry import ProviderRegistry
from cascade.schemas.analytics import OptimizerReport, TierStats
from cascade.schemas.execution import AttemptOutcome, ExecutionRecord
from cascade.schemas.health import ProviderHealth
from cascade.schemas.provider import Provider

logger = logging.getLogger(__name__)


def aggregate_tier_stats(records: list[ExecutionRecord]) -> dict[int, TierStats]:
    """Attempts, successes and mean attempt latency per tier rank."""
    stats: dict[int, TierStats] = {}
    for record in records:
        for attempt in record.attempts:
            entry = stats.setdefault(attempt.tier, TierStats())
            entry.attempts += 1
            if attempt.outcome == AttemptOutcome.SUCCESS:
                entry.successes += 1
            entry.average_latency_ms += (
                attempt.latency_ms - entry.average_latency_ms
            ) / entry.attempts
    return stats


def provider_rank_score(provider: Provider, health: ProviderHealth | None) -> float:
    """availability 0.4 + (1 - latency/10s) 0.3 + quality 0.3.

    Providers never observed are scored from their declared baseline.
    """
    if health is None:
        availability = provider.performance.availability
        latency_ms = provider.performance.response_time_ms
        quality = provider.performance.quality_score
    else:
        availability = health.availability
        latency_ms = health.average_latency_ms
        quality = health.quality_score
    return availability * 0.4 + (1 - latency_ms / 10_000) * 0.3 + quality * 0.3


class StrategyOptimizer:
    """Runs optimizer passes on demand or on a background timer."""

    def __init__(
        self,
        registry: ProviderRegistry,
        health: HealthTracker,
        history: ExecutionHistory,
        interval: float = 300.0,
        window_hours: float = 24.0,
        emitter: EngineEventEmitter | None = None,
    ) -> None:
        self._registry = registry
        self._health = health
        self._history = history
        self._interval = interval
        self._window = timedelta(hours=window_hours)
        self._emitter = emitter
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> OptimizerReport:
        """Run one optimizer pass and return its report."""
        recent = self._history.recent(self._window)
        tier_stats = aggregate_tier_stats(recent)
        snapshot = self._health.snapshot()

        provider_order: dict[int, list[str]] = {}
        reordered: list[int] = []
        for tier in self._registry.tiers():
            current = [p.id for p in tier.providers]
            ranked = sorted(
                tier.providers,
                key=lambda p: -provider_rank_score(p, snapshot.get(p.id)),
            )
            new_order = [p.id for p in ranked]
            if new_order != current:
                await self._registry.reorder(tier.rank, new_order)
                reordered.append(tier.rank)
            provider_order[tier.rank] = new_order

        report = OptimizerReport(
            total_executions=len(recent),
            tier_stats=tier_stats,
            provider_order=provider_order,
            reordered_tiers=reordered,
        )
        logger.info(
            "Optimizer pass: %d recent executions, re-ordered tiers %s",
            len(recent), reordered or "none",
        )
        await emit_if(
            self._emitter,
            EventType.OPTIMIZER_PASS_COMPLETED,
            report=report.model_dump(mode="json"),
        )
        return report

    def start(self) -> None:
        """Start the background optimizer loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cascade-optimizer")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Optimizer pass failed")
