"""CascadeEngine: the public facade over selection and fallback.

Wires the registry, health tracker, selection engine, orchestrator,
prober and optimizer together and exposes the four caller operations:
execute, select, report_feedback and get_analytics.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import timedelta
from pathlib import Path

import aiosqlite

from cascade.errors import EmptyRegistryError, UnknownExecutionError
from cascade.events import EngineEventEmitter, EventType
from cascade.fallback.history import ExecutionHistory
from cascade.fallback.optimizer import StrategyOptimizer, aggregate_tier_stats
from cascade.fallback.orchestrator import EmergencyNotifier, FallbackOrchestrator
from cascade.persistence.database import close_db, init_db
from cascade.persistence.store import ExecutionStore
from cascade.providers.base import ProviderClient
from cascade.providers.health import HealthProber, HealthTracker
from cascade.providers.registry import ProviderRegistry, load_engine_config, load_registry
from cascade.quality.evaluator import QualityEvaluator
from cascade.routing.adaptive import AdaptiveLearner, SatisfactionLedger
from cascade.routing.context import analyze_context
from cascade.routing.engine import SelectionEngine
from cascade.schemas.analytics import FallbackAnalytics, RecentTrends
from cascade.schemas.context import CallerRequest, ConversationContext, UserFeedback
from cascade.schemas.engine import EngineConfig
from cascade.schemas.execution import ExecutionRecord
from cascade.schemas.selection import SelectionResult, SelectionStrategy

logger = logging.getLogger(__name__)

_RECENT_WINDOW = timedelta(hours=24)


class CascadeEngine:
    """Tiered provider fallback and selection engine.

    Construct directly with explicit collaborators, or use
    ``from_config`` to load the packaged TOML defaults. Background loops
    (health probes, optimizer) only run between ``start()`` and
    ``stop()``, or inside ``async with``.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        client: ProviderClient,
        config: EngineConfig | None = None,
        evaluator: QualityEvaluator | None = None,
        emitter: EngineEventEmitter | None = None,
        store: ExecutionStore | None = None,
        notifier: EmergencyNotifier | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.registry = registry
        self.emitter = emitter or EngineEventEmitter()
        cfg = self.config

        self.health = HealthTracker(
            alpha=cfg.health_alpha,
            circuit_breaker_threshold=cfg.circuit_breaker_threshold,
            default_quality=cfg.default_quality_score,
            emitter=self.emitter,
        )
        self.history = ExecutionHistory(retention_days=cfg.history_retention_days)
        self.ledger = SatisfactionLedger()
        self.learner = AdaptiveLearner()
        self.selector = SelectionEngine(
            registry,
            self.health,
            ledger=self.ledger,
            learner=self.learner,
            default_strategy=cfg.default_strategy,
        )
        self.orchestrator = FallbackOrchestrator(
            registry,
            self.health,
            client,
            evaluator=evaluator,
            history=self.history,
            store=store,
            emitter=self.emitter,
            notifier=notifier,
            enable_quality_assurance=cfg.enable_quality_assurance,
            default_quality_score=cfg.default_quality_score,
            enable_emergency_protocols=cfg.enable_emergency_protocols,
        )
        self.prober = HealthProber(
            registry,
            self.health,
            client,
            interval=cfg.health_check_interval,
            timeout=cfg.health_check_timeout,
            emitter=self.emitter,
        )
        self.optimizer = StrategyOptimizer(
            registry,
            self.health,
            self.history,
            interval=cfg.optimizer_interval,
            window_hours=cfg.optimizer_window_hours,
            emitter=self.emitter,
        )
        self._db: aiosqlite.Connection | None = None

    @classmethod
    def from_config(
        cls,
        client: ProviderClient | None = None,
        tiers_path: Path | None = None,
        config_path: Path | None = None,
        **kwargs,
    ) -> CascadeEngine:
        """Build an engine from tiers.toml and defaults.toml.

        Uses the LiteLLM client unless another client is given.
        """
        if client is None:
            from cascade.providers.litellm_client import LiteLLMClient

            client = LiteLLMClient()
        return cls(
            load_registry(tiers_path),
            client,
            config=load_engine_config(config_path),
            **kwargs,
        )

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        """Open persistence (if enabled) and start the background loops."""
        if self.config.persist_executions and self.orchestrator.store is None:
            self._db = await init_db(self.config.execution_db_path)
            self.orchestrator.store = ExecutionStore(self._db)
        if self.config.enable_health_monitoring:
            self.prober.start()
        if self.config.enable_optimizer:
            self.optimizer.start()
        logger.info(
            "Cascade engine started (%d providers, %d tiers)",
            len(self.registry), len(self.registry.ranks()),
        )

    async def stop(self) -> None:
        await self.prober.stop()
        await self.optimizer.stop()
        if self._db is not None:
            self.orchestrator.store = None
            await close_db(self._db)
            self._db = None

    async def __aenter__(self) -> CascadeEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ── Operations ────────────────────────────────────────────────

    async def execute(
        self,
        original_provider_id: str | None,
        request: CallerRequest,
        session_id: str = "",
        failure_reason: str = "",
        *,
        conversation: ConversationContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionRecord:
        """Escalate ``request`` through the tiers and return the trace.

        Raises:
            EmptyRegistryError: If the registry holds no providers.
        """
        if len(self.registry) == 0:
            raise EmptyRegistryError("Cannot execute: no providers configured")
        context = analyze_context(request, conversation)
        return await self.orchestrator.execute(
            original_provider_id,
            request,
            session_id=session_id,
            failure_reason=failure_reason,
            context=context,
            cancel_event=cancel_event,
        )

    async def select(
        self,
        request: CallerRequest,
        conversation: ConversationContext | None = None,
        strategy: SelectionStrategy | None = None,
    ) -> SelectionResult:
        """Choose one provider for ``request`` without calling it.

        Raises:
            EmptyRegistryError: If the registry holds no providers.
        """
        candidates = self.selector.usable_candidates()
        if not candidates:
            raise EmptyRegistryError("Cannot select: no providers configured")
        context = analyze_context(request, conversation)
        return await self.selector.select(candidates, context, strategy, conversation)

    async def report_feedback(self, execution_id: str, feedback: UserFeedback) -> None:
        """Fold caller feedback on an execution into the learned signals.

        Raises:
            UnknownExecutionError: If the execution is not archived.
        """
        record = self.history.get(execution_id)
        if record is None and self.orchestrator.store is not None:
            record = await self.orchestrator.store.get_record(execution_id)
        if record is None:
            raise UnknownExecutionError(execution_id)

        provider_id = record.final.provider_id
        if provider_id is None:
            logger.warning("Execution %s has no accepted provider; feedback ignored", record.id)
            return

        await self.health.record_feedback(provider_id, feedback.satisfaction)
        await self.ledger.record(provider_id, feedback)
        await self.learner.process_feedback(provider_id, feedback)
        logger.info("Feedback for %s on %s: rating %.1f", record.id, provider_id, feedback.rating)
        await self.emitter.emit(
            EventType.FEEDBACK_PROCESSED,
            execution_id=record.id,
            provider_id=provider_id,
            rating=feedback.rating,
        )

    def get_analytics(self) -> FallbackAnalytics:
        """Aggregate archived executions and current health into a snapshot."""
        records = self.history.all()
        successful = [r for r in records if r.success]
        total = len(records)

        tier_stats = aggregate_tier_stats(records)
        recent = self.history.recent(_RECENT_WINDOW)
        levels = Counter(r.final.fallback_level for r in successful)

        return FallbackAnalytics(
            total_executions=total,
            success_rate=len(successful) / total if total else 0.0,
            average_fallback_level=(
                sum(r.final.fallback_level for r in successful) / len(successful)
                if successful else 0.0
            ),
            tier_success_rates={rank: s.success_rate for rank, s in sorted(tier_stats.items())},
            provider_health_summary={
                pid: h.status for pid, h in self.health.snapshot().items()
            },
            recent_trends=RecentTrends(
                executions_last_24h=len(recent),
                average_execution_time_ms=(
                    sum(r.final.total_time_ms for r in recent) / len(recent)
                    if recent else 0.0
                ),
                most_used_level=levels.most_common(1)[0][0] if levels else 1,
            ),
            active_executions=len(self.orchestrator.active_executions()),
        )
