"""Selection Engine for one-shot provider choice.

Ranks candidates for a request context with one of the configured
strategies (context-aware, performance-based, cost-optimized,
quality-focused, domain-specific, adaptive, hybrid) and attaches cost
and latency estimates to the choice.
"""

from __future__ import annotations

import asyncio
import logging

from cascade.providers.health import HealthTracker
from cascade.providers.registry import ProviderRegistry
from cascade.routing.adaptive import AdaptiveLearner, SatisfactionLedger
from cascade.routing.strategies import (
    STRATEGY_FN,
    SelectionSignals,
    combine_votes,
    domain_candidates,
    estimate_cost,
    estimate_latency,
    hybrid_weights,
)
from cascade.schemas.context import ConversationContext, RequestContext
from cascade.schemas.provider import Provider
from cascade.schemas.selection import SelectionResult, SelectionStrategy, StrategyRanking

logger = logging.getLogger(__name__)

_MAX_ALTERNATES = 3

# Strategies polled by hybrid, in tie-break order
_HYBRID_MEMBERS = [
    SelectionStrategy.CONTEXT_AWARE,
    SelectionStrategy.PERFORMANCE_BASED,
    SelectionStrategy.COST_OPTIMIZED,
    SelectionStrategy.QUALITY_FOCUSED,
    SelectionStrategy.ADAPTIVE,
]


class SelectionEngine:
    """Chooses a provider for a request context.

    Reads health snapshots, satisfaction and adaptive signals but never
    mutates them; the same inputs always produce the same choice for
    every strategy except adaptive (whose signals move with feedback).
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        health: HealthTracker,
        ledger: SatisfactionLedger | None = None,
        learner: AdaptiveLearner | None = None,
        default_strategy: SelectionStrategy = SelectionStrategy.HYBRID,
    ) -> None:
        self._registry = registry
        self._health = health
        self._ledger = ledger or SatisfactionLedger()
        self._learner = learner or AdaptiveLearner()
        self._default_strategy = default_strategy

    def usable_candidates(self) -> list[Provider]:
        """Usable providers, or the whole registry when none are usable."""
        providers = self._registry.all_providers()
        usable = [p for p in providers if self._health.is_usable(p.id)]
        if not usable and providers:
            logger.warning("No usable providers; selecting from the full registry")
            return providers
        return usable

    def _signals(
        self, candidates: list[Provider], conversation: ConversationContext | None,
    ) -> SelectionSignals:
        conversation = conversation or ConversationContext()
        return SelectionSignals(
            conversation=conversation,
            health=self._health.snapshot(),
            satisfaction={p.id: self._ledger.satisfaction(p.id) for p in candidates},
            insights=self._learner.insights(),
            domain_mappings=self._registry.domain_mappings,
            feedback_count=max(
                len(conversation.user_preferences.feedback_history),
                self._learner.feedback_count,
            ),
        )

    async def select(
        self,
        candidates: list[Provider],
        context: RequestContext,
        strategy: SelectionStrategy | None = None,
        conversation: ConversationContext | None = None,
    ) -> SelectionResult:
        """Select one provider from ``candidates``.

        Args:
            candidates: Providers to choose from, in registry order.
            context: Inferred request context.
            strategy: Strategy to apply (defaults to the engine default).
            conversation: Optional history and preferences.

        Returns:
            SelectionResult with the choice, up to 3 alternates and estimates.

        Raises:
            EmptyRegistryError: If ``candidates`` is empty.
        """
        effective = strategy or self._default_strategy
        signals = self._signals(candidates, conversation)

        if effective == SelectionStrategy.HYBRID:
            result = await self._hybrid(candidates, context, signals)
        else:
            ranking = STRATEGY_FN[effective](candidates, context, signals)
            result = self._to_result(ranking, context)

        logger.info(
            "Selected %s (%s, score=%.3f, confidence=%.2f, est=$%.4f)",
            result.chosen.id,
            effective.value,
            result.score,
            result.confidence,
            result.estimated_cost,
        )
        return result

    async def _hybrid(
        self,
        candidates: list[Provider],
        context: RequestContext,
        signals: SelectionSignals,
    ) -> SelectionResult:
        members = list(_HYBRID_MEMBERS)
        domain_match = bool(domain_candidates(candidates, context, signals))
        if domain_match:
            members.append(SelectionStrategy.DOMAIN_SPECIFIC)

        async def run(member: SelectionStrategy) -> StrategyRanking:
            return STRATEGY_FN[member](candidates, context, signals)

        rankings = await asyncio.gather(*(run(m) for m in members))
        weights = hybrid_weights(context, signals.feedback_count, domain_match)
        combined, alternates, reasons = combine_votes(
            list(rankings), weights, fill_from=rankings[0],
        )
        winner = combined.top
        return SelectionResult(
            chosen=winner.provider,
            strategy=SelectionStrategy.HYBRID,
            score=winner.score,
            confidence=min(winner.score, 1.0),
            alternates=alternates,
            reasoning=[
                combined.reasoning,
                *reasons,
                f"Context: {context.task_type.value} task with "
                f"{context.complexity.value} complexity",
                f"Budget: {context.budget_constraint.value}, "
                f"Quality: {context.quality_requirement.value}",
            ],
            estimated_cost=estimate_cost(winner.provider, context.expected_tokens),
            estimated_latency_ms=estimate_latency(winner.provider, context.expected_tokens),
        )

    @staticmethod
    def _to_result(ranking: StrategyRanking, context: RequestContext) -> SelectionResult:
        best = ranking.top
        return SelectionResult(
            chosen=best.provider,
            strategy=ranking.strategy,
            score=best.score,
            confidence=ranking.confidence,
            alternates=[sp.provider for sp in ranking.ranked[1:_MAX_ALTERNATES + 1]],
            reasoning=[
                ranking.reasoning,
                f"Strategy: {ranking.strategy.value}",
                f"Context: {context.task_type.value} task with "
                f"{context.complexity.value} complexity",
                f"Budget: {context.budget_constraint.value}, "
                f"Quality: {context.quality_requirement.value}",
            ],
            estimated_cost=estimate_cost(best.provider, context.expected_tokens),
            estimated_latency_ms=estimate_latency(best.provider, context.expected_tokens),
        )
