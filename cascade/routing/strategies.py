"""Provider selection strategy functions.

Each strategy ranks a candidate list for one request context and returns
a StrategyRanking, best first. Strategies are pure: given the same
candidates, context and signals they always produce the same ranking.
Sorting is stable, so candidates with equal scores keep registry order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from cascade.errors import EmptyRegistryError
from cascade.routing.adaptive import DEFAULT_SATISFACTION, AdaptiveInsights
from cascade.schemas.context import (
    BudgetConstraint,
    ConversationContext,
    QualityRequirement,
    RequestContext,
)
from cascade.schemas.health import ProviderHealth
from cascade.schemas.provider import Provider
from cascade.schemas.selection import ScoredProvider, SelectionStrategy, StrategyRanking

# Maximum estimated USD cost per request under each budget
BUDGET_CEILINGS: dict[BudgetConstraint, float] = {
    BudgetConstraint.FREE: 0.0,
    BudgetConstraint.LOW: 0.01,
    BudgetConstraint.MEDIUM: 0.05,
    BudgetConstraint.HIGH: 0.20,
}

# Minimum mean capability (0-100) per quality requirement
QUALITY_THRESHOLDS: dict[QualityRequirement, float] = {
    QualityRequirement.BASIC: 70.0,
    QualityRequirement.GOOD: 80.0,
    QualityRequirement.EXCELLENT: 90.0,
    QualityRequirement.PERFECT: 95.0,
}

# Cost vs quality emphasis in the context-aware tradeoff term
_BUDGET_WEIGHTS: dict[BudgetConstraint, tuple[float, float]] = {
    BudgetConstraint.FREE: (0.8, 0.2),
    BudgetConstraint.LOW: (0.6, 0.4),
    BudgetConstraint.MEDIUM: (0.4, 0.6),
    BudgetConstraint.HIGH: (0.2, 0.8),
}

# Base hybrid vote weights, in tie-break order
_HYBRID_WEIGHTS: dict[SelectionStrategy, float] = {
    SelectionStrategy.CONTEXT_AWARE: 0.30,
    SelectionStrategy.PERFORMANCE_BASED: 0.20,
    SelectionStrategy.COST_OPTIMIZED: 0.20,
    SelectionStrategy.QUALITY_FOCUSED: 0.15,
    SelectionStrategy.ADAPTIVE: 0.15,
}
_DOMAIN_WEIGHT = 0.10

# Feedback volume after which learned signals carry more weight
_ADAPTIVE_FEEDBACK_MIN = 10

_MAX_ALTERNATES = 3


@dataclass
class SelectionSignals:
    """Everything besides the request context that strategies read.

    Built once per selection from snapshots, so every strategy in a hybrid
    run sees the same state.
    """

    conversation: ConversationContext = field(default_factory=ConversationContext)
    health: dict[str, ProviderHealth] = field(default_factory=dict)
    satisfaction: dict[str, float] = field(default_factory=dict)
    insights: AdaptiveInsights = field(default_factory=AdaptiveInsights)
    domain_mappings: dict[str, list[str]] = field(default_factory=dict)
    feedback_count: int = 0

    def satisfaction_of(self, provider_id: str) -> float:
        return self.satisfaction.get(provider_id, DEFAULT_SATISFACTION)


# ── Estimates ─────────────────────────────────────────────────────


def estimate_cost(provider: Provider, tokens: int) -> float:
    """Estimated USD cost, assuming a 70/30 prompt/completion split."""
    prompt_tokens = math.ceil(tokens * 0.7)
    completion_tokens = math.ceil(tokens * 0.3)
    return provider.calculate_cost(prompt_tokens, completion_tokens)


def estimate_latency(provider: Provider, tokens: int) -> float:
    """Estimated latency in ms, scaled by the provider's declared speed."""
    speed = provider.performance.response_time_ms / 2000.0
    return 1000.0 + tokens * 10.0 * speed


def estimate_quality(provider: Provider, context: RequestContext) -> float:
    """Task capability blended with overall capability, 0-100."""
    caps = provider.capabilities
    return caps.for_task(context.task_type) * 0.6 + caps.average() * 0.4


def _rank(
    strategy: SelectionStrategy,
    scored: list[tuple[Provider, float]],
    confidence_of,
    reasoning: str,
) -> StrategyRanking:
    ordered = sorted(scored, key=lambda item: -item[1])
    ranked = [ScoredProvider(provider=p, score=s) for p, s in ordered]
    return StrategyRanking(
        strategy=strategy,
        ranked=ranked,
        confidence=min(max(confidence_of(ranked[0].score), 0.0), 1.0),
        reasoning=reasoning,
    )


def _require(candidates: list[Provider]) -> None:
    if not candidates:
        raise EmptyRegistryError("No providers available for selection")


# ── Context-aware ─────────────────────────────────────────────────


def _domain_match(provider: Provider, expertise: list[str]) -> float:
    if not expertise:
        return 0.0
    specialties = [s.lower() for s in provider.specialties]
    matches = sum(
        1 for e in expertise if any(e.lower() in s for s in specialties)
    )
    return min(matches / len(expertise), 1.0) * 100.0


def _cost_quality(provider: Provider, context: RequestContext) -> float:
    per_token = (provider.cost_input + provider.cost_output) / 2 / 1_000_000
    cost_score = 100.0 if per_token == 0 else max(0.0, 100.0 - per_token * 10_000)
    cost_weight, quality_weight = _BUDGET_WEIGHTS[context.budget_constraint]
    return cost_score * cost_weight + provider.capabilities.average() * quality_weight


def _user_preference(provider: Provider, conversation: ConversationContext) -> float:
    preferred = {v.lower() for v in conversation.user_preferences.preferred_vendors}
    return 80.0 if provider.vendor.lower() in preferred else 50.0


def _project_preference(provider: Provider, conversation: ConversationContext) -> float:
    prefs = conversation.project_preferences
    if provider.id in prefs.preferred_models:
        return 90.0
    if provider.id in prefs.fallback_models:
        return 70.0
    return 50.0


def _context_relevance(provider: Provider, conversation: ConversationContext) -> float:
    """20 points per well-rated (>= 4) answer this provider gave in the history."""
    successes = sum(
        1 for m in conversation.history
        if m.model_used == provider.id and m.feedback is not None and m.feedback.rating >= 4
    )
    return min(successes * 20.0, 100.0)


def context_aware_score(
    provider: Provider, context: RequestContext, signals: SelectionSignals,
) -> float:
    """Weighted 0-100 score over capability, history, domain, cost and preferences."""
    conversation = signals.conversation
    return (
        provider.capabilities.for_task(context.task_type) * 0.25
        + signals.satisfaction_of(provider.id) * 100.0 * 0.20
        + _domain_match(provider, context.domain_expertise) * 0.15
        + _cost_quality(provider, context) * 0.15
        + _user_preference(provider, conversation) * 0.10
        + _project_preference(provider, conversation) * 0.10
        + _context_relevance(provider, conversation) * 0.05
    )


def context_aware(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> StrategyRanking:
    _require(candidates)
    scored = [(p, context_aware_score(p, context, signals)) for p in candidates]
    return _rank(
        SelectionStrategy.CONTEXT_AWARE,
        scored,
        lambda s: s / 100.0,
        "Context-aware selection based on capability, history, domain, "
        "budget and preferences",
    )


# ── Performance-based ─────────────────────────────────────────────


def _cost_efficiency(provider: Provider) -> float:
    blended = (provider.cost_input + provider.cost_output) / 2
    return 1.0 / (1.0 + blended / 10.0)


def performance_score(provider: Provider, signals: SelectionSignals) -> float:
    """0-1 score from observed health; 0.5 for providers never observed."""
    health = signals.health.get(provider.id)
    if health is None:
        return 0.5
    latency = max(0.0, 1.0 - health.average_latency_ms / 10_000)
    return (
        health.availability * 0.3
        + latency * 0.2
        + health.quality_score * 0.25
        + _cost_efficiency(provider) * 0.15
        + signals.satisfaction_of(provider.id) * 0.1
    )


def performance_based(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> StrategyRanking:
    _require(candidates)
    scored = [(p, performance_score(p, signals)) for p in candidates]
    return _rank(
        SelectionStrategy.PERFORMANCE_BASED,
        scored,
        lambda s: s,
        "Selected based on observed availability, latency and quality",
    )


# ── Cost-optimized ────────────────────────────────────────────────


def cost_optimized(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> StrategyRanking:
    """Maximize quality per dollar within the budget ceiling.

    Free candidates count as maximally efficient. When nothing fits the
    ceiling, every candidate is ranked cheapest first instead.
    """
    _require(candidates)
    ceiling = BUDGET_CEILINGS[context.budget_constraint]
    tokens = context.expected_tokens
    costs = {p.id: estimate_cost(p, tokens) for p in candidates}
    affordable = [p for p in candidates if costs[p.id] <= ceiling]

    if not affordable:
        # Cheapest first; negate so _rank's descending sort puts it on top
        scored = [(p, -costs[p.id]) for p in candidates]
        return _rank(
            SelectionStrategy.COST_OPTIMIZED,
            scored,
            lambda s: 0.5,
            f"No provider fits the {context.budget_constraint.value} budget "
            f"(${ceiling:.2f}); ranked cheapest first",
        )

    scored = []
    for provider in affordable:
        quality = estimate_quality(provider, context)
        cost = costs[provider.id]
        efficiency = quality / cost if cost > 0 else quality * 1000.0
        scored.append((provider, efficiency))
    return _rank(
        SelectionStrategy.COST_OPTIMIZED,
        scored,
        lambda s: 0.8,
        f"Cost-optimized selection within {context.budget_constraint.value} budget",
    )


# ── Quality-focused ───────────────────────────────────────────────


def quality_focused(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> StrategyRanking:
    _require(candidates)
    threshold = QUALITY_THRESHOLDS[context.quality_requirement]
    qualified = [p for p in candidates if p.capabilities.average() >= threshold]

    if not qualified:
        fallback = context_aware(candidates, context, signals)
        return fallback.model_copy(update={
            "strategy": SelectionStrategy.QUALITY_FOCUSED,
            "reasoning": (
                f"No provider meets the {context.quality_requirement.value} bar "
                f"({threshold:.0f}); fell back to context-aware"
            ),
        })

    scored = [(p, estimate_quality(p, context)) for p in qualified]
    return _rank(
        SelectionStrategy.QUALITY_FOCUSED,
        scored,
        lambda s: s / 100.0,
        f"Quality-focused selection for {context.quality_requirement.value} "
        f"quality requirement",
    )


# ── Domain-specific ───────────────────────────────────────────────


def domain_candidates(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> list[Provider]:
    """Candidates mapped to the primary domain or carrying a matching specialty."""
    mapped = set(signals.domain_mappings.get(context.primary_domain, []))
    # "general" is not a domain of expertise
    expertise = set(context.domain_expertise) - {"general"}
    return [
        p for p in candidates
        if p.id in mapped or expertise.intersection(p.specialties)
    ]


def domain_specific(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> StrategyRanking:
    _require(candidates)
    narrowed = domain_candidates(candidates, context, signals)
    if narrowed:
        reasoning = f"Domain experts for {context.primary_domain}"
    else:
        narrowed = candidates
        reasoning = f"No domain experts for {context.primary_domain}; used all candidates"
    ranking = context_aware(narrowed, context, signals)
    return ranking.model_copy(update={
        "strategy": SelectionStrategy.DOMAIN_SPECIFIC,
        "reasoning": reasoning,
    })


# ── Adaptive ──────────────────────────────────────────────────────


def adaptive(
    candidates: list[Provider], context: RequestContext, signals: SelectionSignals,
) -> StrategyRanking:
    _require(candidates)
    boosts = signals.insights.boosts
    penalties = signals.insights.penalties
    scored = []
    for provider in candidates:
        score = (
            estimate_quality(provider, context)
            + boosts.get(provider.id, 0.0) * 0.2
            - penalties.get(provider.id, 0.0) * 0.2
        )
        scored.append((provider, max(0.0, score)))
    return _rank(
        SelectionStrategy.ADAPTIVE,
        scored,
        lambda s: s / 100.0,
        "Adaptive selection based on learned feedback",
    )


# ── Hybrid ────────────────────────────────────────────────────────


def hybrid_weights(
    context: RequestContext,
    feedback_count: int,
    domain_match: bool,
) -> dict[SelectionStrategy, float]:
    """Normalized vote weights for the hybrid strategy."""
    weights = dict(_HYBRID_WEIGHTS)
    if domain_match:
        weights[SelectionStrategy.DOMAIN_SPECIFIC] = _DOMAIN_WEIGHT

    if context.budget_constraint in (BudgetConstraint.FREE, BudgetConstraint.LOW):
        weights[SelectionStrategy.COST_OPTIMIZED] *= 2
        weights[SelectionStrategy.QUALITY_FOCUSED] *= 0.5
    if context.quality_requirement in (QualityRequirement.EXCELLENT, QualityRequirement.PERFECT):
        weights[SelectionStrategy.QUALITY_FOCUSED] *= 2
        weights[SelectionStrategy.COST_OPTIMIZED] *= 0.5
    if feedback_count > _ADAPTIVE_FEEDBACK_MIN:
        weights[SelectionStrategy.ADAPTIVE] *= 1.5

    total = sum(weights.values())
    return {k: v / total for k, v in weights.items()}


def combine_votes(
    rankings: list[StrategyRanking],
    weights: dict[SelectionStrategy, float],
    fill_from: StrategyRanking,
) -> tuple[StrategyRanking, list[Provider], list[str]]:
    """Weighted vote over each ranking's top choice.

    Each strategy adds ``confidence * weight`` to its top provider. The
    highest total wins; ties go to the provider voted for first, so
    strategy order breaks them.

    Returns:
        Tuple of (ranking of voted providers by total, alternates,
        reasons attached to the winner).
    """
    totals: dict[str, float] = {}
    voted: dict[str, Provider] = {}
    reasons: dict[str, list[str]] = {}
    for ranking in rankings:
        top = ranking.top.provider
        weight = weights.get(ranking.strategy, 0.0)
        totals[top.id] = totals.get(top.id, 0.0) + ranking.confidence * weight
        voted.setdefault(top.id, top)
        reasons.setdefault(top.id, []).append(
            f"{ranking.strategy.value}: {ranking.reasoning}"
        )

    scored = [(voted[pid], total) for pid, total in totals.items()]
    combined = _rank(
        SelectionStrategy.HYBRID,
        scored,
        lambda s: s,
        "Hybrid selection by weighted strategy vote",
    )
    winner = combined.top.provider

    alternates = [sp.provider for sp in combined.ranked[1:]]
    for sp in fill_from.ranked:
        if len(alternates) >= _MAX_ALTERNATES:
            break
        if sp.provider.id != winner.id and all(a.id != sp.provider.id for a in alternates):
            alternates.append(sp.provider)
    return combined, alternates[:_MAX_ALTERNATES], reasons[winner.id]


# Strategy dispatcher for single-strategy selection
STRATEGY_FN = {
    SelectionStrategy.CONTEXT_AWARE: context_aware,
    SelectionStrategy.PERFORMANCE_BASED: performance_based,
    SelectionStrategy.COST_OPTIMIZED: cost_optimized,
    SelectionStrategy.QUALITY_FOCUSED: quality_focused,
    SelectionStrategy.DOMAIN_SPECIFIC: domain_specific,
    SelectionStrategy.ADAPTIVE: adaptive,
}
