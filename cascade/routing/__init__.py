"""Context-aware provider selection.

Infers a RequestContext from the caller's request and conversation, then
ranks candidates with one of the selection strategies: context-aware,
performance-based, cost-optimized, quality-focused, domain-specific,
adaptive, or a weighted hybrid vote over all of them.
"""

from cascade.routing.adaptive import AdaptiveLearner, SatisfactionLedger
from cascade.routing.context import analyze_context
from cascade.routing.engine import SelectionEngine
from cascade.routing.strategies import (
    SelectionSignals,
    adaptive,
    context_aware,
    cost_optimized,
    domain_specific,
    estimate_cost,
    estimate_latency,
    performance_based,
    quality_focused,
)

__all__ = [
    "AdaptiveLearner",
    "SatisfactionLedger",
    "SelectionEngine",
    "SelectionSignals",
    "adaptive",
    "analyze_context",
    "context_aware",
    "cost_optimized",
    "domain_specific",
    "estimate_cost",
    "estimate_latency",
    "performance_based",
    "quality_focused",
]
