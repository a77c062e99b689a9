"""Tiered fallback execution.

The orchestrator escalates a request through the registry's tiers, the
history archive keeps finished executions for analytics, and the
optimizer periodically re-ranks providers inside each tier.
"""

from cascade.fallback.history import ExecutionHistory
from cascade.fallback.optimizer import StrategyOptimizer, aggregate_tier_stats
from cascade.fallback.orchestrator import FallbackOrchestrator, determine_start_tier

__all__ = [
    "ExecutionHistory",
    "FallbackOrchestrator",
    "StrategyOptimizer",
    "aggregate_tier_stats",
    "determine_start_tier",
]
