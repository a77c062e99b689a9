"""Selection schemas for the Selection Engine.

Defines the strategy enum, the per-strategy ranking each scoring function
returns, and the SelectionResult handed back to callers.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from cascade.schemas.provider import Provider


class SelectionStrategy(StrEnum):
    """Available provider selection strategies."""

    CONTEXT_AWARE = "context_aware"
    PERFORMANCE_BASED = "performance_based"
    COST_OPTIMIZED = "cost_optimized"
    QUALITY_FOCUSED = "quality_focused"
    DOMAIN_SPECIFIC = "domain_specific"
    ADAPTIVE = "adaptive"
    HYBRID = "hybrid"


class ScoredProvider(BaseModel):
    """A candidate with the score one strategy assigned it."""

    provider: Provider
    score: float


class StrategyRanking(BaseModel):
    """Full ranking produced by one strategy, best first."""

    strategy: SelectionStrategy
    ranked: list[ScoredProvider] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    @property
    def top(self) -> ScoredProvider:
        return self.ranked[0]


class SelectionResult(BaseModel):
    """Outcome of a one-shot provider selection."""

    chosen: Provider = Field(description="Selected provider")
    strategy: SelectionStrategy
    score: float = Field(description="Score of the chosen provider under the strategy")
    confidence: float = Field(ge=0.0, le=1.0)
    alternates: list[Provider] = Field(
        default_factory=list, description="Up to 3 ranked runner-up providers"
    )
    reasoning: list[str] = Field(default_factory=list)
    estimated_cost: float = Field(ge=0.0, description="Estimated USD cost")
    estimated_latency_ms: float = Field(ge=0.0)
