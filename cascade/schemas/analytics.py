"""Analytics and optimizer report schemas."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from cascade.schemas.health import HealthStatus


class TierStats(BaseModel):
    """Aggregated attempt statistics for one tier."""

    attempts: int = Field(default=0, ge=0)
    successes: int = Field(default=0, ge=0)
    average_latency_ms: float = Field(default=0.0, ge=0.0)

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0


class RecentTrends(BaseModel):
    executions_last_24h: int = 0
    average_execution_time_ms: float = 0.0
    most_used_level: int = Field(
        default=1, description="Tier rank that most often produced the accepted response"
    )


class FallbackAnalytics(BaseModel):
    """Snapshot of fallback activity for dashboards and post-mortems."""

    total_executions: int = 0
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    average_fallback_level: float = Field(default=0.0, ge=0.0)
    tier_success_rates: dict[int, float] = Field(default_factory=dict)
    provider_health_summary: dict[str, HealthStatus] = Field(default_factory=dict)
    recent_trends: RecentTrends = Field(default_factory=RecentTrends)
    active_executions: int = 0


class OptimizerReport(BaseModel):
    """Result of one Strategy Optimizer pass."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    total_executions: int = 0
    tier_stats: dict[int, TierStats] = Field(default_factory=dict)
    provider_order: dict[int, list[str]] = Field(
        default_factory=dict, description="Provider ids per tier after re-ranking"
    )
    reordered_tiers: list[int] = Field(default_factory=list)
