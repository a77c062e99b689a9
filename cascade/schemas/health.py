"""Provider health schemas.

ProviderHealth is the rolling reliability/latency/quality record kept
per provider by the HealthTracker. Snapshots handed out for analytics
are deep copies of these records.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class HealthStatus(StrEnum):
    """Coarse health classification derived from the EMA metrics."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILING = "failing"
    OFFLINE = "offline"


class ProviderHealth(BaseModel):
    """Rolling health state for one provider.

    Created lazily on first observation and mutated after every attempt
    and every probe. Never deleted.
    """

    provider_id: str = Field(description="Provider this record describes")
    status: HealthStatus = Field(default=HealthStatus.HEALTHY)
    availability: float = Field(default=1.0, ge=0.0, le=1.0, description="EMA of success")
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0, description="EMA of failure")
    quality_score: float = Field(default=0.8, ge=0.0, le=1.0, description="EMA of quality")
    average_latency_ms: float = Field(default=0.0, ge=0.0, description="EMA of latency")
    consecutive_failures: int = Field(default=0, ge=0)
    total_checks: int = Field(default=0, ge=0, description="Number of folded observations")
    last_check: datetime = Field(default_factory=lambda: datetime.now(UTC))
    recovery_started_at: datetime | None = Field(
        default=None,
        description="When the provider entered 'failing'; cleared on recovery",
    )
