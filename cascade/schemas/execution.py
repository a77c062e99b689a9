"""Execution trace schemas for fallback runs.

An ExecutionRecord is created at the start of one execute() call, gets
one ExecutionAttempt appended per provider call, and is finalized and
archived when the run ends. The attempt sequence alone is enough to
reconstruct what happened.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from cascade.schemas.context import CallerRequest


class AttemptOutcome(StrEnum):
    """How a single provider attempt ended."""

    SUCCESS = "success"
    QUALITY_FAIL = "quality_fail"
    TIMEOUT = "timeout"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class GenerationResult(BaseModel):
    """Result of one ProviderClient.generate() call."""

    content: str = Field(default="", description="Generated text")
    model: str = Field(default="", description="Model identifier that answered")
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0, description="USD cost of the call")

    @property
    def tokens_used(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ExecutionAttempt(BaseModel):
    """One provider attempt inside a fallback run."""

    tier: int = Field(ge=1, description="Rank of the tier the attempt ran in")
    provider_id: str
    attempt: int = Field(ge=1, description="1-based ordinal within the tier")
    outcome: AttemptOutcome
    latency_ms: float = Field(default=0.0, ge=0.0)
    quality_score: float | None = Field(default=None, ge=0.0, le=1.0)
    cost: float = Field(default=0.0, ge=0.0)
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class FinalResult(BaseModel):
    """Outcome summary of a fallback run.

    ``fallback_level`` is the rank of the tier that produced the accepted
    response, or 0 when the run did not succeed.
    """

    success: bool = False
    provider_id: str | None = None
    fallback_level: int = Field(default=0, ge=0)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    cost: float = Field(default=0.0, ge=0.0)
    total_time_ms: float = Field(default=0.0, ge=0.0)
    content: str = ""
    exhausted: bool = False
    cancelled: bool = False


class ExecutionRecord(BaseModel):
    """Complete trace of one fallback run."""

    id: str = Field(description="Execution identifier")
    correlation_id: str
    session_id: str = ""
    original_provider_id: str | None = None
    original_request: CallerRequest
    failure_reason: str = ""
    start_tier: int = Field(default=1, ge=1)
    attempts: list[ExecutionAttempt] = Field(default_factory=list)
    final: FinalResult = Field(default_factory=FinalResult)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.final.success

    @property
    def duration_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000.0
