"""Quality assessment schema returned by quality evaluators."""

from __future__ import annotations

from pydantic import BaseModel, Field


class QualityAssessment(BaseModel):
    """Score of one response against a tier's quality bar."""

    score: float = Field(ge=0.0, le=1.0, description="Aggregate quality score")
    passes_threshold: bool = Field(description="Whether score >= threshold")
    threshold: float = Field(ge=0.0, le=1.0)
    metrics: dict[str, float] = Field(
        default_factory=dict, description="Per-metric sub-scores in [0, 1]"
    )
    method: str = Field(default="rule_based", description="Assessment method name")
    assessment_time_ms: float = Field(default=0.0, ge=0.0)
