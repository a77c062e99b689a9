"""Request and conversation context schemas.

CallerRequest is the opaque generation request forwarded to providers.
ConversationContext carries the caller's history and preferences, from
which a RequestContext is inferred once per request.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from cascade.schemas.provider import TaskType


class Complexity(StrEnum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EXPERT = "expert"


class Urgency(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QualityRequirement(StrEnum):
    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"
    PERFECT = "perfect"


class BudgetConstraint(StrEnum):
    FREE = "free"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TechnicalLevel(StrEnum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class CallerRequest(BaseModel):
    """A generation request as submitted by the caller.

    The engine forwards it to providers untouched; only the prompt and the
    optional hints are read when inferring the RequestContext.
    """

    prompt: str = Field(description="User prompt to generate a response for")
    context: str = Field(default="", description="Additional context appended to the prompt")
    system: str = Field(default="", description="Optional system prompt")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    task_type: TaskType | None = Field(default=None, description="Caller-declared task type")
    urgency: Urgency | None = None
    quality_requirement: QualityRequirement | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RequestContext(BaseModel):
    """Inferred selection criteria for one request.

    Derived once per request and immutable for the lifetime of an execution.
    """

    task_type: TaskType = TaskType.GENERAL
    complexity: Complexity = Complexity.MODERATE
    expected_tokens: int = Field(default=1000, ge=0)
    urgency: Urgency = Urgency.MEDIUM
    quality_requirement: QualityRequirement = QualityRequirement.GOOD
    budget_constraint: BudgetConstraint = BudgetConstraint.MEDIUM
    primary_domain: str = "general"
    domain_expertise: list[str] = Field(default_factory=list)
    language_requirements: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class FeedbackAspects(BaseModel):
    """Per-aspect ratings, each on a 1-5 scale."""

    accuracy: float = Field(default=3.0, ge=1.0, le=5.0)
    helpfulness: float = Field(default=3.0, ge=1.0, le=5.0)
    clarity: float = Field(default=3.0, ge=1.0, le=5.0)
    completeness: float = Field(default=3.0, ge=1.0, le=5.0)
    relevance: float = Field(default=3.0, ge=1.0, le=5.0)

    def normalized(self) -> float:
        """Mean aspect rating mapped onto 0-1."""
        values = list(self.model_dump().values())
        return sum(values) / (5.0 * len(values))


class UserFeedback(BaseModel):
    """Caller-observed quality/satisfaction signal for one response."""

    message_id: str = ""
    rating: float = Field(ge=1.0, le=5.0, description="Overall rating, 1-5")
    aspects: FeedbackAspects = Field(default_factory=FeedbackAspects)
    comment: str = ""
    task_completed: bool = True
    would_use_again: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def satisfaction(self) -> float:
        """Overall rating mapped onto 0-1."""
        return (self.rating - 1.0) / 4.0


class ConversationMessage(BaseModel):
    """One message of a caller's conversation history."""

    id: str = ""
    role: str = Field(default="user", description="user, assistant or system")
    content: str = ""
    model_used: str | None = Field(default=None, description="Provider id that answered")
    feedback: UserFeedback | None = None


class UserPreferences(BaseModel):
    preferred_vendors: list[str] = Field(default_factory=list)
    budget_constraint: BudgetConstraint = BudgetConstraint.MEDIUM
    language_preference: list[str] = Field(default_factory=lambda: ["english"])
    feedback_history: list[UserFeedback] = Field(default_factory=list)


class ProjectPreferences(BaseModel):
    project_type: str = "general"
    quality_standards: list[str] = Field(default_factory=list)
    preferred_models: list[str] = Field(default_factory=list)
    fallback_models: list[str] = Field(default_factory=list)


class DomainContext(BaseModel):
    primary_domain: str = "general"
    sub_domains: list[str] = Field(default_factory=list)
    required_expertise: list[str] = Field(default_factory=list)
    technical_level: TechnicalLevel = TechnicalLevel.INTERMEDIATE
    industry: str = "technology"


class ConversationContext(BaseModel):
    """Everything the caller knows about the ongoing conversation.

    Supplies the preference and history signals used by context-aware
    scoring. Optional: selection works from the request alone.
    """

    session_id: str = ""
    user_id: str | None = None
    project_id: str | None = None
    history: list[ConversationMessage] = Field(default_factory=list)
    user_preferences: UserPreferences = Field(default_factory=UserPreferences)
    project_preferences: ProjectPreferences = Field(default_factory=ProjectPreferences)
    domain: DomainContext = Field(default_factory=DomainContext)
