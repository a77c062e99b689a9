"""Provider and fallback tier configuration schemas.

Defines the provider catalog entries (capabilities, pricing, declared
performance) and the ordered fallback tiers that group them. Loaded from
tiers.toml by the provider registry.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TaskType(StrEnum):
    """Kinds of work a request can be classified as."""

    CODING = "coding"
    CREATIVE = "creative"
    ANALYTICAL = "analytical"
    REASONING = "reasoning"
    MULTIMODAL = "multimodal"
    GENERAL = "general"


class PricingTier(StrEnum):
    """Commercial tier a provider is sold under."""

    PREMIUM = "premium"
    STANDARD = "standard"
    FREE = "free"


class Capabilities(BaseModel):
    """Declared capability scores for a provider, each on a 0-100 scale."""

    coding: float = Field(default=0.0, ge=0.0, le=100.0)
    creative: float = Field(default=0.0, ge=0.0, le=100.0)
    analytical: float = Field(default=0.0, ge=0.0, le=100.0)
    multimodal: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: float = Field(default=0.0, ge=0.0, le=100.0)
    languages: float = Field(
        default=0.0, ge=0.0, le=100.0, description="Language breadth"
    )

    def for_task(self, task_type: TaskType) -> float:
        """Capability score for a task type.

        ``general`` has no dedicated score and maps to the overall average.
        """
        if task_type == TaskType.GENERAL:
            return self.average()
        return getattr(self, task_type.value)

    def average(self) -> float:
        """Unweighted mean over all six capability scores."""
        values = list(self.model_dump().values())
        return sum(values) / len(values)


class PerformanceBaseline(BaseModel):
    """Declared performance profile published for a provider."""

    availability: float = Field(default=0.95, ge=0.0, le=1.0)
    response_time_ms: float = Field(default=2000.0, gt=0.0)
    quality_score: float = Field(default=0.8, ge=0.0, le=1.0)
    reliability_score: float = Field(default=0.9, ge=0.0, le=1.0)


class Provider(BaseModel):
    """A single upstream model endpoint in the provider catalog.

    Immutable except for administrative updates. The ``tier`` field is
    stamped by the registry when the provider is placed in a tier.
    """

    id: str = Field(description="Unique provider identifier (e.g. 'openai/gpt-4o')")
    name: str = Field(description="Human-friendly provider name")
    model: str = Field(description="LiteLLM model identifier used for calls")
    vendor: str = Field(default="", description="Vendor name (e.g. 'anthropic')")
    api_key_env: str = Field(
        default="", description="Environment variable holding the API key"
    )
    api_base: str = Field(default="", description="Custom API base URL (empty = default)")
    capabilities: Capabilities = Field(default_factory=Capabilities)
    cost_input: float = Field(default=0.0, ge=0.0, description="USD per 1M input tokens")
    cost_output: float = Field(default=0.0, ge=0.0, description="USD per 1M output tokens")
    performance: PerformanceBaseline = Field(default_factory=PerformanceBaseline)
    specialties: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)
    pricing_tier: PricingTier = Field(default=PricingTier.STANDARD)
    tier: int = Field(default=0, ge=0, description="Rank of the owning fallback tier")

    model_config = {"frozen": True}

    @property
    def is_free(self) -> bool:
        return self.cost_input == 0 and self.cost_output == 0

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Calculate the USD cost for a given token count."""
        input_cost = (prompt_tokens / 1_000_000) * self.cost_input
        output_cost = (completion_tokens / 1_000_000) * self.cost_output
        return input_cost + output_cost


class ActivationTrigger(StrEnum):
    """Conditions under which a fallback tier becomes eligible."""

    PROVIDER_FAILURE = "provider_failure"
    QUALITY_DEGRADATION = "quality_degradation"
    COST_LIMIT = "cost_limit"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActivationCondition(BaseModel):
    """A documented reason a tier may be activated."""

    type: ActivationTrigger
    description: str = ""
    severity: Severity = Severity.MEDIUM
    auto_activate: bool = True
    threshold: float | None = None


class EmergencyAction(BaseModel):
    """One step of an emergency protocol."""

    type: str = Field(description="Action type (e.g. 'notify_admin')")
    parameters: dict[str, Any] = Field(default_factory=dict)
    execution_order: int = Field(default=1, ge=1)
    is_reversible: bool = False


class EmergencyProtocol(BaseModel):
    """Side effects fired when a fallback run exhausts every tier."""

    id: str
    name: str
    description: str = ""
    trigger: str = Field(default="all_levels_failed")
    actions: list[EmergencyAction] = Field(default_factory=list)
    escalation_level: int = Field(default=5, ge=1)
    notification_required: bool = True


class FallbackTier(BaseModel):
    """One ordered fallback level grouping providers of similar quality/cost.

    Rank 1 is the highest quality (and cost). Tier membership is fixed at
    startup; only the order of ``providers`` may change at runtime.
    """

    rank: int = Field(ge=1, description="Ordered rank; ascending = higher quality")
    name: str = Field(description="Display name of the tier")
    description: str = ""
    providers: list[Provider] = Field(default_factory=list)
    quality_threshold: float = Field(ge=0.0, le=1.0)
    max_retries: int = Field(ge=1, description="Providers attempted before advancing")
    timeout_seconds: float = Field(gt=0.0, description="Per-attempt timeout")
    health_check_interval: float = Field(default=30.0, gt=0.0)
    cost_limit: float | None = Field(default=None, ge=0.0)
    activation_conditions: list[ActivationCondition] = Field(default_factory=list)
    emergency_protocols: list[EmergencyProtocol] = Field(default_factory=list)
