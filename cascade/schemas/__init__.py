"""Pydantic schemas for providers, tiers, health, context and executions."""

from cascade.schemas.analytics import (
    FallbackAnalytics,
    OptimizerReport,
    RecentTrends,
    TierStats,
)
from cascade.schemas.context import (
    BudgetConstraint,
    CallerRequest,
    Complexity,
    ConversationContext,
    ConversationMessage,
    DomainContext,
    FeedbackAspects,
    ProjectPreferences,
    QualityRequirement,
    RequestContext,
    TechnicalLevel,
    Urgency,
    UserFeedback,
    UserPreferences,
)
from cascade.schemas.engine import EngineConfig
from cascade.schemas.execution import (
    AttemptOutcome,
    ExecutionAttempt,
    ExecutionRecord,
    FinalResult,
    GenerationResult,
)
from cascade.schemas.health import HealthStatus, ProviderHealth
from cascade.schemas.provider import (
    ActivationCondition,
    ActivationTrigger,
    Capabilities,
    EmergencyAction,
    EmergencyProtocol,
    FallbackTier,
    PerformanceBaseline,
    PricingTier,
    Provider,
    Severity,
    TaskType,
)
from cascade.schemas.quality import QualityAssessment
from cascade.schemas.selection import (
    ScoredProvider,
    SelectionResult,
    SelectionStrategy,
    StrategyRanking,
)

__all__ = [
    "ActivationCondition",
    "ActivationTrigger",
    "AttemptOutcome",
    "BudgetConstraint",
    "CallerRequest",
    "Capabilities",
    "Complexity",
    "ConversationContext",
    "ConversationMessage",
    "DomainContext",
    "EmergencyAction",
    "EmergencyProtocol",
    "EngineConfig",
    "ExecutionAttempt",
    "ExecutionRecord",
    "FallbackAnalytics",
    "FallbackTier",
    "FeedbackAspects",
    "FinalResult",
    "GenerationResult",
    "HealthStatus",
    "OptimizerReport",
    "PerformanceBaseline",
    "PricingTier",
    "ProjectPreferences",
    "Provider",
    "ProviderHealth",
    "QualityAssessment",
    "QualityRequirement",
    "RecentTrends",
    "RequestContext",
    "ScoredProvider",
    "SelectionResult",
    "SelectionStrategy",
    "Severity",
    "StrategyRanking",
    "TaskType",
    "TechnicalLevel",
    "TierStats",
    "Urgency",
    "UserFeedback",
    "UserPreferences",
]
