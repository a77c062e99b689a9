"""Exception hierarchy for the Cascade fallback engine.

Provider-level failures (transport, timeout, quality) are recovered inside
the orchestrator and recorded on the ExecutionRecord. Only configuration
and programmer errors escape to callers.
"""

from __future__ import annotations


class CascadeError(Exception):
    """Base exception for all application-specific errors."""


class ProviderCallError(CascadeError):
    """Raised when a provider call fails at the transport level."""

    def __init__(self, provider_id: str, reason: str) -> None:
        super().__init__(f"Provider {provider_id} request failed: {reason}")
        self.provider_id = provider_id
        self.reason = reason


# Alias matching the failure taxonomy used in execution traces
TransportFailure = ProviderCallError


class AttemptTimeout(CascadeError):
    """Raised when a single provider attempt exceeds its tier timeout."""

    def __init__(self, provider_id: str, timeout: float) -> None:
        super().__init__(
            f"Provider {provider_id} timed out after {timeout:.1f}s"
        )
        self.provider_id = provider_id
        self.timeout = timeout


class QualityBelowThreshold(CascadeError):
    """Raised when a response scores below the active tier's quality bar."""

    def __init__(self, provider_id: str, score: float, threshold: float) -> None:
        super().__init__(
            f"Provider {provider_id} failed quality threshold: "
            f"{score:.2f} < {threshold:.2f}"
        )
        self.provider_id = provider_id
        self.score = score
        self.threshold = threshold


class NoUsableProvidersInTier(CascadeError):
    """Raised when every provider in a tier is failing or offline."""

    def __init__(self, rank: int) -> None:
        super().__init__(f"No usable providers available for fallback tier {rank}")
        self.rank = rank


class AllTiersExhausted(CascadeError):
    """Describes a fallback run that exhausted every tier."""


class ExecutionCancelled(CascadeError):
    """Raised inside an attempt when the caller's cancellation signal fires."""


class ConfigurationError(CascadeError):
    """Raised when tier or engine configuration is invalid."""


class UnknownProviderError(ConfigurationError):
    """Raised when configuration references a provider id not in the registry."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"Unknown provider: {provider_id}")
        self.provider_id = provider_id


class EmptyRegistryError(ConfigurationError):
    """Raised when the engine is asked to route with no providers configured."""


class UnknownExecutionError(CascadeError):
    """Raised when feedback references an execution that is not archived."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Unknown execution: {execution_id}")
        self.execution_id = execution_id
