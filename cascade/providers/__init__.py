"""Cascade provider layer.

Every upstream model call goes through a ProviderClient; the default
LiteLLMClient reaches any vendor through LiteLLM's unified API. The
registry holds the tier topology and the health tracker keeps the
rolling per-provider reliability record.
"""

from cascade.providers.base import ProviderClient
from cascade.providers.health import HealthProber, HealthTracker
from cascade.providers.litellm_client import LiteLLMClient
from cascade.providers.registry import (
    ProviderRegistry,
    load_engine_config,
    load_registry,
)

__all__ = [
    "HealthProber",
    "HealthTracker",
    "LiteLLMClient",
    "ProviderClient",
    "ProviderRegistry",
    "load_engine_config",
    "load_registry",
]
