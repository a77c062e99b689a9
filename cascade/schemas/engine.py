"""Engine configuration schema.

Loaded from defaults.toml by ``load_engine_config`` and overridable from
CLI flags or code.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from cascade.schemas.selection import SelectionStrategy


class EngineConfig(BaseModel):
    """Top-level tuning knobs for the fallback engine."""

    health_alpha: float = Field(
        default=0.1, gt=0.0, le=1.0, description="EMA learning rate for health updates"
    )
    circuit_breaker_threshold: int = Field(
        default=5, ge=1, description="Consecutive failures before a provider is 'failing'"
    )
    health_check_interval: float = Field(
        default=30.0, gt=0.0, description="Seconds between health probe passes"
    )
    health_check_timeout: float = Field(
        default=10.0, gt=0.0, description="Timeout in seconds for one probe call"
    )
    optimizer_interval: float = Field(
        default=300.0, gt=0.0, description="Seconds between optimizer passes"
    )
    optimizer_window_hours: float = Field(
        default=24.0, gt=0.0, description="Look-back window for optimizer statistics"
    )
    history_retention_days: float = Field(
        default=30.0, gt=0.0, description="Retention window for archived executions"
    )
    enable_quality_assurance: bool = Field(
        default=True, description="Gate responses through the quality evaluator"
    )
    enable_health_monitoring: bool = Field(
        default=True, description="Run the periodic health probe loop"
    )
    enable_optimizer: bool = Field(
        default=True, description="Run the periodic strategy optimizer loop"
    )
    enable_emergency_protocols: bool = Field(
        default=True, description="Fire emergency protocols when every tier is exhausted"
    )
    default_quality_score: float = Field(
        default=0.8, ge=0.0, le=1.0,
        description="Quality recorded for accepted responses when QA is disabled",
    )
    default_strategy: SelectionStrategy = Field(default=SelectionStrategy.HYBRID)
    persist_executions: bool = Field(
        default=False, description="Whether to persist execution records to SQLite"
    )
    execution_db_path: str = Field(
        default="~/.cascade/executions.db",
        description="Path to the execution database file",
    )
