"""Engine event emitter for the observable notification side channel.

Emits structured events during fallback execution, health tracking and
optimization. Logging, telemetry or dashboard collaborators subscribe as
listeners; emitting never blocks on or fails because of a listener.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Events kept for late-subscribing listeners
_HISTORY_LIMIT = 1_000


class EventType(StrEnum):
    """Types of notifications emitted by the engine."""

    ATTEMPT_RECORDED = "attempt_recorded"
    TIER_ADVANCED = "tier_advanced"
    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_EXHAUSTED = "execution_exhausted"
    EXECUTION_CANCELLED = "execution_cancelled"
    EMERGENCY_PROTOCOL_TRIGGERED = "emergency_protocol_triggered"
    PROVIDER_HEALTH_CHANGED = "provider_health_changed"
    HEALTH_CHECKS_COMPLETED = "health_checks_completed"
    OPTIMIZER_PASS_COMPLETED = "optimizer_pass_completed"
    FEEDBACK_PROCESSED = "feedback_processed"


class EngineEvent(BaseModel):
    """One notification about a fallback run, a provider or a background pass.

    ``data`` carries identifiers such as ``execution_id`` or ``provider_id``
    plus the figures relevant to ``type`` (tier, outcome, latency).
    """

    type: EventType = Field(description="What happened")
    timestamp: float = Field(
        default_factory=time.time,
        description="Wall-clock time of emission (Unix seconds)",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Identifiers and figures for this notification",
    )


# Subscriber callback; a returned coroutine is awaited
EventListener = Callable[[EngineEvent], Any]


class EngineEventEmitter:
    """Fan-out point for engine notifications.

    The orchestrator, health tracker, optimizer and engine facade share one
    emitter. Subscribers see events in emission order, and a subscriber
    that raises is logged and skipped so the run that emitted carries on.
    The last ``history_limit`` events are retained for inspection.
    """

    def __init__(self, history_limit: int = _HISTORY_LIMIT) -> None:
        self._listeners: list[EventListener] = []
        self._history: deque[EngineEvent] = deque(maxlen=history_limit)

    @property
    def history(self) -> list[EngineEvent]:
        return list(self._history)

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Unsubscribe ``listener``; matched by identity, unknown ones are ignored."""
        self._listeners = [ln for ln in self._listeners if ln is not listener]

    async def emit(self, event_type: EventType, **data: Any) -> None:
        """Record the event, then deliver it to each subscriber in turn."""
        event = EngineEvent(type=event_type, data=data)
        self._history.append(event)

        # Snapshot so a listener may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception("Event listener error for %s", event_type)


async def emit_if(
    emitter: EngineEventEmitter | None, event_type: EventType, **data: Any,
) -> None:
    """Emit through ``emitter`` when one is configured."""
    if emitter is not None:
        await emitter.emit(event_type, **data)
