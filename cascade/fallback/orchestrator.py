"""Fallback Orchestrator: the tier escalation state machine.

Drives one end-to-end attempt sequence for a failed or fresh request:

    Selecting(tier) -> Attempting(tier, provider, n)
        -> Succeeded | Advancing(tier + 1) | Exhausted | Cancelled

Within a tier, usable providers are tried one at a time, best tracked
quality first, each under the tier timeout. Transport failures, timeouts
and quality misses are recorded on the ExecutionRecord and never raised.
When every tier is exhausted the last tier's emergency protocols fire.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from cascade.errors import (
    AllTiersExhausted,
    AttemptTimeout,
    EmptyRegistryError,
    ExecutionCancelled,
    NoUsableProvidersInTier,
    QualityBelowThreshold,
)
from cascade.events import EngineEventEmitter, EventType, emit_if
from cascade.fallback.history import ExecutionHistory
from cascade.providers.base import ProviderClient
from cascade.providers.health import HealthTracker
from cascade.providers.registry import ProviderRegistry
from cascade.quality.evaluator import HeuristicQualityEvaluator, QualityEvaluator
from cascade.schemas.context import CallerRequest, RequestContext
from cascade.schemas.execution import (
    AttemptOutcome,
    ExecutionAttempt,
    ExecutionRecord,
    FinalResult,
    GenerationResult,
)
from cascade.schemas.provider import EmergencyProtocol, FallbackTier, Provider

logger = logging.getLogger(__name__)

# Trigger name of protocols fired when every tier fails
_ALL_LEVELS_FAILED = "all_levels_failed"

# Callback invoked for each fired emergency protocol; may be sync or async
EmergencyNotifier = Callable[[EmergencyProtocol, ExecutionRecord], Any]


def determine_start_tier(
    registry: ProviderRegistry,
    failure_reason: str,
    original_provider_id: str | None,
) -> int:
    """Pick the rank the escalation starts from.

    A timeout always starts at tier 2, even when the failing provider sits
    in a tier. Otherwise a provider that already belongs to a tier moves
    one tier down (capped at the last). Without tier membership, "cost"
    starts at tier 4 and "quality" or anything else at tier 1. Matching is
    case-insensitive. A rank with no configured tier resolves to the next
    existing rank, or the last one.
    """
    ranks = registry.ranks()
    if not ranks:
        raise EmptyRegistryError("No fallback tiers configured")

    reason = failure_reason.lower()
    current = registry.tier_of(original_provider_id) if original_provider_id else None

    if "timeout" in reason:
        start = 2
    elif current is not None:
        start = min(current + 1, ranks[-1])
    elif "cost" in reason:
        start = 4
    else:
        # "quality" and unclassified failures start at the top
        start = 1

    for rank in ranks:
        if rank >= start:
            return rank
    return ranks[-1]


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000.0


class FallbackOrchestrator:
    """Runs fallback executions across the registry's tiers.

    Every collaborator is injected. Executions are independent and may run
    concurrently; they share only the health tracker, the registry
    topology and the history archive, all of which are lock-protected.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        health: HealthTracker,
        client: ProviderClient,
        evaluator: QualityEvaluator | None = None,
        history: ExecutionHistory | None = None,
        store: Any | None = None,
        emitter: EngineEventEmitter | None = None,
        notifier: EmergencyNotifier | None = None,
        enable_quality_assurance: bool = True,
        default_quality_score: float = 0.8,
        enable_emergency_protocols: bool = True,
    ) -> None:
        self._registry = registry
        self._health = health
        self._client = client
        self._evaluator = evaluator or HeuristicQualityEvaluator()
        self._history = history or ExecutionHistory()
        self._store = store  # ExecutionStore instance (optional)
        self._emitter = emitter
        self._notifier = notifier
        self._qa = enable_quality_assurance
        self._default_quality = default_quality_score
        self._emergency = enable_emergency_protocols
        self._active: dict[str, ExecutionRecord] = {}

    @property
    def history(self) -> ExecutionHistory:
        return self._history

    @property
    def store(self) -> Any | None:
        return self._store

    @store.setter
    def store(self, store: Any | None) -> None:
        self._store = store

    def active_executions(self) -> dict[str, ExecutionRecord]:
        """Copies of the records still in flight, keyed by execution id."""
        return {k: v.model_copy(deep=True) for k, v in self._active.items()}

    async def execute(
        self,
        original_provider_id: str | None,
        request: CallerRequest,
        session_id: str = "",
        failure_reason: str = "",
        *,
        context: RequestContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionRecord:
        """Run one escalation sequence and return its finalized record.

        Provider failures never raise; they are recorded as attempts and
        reflected in ``record.final``.

        Raises:
            EmptyRegistryError: If no tiers are configured.
        """
        start_tier = determine_start_tier(self._registry, failure_reason, original_provider_id)
        execution_id = f"fallback_{uuid.uuid4().hex[:12]}"
        record = ExecutionRecord(
            id=execution_id,
            correlation_id=f"corr_{execution_id}",
            session_id=session_id,
            original_provider_id=original_provider_id,
            original_request=request,
            failure_reason=failure_reason,
            start_tier=start_tier,
        )
        context = context or RequestContext()
        started = time.monotonic()
        self._active[execution_id] = record

        logger.info(
            "Executing fallback %s from tier %d (provider=%s, reason=%r)",
            execution_id, start_tier, original_provider_id or "none", failure_reason,
        )

        try:
            await self._escalate(record, request, context, cancel_event, started)
        finally:
            record.completed_at = datetime.now(UTC)
            record.final.total_time_ms = _elapsed_ms(started)
            self._active.pop(execution_id, None)
            await self._archive(record)

        return record

    async def _escalate(
        self,
        record: ExecutionRecord,
        request: CallerRequest,
        context: RequestContext,
        cancel_event: asyncio.Event | None,
        started: float,
    ) -> None:
        tiers = [t for t in self._registry.tiers() if t.rank >= record.start_tier]

        for index, tier in enumerate(tiers):
            if cancel_event is not None and cancel_event.is_set():
                await self._finish_cancelled(record)
                return

            logger.info("Trying fallback tier %d: %s", tier.rank, tier.name)
            try:
                accepted = await self._run_tier(tier, record, request, context, cancel_event)
            except ExecutionCancelled:
                await self._finish_cancelled(record)
                return
            except NoUsableProvidersInTier as e:
                logger.warning("%s", e)
                accepted = None

            if accepted is not None:
                provider, result, quality = accepted
                record.final = FinalResult(
                    success=True,
                    provider_id=provider.id,
                    fallback_level=tier.rank,
                    quality_score=quality,
                    cost=result.cost,
                    total_time_ms=_elapsed_ms(started),
                    content=result.content,
                )
                logger.info(
                    "Fallback %s succeeded at tier %d with %s (quality=%.2f)",
                    record.id, tier.rank, provider.id, quality,
                )
                await emit_if(
                    self._emitter,
                    EventType.EXECUTION_SUCCEEDED,
                    execution_id=record.id,
                    provider_id=provider.id,
                    fallback_level=tier.rank,
                    quality_score=quality,
                )
                return

            if index + 1 < len(tiers):
                await emit_if(
                    self._emitter,
                    EventType.TIER_ADVANCED,
                    execution_id=record.id,
                    from_tier=tier.rank,
                    to_tier=tiers[index + 1].rank,
                )

        await self._finish_exhausted(record)

    async def _run_tier(
        self,
        tier: FallbackTier,
        record: ExecutionRecord,
        request: CallerRequest,
        context: RequestContext,
        cancel_event: asyncio.Event | None,
    ) -> tuple[Provider, GenerationResult, float] | None:
        """Attempt the tier's candidates; return the accepted response, if any.

        Raises:
            NoUsableProvidersInTier: If every provider is failing or offline.
            ExecutionCancelled: If the cancellation signal fired mid-attempt.
        """
        candidates = [p for p in tier.providers if self._health.is_usable(p.id)]
        if not candidates:
            raise NoUsableProvidersInTier(tier.rank)

        # Stable sort: ties keep the tier's (optimizer-maintained) order
        candidates.sort(key=lambda p: -self._health.quality_of(p))
        limit = min(tier.max_retries, len(candidates))

        for n, provider in enumerate(candidates[:limit], start=1):
            logger.info(
                "Attempting %s (attempt %d/%d, tier %d)",
                provider.id, n, limit, tier.rank,
            )
            accepted = await self._attempt(
                tier, provider, n, record, request, context, cancel_event,
            )
            if accepted is not None:
                return accepted
        return None

    async def _attempt(
        self,
        tier: FallbackTier,
        provider: Provider,
        n: int,
        record: ExecutionRecord,
        request: CallerRequest,
        context: RequestContext,
        cancel_event: asyncio.Event | None,
    ) -> tuple[Provider, GenerationResult, float] | None:
        start = time.monotonic()
        try:
            result = await self._call(provider, request, tier.timeout_seconds, cancel_event)
        except ExecutionCancelled:
            await self._record(record, ExecutionAttempt(
                tier=tier.rank, provider_id=provider.id, attempt=n,
                outcome=AttemptOutcome.CANCELLED, latency_ms=_elapsed_ms(start),
                error="cancelled by caller",
            ))
            raise
        except TimeoutError:
            latency = _elapsed_ms(start)
            error = AttemptTimeout(provider.id, tier.timeout_seconds)
            logger.warning("%s", error)
            await self._record(record, ExecutionAttempt(
                tier=tier.rank, provider_id=provider.id, attempt=n,
                outcome=AttemptOutcome.TIMEOUT, latency_ms=latency, error=str(error),
            ))
            await self._health.update(provider.id, False, latency)
            return None
        except Exception as e:
            latency = _elapsed_ms(start)
            logger.warning("Provider %s failed: %s", provider.id, e)
            await self._record(record, ExecutionAttempt(
                tier=tier.rank, provider_id=provider.id, attempt=n,
                outcome=AttemptOutcome.FAILURE, latency_ms=latency,
                error=str(e) or type(e).__name__,
            ))
            await self._health.update(provider.id, False, latency)
            return None

        latency = _elapsed_ms(start)
        quality, passed, error = await self._gate(result, tier, provider, context, request)

        if not passed:
            logger.warning("%s", error)
            await self._record(record, ExecutionAttempt(
                tier=tier.rank, provider_id=provider.id, attempt=n,
                outcome=AttemptOutcome.QUALITY_FAIL, latency_ms=latency,
                quality_score=quality, cost=result.cost, error=error,
            ))
            await self._health.update(provider.id, True, latency, quality)
            return None

        await self._record(record, ExecutionAttempt(
            tier=tier.rank, provider_id=provider.id, attempt=n,
            outcome=AttemptOutcome.SUCCESS, latency_ms=latency,
            quality_score=quality, cost=result.cost,
        ))
        await self._health.update(provider.id, True, latency, quality)
        return provider, result, quality

    async def _gate(
        self,
        result: GenerationResult,
        tier: FallbackTier,
        provider: Provider,
        context: RequestContext,
        request: CallerRequest,
    ) -> tuple[float | None, bool, str | None]:
        """Run the quality gate; returns (score, passed, error message)."""
        if not self._qa:
            return self._default_quality, True, None
        try:
            assessment = await self._evaluator.assess(
                result.content, context, tier.quality_threshold, request,
            )
        except Exception as e:
            logger.exception("Quality evaluation failed for %s", provider.id)
            return None, False, f"quality evaluation failed: {e}"
        if assessment.passes_threshold:
            return assessment.score, True, None
        error = QualityBelowThreshold(provider.id, assessment.score, tier.quality_threshold)
        return assessment.score, False, str(error)

    async def _call(
        self,
        provider: Provider,
        request: CallerRequest,
        timeout: float,
        cancel_event: asyncio.Event | None,
    ) -> GenerationResult:
        """One generate() call bounded by ``timeout`` and raced against cancellation."""
        call = asyncio.ensure_future(asyncio.wait_for(
            self._client.generate(provider, request, timeout=timeout), timeout,
        ))
        if cancel_event is None:
            return await call

        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()

        if call in done:
            return call.result()

        call.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await call
        raise ExecutionCancelled(f"Attempt on {provider.id} cancelled by caller")

    async def _record(self, record: ExecutionRecord, attempt: ExecutionAttempt) -> None:
        record.attempts.append(attempt)
        await emit_if(
            self._emitter,
            EventType.ATTEMPT_RECORDED,
            execution_id=record.id,
            tier=attempt.tier,
            provider_id=attempt.provider_id,
            attempt=attempt.attempt,
            outcome=attempt.outcome.value,
            latency_ms=attempt.latency_ms,
            quality_score=attempt.quality_score,
        )

    async def _finish_cancelled(self, record: ExecutionRecord) -> None:
        record.final = FinalResult(cancelled=True)
        logger.info("Fallback %s cancelled after %d attempts", record.id, len(record.attempts))
        await emit_if(
            self._emitter,
            EventType.EXECUTION_CANCELLED,
            execution_id=record.id,
            attempts=len(record.attempts),
        )

    async def _finish_exhausted(self, record: ExecutionRecord) -> None:
        record.final = FinalResult(exhausted=True)
        error = AllTiersExhausted(
            f"All fallback tiers exhausted for {record.id} "
            f"after {len(record.attempts)} attempts"
        )
        logger.error("%s", error)
        if self._emergency:
            await self._fire_emergency_protocols(record)
        await emit_if(
            self._emitter,
            EventType.EXECUTION_EXHAUSTED,
            execution_id=record.id,
            attempts=len(record.attempts),
        )

    async def _fire_emergency_protocols(self, record: ExecutionRecord) -> None:
        tiers = self._registry.tiers()
        protocols = [
            p for p in tiers[-1].emergency_protocols if p.trigger == _ALL_LEVELS_FAILED
        ]
        for protocol in protocols:
            logger.critical(
                "Emergency protocol %s triggered for %s: %s",
                protocol.id, record.id, protocol.description or protocol.name,
            )
            await emit_if(
                self._emitter,
                EventType.EMERGENCY_PROTOCOL_TRIGGERED,
                execution_id=record.id,
                protocol_id=protocol.id,
                escalation_level=protocol.escalation_level,
                actions=[a.type for a in sorted(protocol.actions, key=lambda a: a.execution_order)],
            )
            if self._notifier is not None and protocol.notification_required:
                try:
                    result = self._notifier(protocol, record)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception("Emergency notifier failed for %s", protocol.id)

    async def _archive(self, record: ExecutionRecord) -> None:
        await self._history.add(record)
        if self._store is None:
            return
        # The persisted archive follows the same retention window as history
        try:
            await self._store.save_record(record)
            await self._store.prune_before(datetime.now(UTC) - self._history.retention)
        except Exception:
            logger.exception("Failed to persist execution %s", record.id)
