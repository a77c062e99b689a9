"""Provider health tracking for automatic fallback.

HealthTracker keeps one rolling ProviderHealth record per provider,
updated with an exponential moving average after every live attempt and
every periodic probe. A provider that fails ``circuit_breaker_threshold``
times in a row is marked failing and skipped by the orchestrator until
a chain of successes restores it.

HealthProber runs the periodic probe loop independently of live traffic.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import UTC, datetime

from cascade.events import EngineEventEmitter, EventType, emit_if
from cascade.providers.base import ProviderClient
from cascade.providers.registry import ProviderRegistry
from cascade.schemas.context import CallerRequest
from cascade.schemas.health import HealthStatus, ProviderHealth
from cascade.schemas.provider import Provider

logger = logging.getLogger(__name__)

# Status thresholds
_HEALTHY_AVAILABILITY = 0.95
_HEALTHY_ERROR_RATE = 0.05
_DEGRADED_AVAILABILITY = 0.80

_PROBE_REQUEST = CallerRequest(
    prompt='Health check: respond with "OK"',
    max_tokens=10,
    temperature=0.0,
)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


class HealthTracker:
    """Concurrency-safe table of per-provider health records.

    Each provider's read-modify-write runs under its own asyncio.Lock, so
    updates for one provider apply in order without blocking updates or
    reads for any other provider. Records are replaced, never mutated in
    place, which keeps readers on a consistent snapshot.
    """

    def __init__(
        self,
        alpha: float = 0.1,
        circuit_breaker_threshold: int = 5,
        default_quality: float = 0.8,
        emitter: EngineEventEmitter | None = None,
    ) -> None:
        self._alpha = alpha
        self._threshold = circuit_breaker_threshold
        self._default_quality = default_quality
        self._emitter = emitter
        self._records: dict[str, ProviderHealth] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def circuit_breaker_threshold(self) -> int:
        return self._threshold

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        return self._locks.setdefault(provider_id, asyncio.Lock())

    def _new_record(
        self, provider_id: str, latency_ms: float, quality_score: float | None,
    ) -> ProviderHealth:
        return ProviderHealth(
            provider_id=provider_id,
            average_latency_ms=latency_ms,
            quality_score=quality_score if quality_score is not None else self._default_quality,
        )

    async def update(
        self,
        provider_id: str,
        success: bool,
        latency_ms: float,
        quality_score: float | None = None,
    ) -> ProviderHealth:
        """Fold one observed outcome into the provider's health record.

        Returns a copy of the updated record.
        """
        async with self._lock_for(provider_id):
            current = self._records.get(provider_id)
            if current is None:
                current = self._new_record(provider_id, latency_ms, quality_score)
            previous = current.status
            health = current.model_copy()
            a = self._alpha

            if success:
                health.consecutive_failures = 0
                health.availability = _clamp(health.availability + a * (1 - health.availability))
                health.error_rate = _clamp(health.error_rate - a * health.error_rate)
            else:
                health.consecutive_failures += 1
                health.availability = _clamp(health.availability - a * health.availability)
                health.error_rate = _clamp(health.error_rate + a * (1 - health.error_rate))

            if quality_score is not None:
                health.quality_score = _clamp(
                    health.quality_score * (1 - a) + quality_score * a
                )
            health.average_latency_ms = max(
                health.average_latency_ms * (1 - a) + latency_ms * a, 0.0,
            )
            health.total_checks += 1
            health.last_check = datetime.now(UTC)

            self._apply_status(health, previous)
            self._records[provider_id] = health

        if health.status != previous:
            await self._status_changed(health, previous)
        return health.model_copy()

    def _apply_status(self, health: ProviderHealth, previous: HealthStatus) -> None:
        """Derive the status after an update (hysteresis keeps the prior status)."""
        if previous == HealthStatus.OFFLINE:
            return

        if health.consecutive_failures >= self._threshold:
            health.status = HealthStatus.FAILING
            if previous != HealthStatus.FAILING or health.recovery_started_at is None:
                health.recovery_started_at = datetime.now(UTC)
        elif (
            health.availability >= _HEALTHY_AVAILABILITY
            and health.error_rate <= _HEALTHY_ERROR_RATE
        ):
            health.status = HealthStatus.HEALTHY
            if health.recovery_started_at is not None:
                elapsed = datetime.now(UTC) - health.recovery_started_at
                logger.info(
                    "Provider %s recovered after %.1fs",
                    health.provider_id, elapsed.total_seconds(),
                )
                health.recovery_started_at = None
        elif health.availability < _DEGRADED_AVAILABILITY and previous != HealthStatus.FAILING:
            health.status = HealthStatus.DEGRADED

    async def _status_changed(self, health: ProviderHealth, previous: HealthStatus) -> None:
        log = logger.warning if health.status == HealthStatus.FAILING else logger.info
        log(
            "Provider %s health %s -> %s (availability=%.2f, error_rate=%.2f)",
            health.provider_id, previous.value, health.status.value,
            health.availability, health.error_rate,
        )
        await emit_if(
            self._emitter,
            EventType.PROVIDER_HEALTH_CHANGED,
            provider_id=health.provider_id,
            previous=previous.value,
            status=health.status.value,
            availability=health.availability,
            error_rate=health.error_rate,
        )

    async def record_feedback(self, provider_id: str, quality_score: float) -> ProviderHealth:
        """Fold a caller-observed quality signal into the quality EMA only."""
        async with self._lock_for(provider_id):
            current = self._records.get(provider_id) or self._new_record(
                provider_id, 0.0, None,
            )
            health = current.model_copy()
            health.quality_score = _clamp(
                health.quality_score * (1 - self._alpha) + quality_score * self._alpha
            )
            self._records[provider_id] = health
        return health.model_copy()

    async def set_status(self, provider_id: str, status: HealthStatus) -> None:
        """Administratively force a provider's status (e.g. offline)."""
        async with self._lock_for(provider_id):
            current = self._records.get(provider_id) or self._new_record(
                provider_id, 0.0, None,
            )
            previous = current.status
            self._records[provider_id] = current.model_copy(update={"status": status})
        if status != previous:
            await self._status_changed(self._records[provider_id], previous)

    def get(self, provider_id: str) -> ProviderHealth | None:
        """Copy of one provider's record, or None if never observed."""
        record = self._records.get(provider_id)
        return record.model_copy() if record else None

    def is_usable(self, provider_id: str) -> bool:
        """True unless the provider is failing or offline."""
        record = self._records.get(provider_id)
        if record is None:
            return True
        return record.status not in (HealthStatus.FAILING, HealthStatus.OFFLINE)

    def quality_of(self, provider: Provider) -> float:
        """Tracked quality EMA, or the declared baseline for unseen providers."""
        record = self._records.get(provider.id)
        return record.quality_score if record else provider.performance.quality_score

    def snapshot(self) -> dict[str, ProviderHealth]:
        """Deep copies of every record, safe to hand to analytics consumers."""
        return {pid: rec.model_copy(deep=True) for pid, rec in self._records.items()}


class HealthProber:
    """Periodically probes every registry provider with a canned request.

    The loop runs as a background task; probe outcomes are folded into the
    HealthTracker exactly like live traffic.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tracker: HealthTracker,
        client: ProviderClient,
        interval: float = 30.0,
        timeout: float = 10.0,
        emitter: EngineEventEmitter | None = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._client = client
        self._interval = interval
        self._timeout = timeout
        self._emitter = emitter
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def probe_provider(self, provider: Provider) -> bool:
        """Probe one provider and fold the outcome into the tracker."""
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._client.generate(provider, _PROBE_REQUEST, timeout=self._timeout),
                self._timeout,
            )
            success = "ok" in result.content.lower()
        except Exception as e:
            logger.debug("Health check failed for %s: %s", provider.id, e)
            success = False
        latency_ms = (time.monotonic() - start) * 1000.0
        await self._tracker.update(provider.id, success, latency_ms)
        return success

    async def probe_all(self) -> dict[str, bool]:
        """Probe every provider concurrently; returns provider id -> success."""
        providers = self._registry.all_providers()
        outcomes = await asyncio.gather(*(self.probe_provider(p) for p in providers))
        results = {p.id: ok for p, ok in zip(providers, outcomes)}

        snapshot = self._tracker.snapshot()
        healthy = sum(1 for h in snapshot.values() if h.status == HealthStatus.HEALTHY)
        logger.info("Health checks completed: %d/%d providers healthy", healthy, len(providers))
        await emit_if(
            self._emitter,
            EventType.HEALTH_CHECKS_COMPLETED,
            total_providers=len(providers),
            healthy_providers=healthy,
            results=results,
        )
        return results

    def start(self) -> None:
        """Start the background probe loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cascade-health-prober")

    async def stop(self) -> None:
        """Cancel the probe loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.probe_all()
            except Exception:
                logger.exception("Health probe pass failed")
            await asyncio.sleep(self._interval)
