"""Tests for cascade.engine: the CascadeEngine facade."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cascade.engine import CascadeEngine
from cascade.errors import EmptyRegistryError, UnknownExecutionError
from cascade.events import EventType
from cascade.providers.base import ProviderClient
from cascade.providers.registry import ProviderRegistry
from cascade.schemas.context import CallerRequest, UserFeedback
from cascade.schemas.engine import EngineConfig
from cascade.schemas.execution import ExecutionRecord, GenerationResult
from cascade.schemas.health import HealthStatus
from cascade.schemas.provider import Capabilities, FallbackTier, Provider
from cascade.schemas.selection import SelectionStrategy

# ── Helpers ───────────────────────────────────────────────────────


class FakeClient(ProviderClient):
    """Fails for the ids in ``failing``, answers for everything else."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[str] = []

    async def generate(self, provider, request, *, timeout):
        self.calls.append(provider.id)
        if provider.id in self.failing:
            raise ConnectionError("connection refused")
        return GenerationResult(
            content=f"answer from {provider.id}",
            prompt_tokens=20, completion_tokens=10, cost=0.002,
        )


def _make_provider(provider_id: str, cost: float = 1.0) -> Provider:
    return Provider(
        id=provider_id,
        name=provider_id,
        model=f"test/{provider_id}",
        cost_input=cost,
        cost_output=cost,
        capabilities=Capabilities(coding=80, creative=80, analytical=80, reasoning=80),
    )


def _make_registry() -> ProviderRegistry:
    return ProviderRegistry([
        FallbackTier(rank=1, name="Primary", providers=[_make_provider("alpha")]),
        FallbackTier(rank=2, name="Backup", providers=[_make_provider("beta", 0.1)]),
    ])


def _make_engine(client: ProviderClient | None = None, **config) -> CascadeEngine:
    defaults = {"enable_quality_assurance": False}
    defaults.update(config)
    return CascadeEngine(
        _make_registry(), client or FakeClient(), config=EngineConfig(**defaults),
    )


def _request() -> CallerRequest:
    return CallerRequest(prompt="Write a function that parses ISO dates")


# ── execute ───────────────────────────────────────────────────────


class TestExecute:
    @pytest.mark.asyncio()
    async def test_escalates_to_next_tier(self):
        client = FakeClient(failing={"alpha"})
        engine = _make_engine(client)

        record = await engine.execute(None, _request(), session_id="s-1")

        assert record.success
        assert record.final.provider_id == "beta"
        assert record.final.fallback_level == 2
        assert record.final.quality_score == pytest.approx(0.8)
        assert record.session_id == "s-1"
        assert engine.history.get(record.id) is not None

    @pytest.mark.asyncio()
    async def test_failing_provider_moves_start_down(self):
        client = FakeClient()
        engine = _make_engine(client)
        record = await engine.execute("alpha", _request(), failure_reason="server error")
        assert record.start_tier == 2
        assert client.calls[0] == "beta"

    @pytest.mark.asyncio()
    async def test_empty_registry_raises(self):
        engine = CascadeEngine(ProviderRegistry([]), FakeClient())
        with pytest.raises(EmptyRegistryError):
            await engine.execute(None, _request())


# ── select ────────────────────────────────────────────────────────


class TestSelect:
    @pytest.mark.asyncio()
    async def test_select_does_not_call_provider(self):
        client = FakeClient()
        engine = _make_engine(client)

        result = await engine.select(_request(), strategy=SelectionStrategy.COST_OPTIMIZED)

        assert result.chosen.id in {"alpha", "beta"}
        assert client.calls == []

    @pytest.mark.asyncio()
    async def test_select_empty_registry(self):
        engine = CascadeEngine(ProviderRegistry([]), FakeClient())
        with pytest.raises(EmptyRegistryError):
            await engine.select(_request())


# ── report_feedback ───────────────────────────────────────────────


class TestFeedback:
    @pytest.mark.asyncio()
    async def test_feedback_updates_learned_signals(self):
        engine = _make_engine()
        record = await engine.execute(None, _request())
        before = engine.health.get("alpha").quality_score

        await engine.report_feedback(record.id, UserFeedback(rating=5))

        assert engine.health.get("alpha").quality_score > before
        assert engine.ledger.get("alpha").sample_size == 1
        assert engine.learner.feedback_count == 1
        assert engine.emitter.history[-1].type == EventType.FEEDBACK_PROCESSED

    @pytest.mark.asyncio()
    async def test_unknown_execution_raises(self):
        engine = _make_engine()
        with pytest.raises(UnknownExecutionError):
            await engine.report_feedback("fallback_nope", UserFeedback(rating=3))

    @pytest.mark.asyncio()
    async def test_feedback_on_failed_run_is_ignored(self, caplog):
        engine = _make_engine(FakeClient(failing={"alpha", "beta"}))
        record = await engine.execute(None, _request())
        assert not record.success

        await engine.report_feedback(record.id, UserFeedback(rating=1))

        assert engine.learner.feedback_count == 0
        assert "feedback ignored" in caplog.text


# ── get_analytics ─────────────────────────────────────────────────


class TestAnalytics:
    @pytest.mark.asyncio()
    async def test_empty_history(self):
        analytics = _make_engine().get_analytics()
        assert analytics.total_executions == 0
        assert analytics.success_rate == 0.0
        assert analytics.recent_trends.most_used_level == 1

    @pytest.mark.asyncio()
    async def test_aggregates_runs(self):
        client = FakeClient(failing={"alpha"})
        engine = _make_engine(client)
        await engine.execute(None, _request())
        await engine.execute(None, _request())

        analytics = engine.get_analytics()

        assert analytics.total_executions == 2
        assert analytics.success_rate == 1.0
        assert analytics.average_fallback_level == 2.0
        assert analytics.tier_success_rates == {1: 0.0, 2: 1.0}
        assert analytics.recent_trends.executions_last_24h == 2
        assert analytics.recent_trends.most_used_level == 2
        assert analytics.provider_health_summary["beta"] == HealthStatus.HEALTHY
        assert analytics.active_executions == 0


# ── Lifecycle ─────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_persistence_opened_and_closed(self, tmp_path):
        db_path = tmp_path / "executions.db"
        engine = _make_engine(
            persist_executions=True,
            execution_db_path=str(db_path),
            enable_health_monitoring=False,
            enable_optimizer=False,
        )

        async with engine:
            assert engine.orchestrator.store is not None
            record = await engine.execute(None, _request())
            stored = await engine.orchestrator.store.get_record(record.id)
            assert stored is not None
            assert stored.final.provider_id == "alpha"

        assert engine.orchestrator.store is None
        assert db_path.exists()

    @pytest.mark.asyncio()
    async def test_background_loops_start_and_stop(self):
        engine = _make_engine(health_check_interval=60, optimizer_interval=60)
        await engine.start()
        assert engine.prober.running
        assert engine.optimizer.running
        await engine.stop()
        assert not engine.prober.running
        assert not engine.optimizer.running

    def test_from_config_loads_packaged_tiers(self):
        engine = CascadeEngine.from_config(client=FakeClient())
        assert len(engine.registry.ranks()) == 5
        assert engine.config.default_strategy == SelectionStrategy.HYBRID

    @pytest.mark.asyncio()
    async def test_persisted_archive_pruned_on_insert(self, tmp_path):
        engine = _make_engine(
            persist_executions=True,
            execution_db_path=str(tmp_path / "executions.db"),
            history_retention_days=30,
            enable_health_monitoring=False,
            enable_optimizer=False,
        )
        stale = ExecutionRecord(
            id="fallback_stale001",
            correlation_id="fallback_stale001",
            original_request=_request(),
            started_at=datetime.now(UTC) - timedelta(days=45),
        )

        async with engine:
            store = engine.orchestrator.store
            await store.save_record(stale)
            assert await store.get_record(stale.id) is not None

            record = await engine.execute(None, _request())

            assert await store.get_record(stale.id) is None
            assert await store.get_record(record.id) is not None
            with pytest.raises(UnknownExecutionError):
                await engine.report_feedback(stale.id, UserFeedback(rating=4))
