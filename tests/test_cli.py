"""Tests for the Cascade CLI.

Covers --version, --help, the tiers/select/run/probe commands and the
history sub-commands via CliRunner. Engines are built over a scripted
client so no command reaches a real provider.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import patch

from typer.testing import CliRunner

from cascade import __version__
from cascade.cli import app
from cascade.engine import CascadeEngine
from cascade.persistence.database import close_db, init_db
from cascade.persistence.store import ExecutionStore
from cascade.providers.base import ProviderClient
from cascade.providers.registry import ProviderRegistry
from cascade.schemas.context import CallerRequest
from cascade.schemas.engine import EngineConfig
from cascade.schemas.execution import (
    AttemptOutcome,
    ExecutionAttempt,
    ExecutionRecord,
    FinalResult,
    GenerationResult,
)
from cascade.schemas.provider import Capabilities, FallbackTier, Provider

# NO_COLOR=1 keeps Rich from splitting option names with ANSI codes.
# COLUMNS=200 prevents wrapping that could split a value across lines.
runner = CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})

_BUILD_ENGINE = "cascade.cli._build_engine"
_LOAD_CONFIG = "cascade.cli._load_config"


# ── Factories ──────────────────────────────────────────────────────


class _EchoClient(ProviderClient):
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()

    async def generate(self, provider, request, *, timeout):
        if provider.id in self.failing:
            raise ConnectionError("connection refused")
        return GenerationResult(content=f"ok from {provider.id}", cost=0.001)


def _make_provider(provider_id: str, cost: float = 0.0) -> Provider:
    return Provider(
        id=provider_id,
        name=provider_id.title(),
        model=f"test/{provider_id}",
        cost_input=cost,
        capabilities=Capabilities(coding=80, creative=80, analytical=80, reasoning=80),
    )


def _make_engine(failing: set[str] | None = None) -> CascadeEngine:
    registry = ProviderRegistry([
        FallbackTier(rank=1, name="Primary", providers=[_make_provider("alpha", 2.0)]),
        FallbackTier(rank=2, name="Backup", providers=[_make_provider("beta")]),
    ])
    config = EngineConfig(
        enable_quality_assurance=False,
        enable_health_monitoring=False,
        enable_optimizer=False,
    )
    return CascadeEngine(registry, _EchoClient(failing), config=config)


def _make_record(execution_id: str, success: bool = True) -> ExecutionRecord:
    return ExecutionRecord(
        id=execution_id,
        correlation_id=f"corr_{execution_id}",
        original_request=CallerRequest(prompt="Draft the release notes"),
        failure_reason="timeout",
        start_tier=2,
        attempts=[
            ExecutionAttempt(
                tier=2, provider_id="beta", attempt=1,
                outcome=AttemptOutcome.SUCCESS if success else AttemptOutcome.FAILURE,
                latency_ms=640.0,
            ),
        ],
        final=FinalResult(
            success=success,
            provider_id="beta" if success else None,
            fallback_level=2 if success else 0,
            exhausted=not success,
        ),
        started_at=datetime(2026, 3, 2, 12, 0, tzinfo=UTC),
    )


def _seed_db(db_path: str, *records: ExecutionRecord) -> None:
    async def _seed():
        db = await init_db(db_path)
        store = ExecutionStore(db)
        for record in records:
            await store.save_record(record)
        await close_db(db)

    asyncio.run(_seed())


# ── Top level ──────────────────────────────────────────────────────


class TestTopLevel:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"cascade {__version__}" in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "tiers" in result.output
        assert "history" in result.output

    def test_run_help(self):
        result = runner.invoke(app, ["run", "--help"])
        assert result.exit_code == 0
        assert "--failure-reason" in result.output
        assert "--original-provider" in result.output


# ── tiers ──────────────────────────────────────────────────────────


class TestTiers:
    def test_lists_packaged_tiers(self):
        result = runner.invoke(app, ["tiers"])
        assert result.exit_code == 0
        assert "Tier 1" in result.output
        assert "Tier 5" in result.output
        assert "local/emergency-model" in result.output
        assert "6 providers across 5 tiers" in result.output


# ── select / run / probe ───────────────────────────────────────────


class TestSelect:
    def test_cost_optimized_selection(self):
        with patch(_BUILD_ENGINE, return_value=_make_engine()):
            result = runner.invoke(
                app, ["select", "Summarize this memo", "--strategy", "cost_optimized"],
            )
        assert result.exit_code == 0
        assert "Selection (cost_optimized)" in result.output
        assert "beta" in result.output


class TestRun:
    def test_success_after_fallback(self):
        with patch(_BUILD_ENGINE, return_value=_make_engine(failing={"alpha"})):
            result = runner.invoke(app, ["run", "Draft the release notes"])
        assert result.exit_code == 0
        assert "OK (tier 2)" in result.output
        assert "ok from beta" in result.output
        assert "failure" in result.output

    def test_exhausted_exits_nonzero(self):
        with patch(_BUILD_ENGINE, return_value=_make_engine(failing={"alpha", "beta"})):
            result = runner.invoke(app, ["run", "Draft the release notes"])
        assert result.exit_code == 1
        assert "EXHAUSTED" in result.output

    def test_failure_reason_forwarded(self):
        with patch(_BUILD_ENGINE, return_value=_make_engine()):
            result = runner.invoke(
                app, ["run", "Draft the release notes", "-p", "alpha", "-r", "timeout"],
            )
        assert result.exit_code == 0
        assert "OK (tier 2)" in result.output


class TestProbe:
    def test_probe_table(self):
        with patch(_BUILD_ENGINE, return_value=_make_engine(failing={"beta"})):
            result = runner.invoke(app, ["probe"])
        assert result.exit_code == 0
        assert "Health Probe" in result.output
        assert "1/2 providers responded" in result.output


# ── history ────────────────────────────────────────────────────────


class TestHistory:
    def test_list_empty(self, tmp_path):
        config = EngineConfig(execution_db_path=str(tmp_path / "exec.db"))
        with patch(_LOAD_CONFIG, return_value=config):
            result = runner.invoke(app, ["history", "list"])
        assert result.exit_code == 0
        assert "No executions found" in result.output

    def test_list_and_filter(self, tmp_path):
        db_path = str(tmp_path / "exec.db")
        _seed_db(db_path, _make_record("fallback_good0001"), _make_record("fallback_bad00001", False))
        config = EngineConfig(execution_db_path=db_path)

        with patch(_LOAD_CONFIG, return_value=config):
            result = runner.invoke(app, ["history", "list"])
            failed = runner.invoke(app, ["history", "list", "--failed"])

        assert result.exit_code == 0
        assert "fallback_good0001" in result.output
        assert "fallback_bad00001" in result.output
        assert "fallback_good0001" not in failed.output
        assert "EXHAUSTED" in failed.output

    def test_show_by_prefix(self, tmp_path):
        db_path = str(tmp_path / "exec.db")
        _seed_db(db_path, _make_record("fallback_good0001"))
        config = EngineConfig(execution_db_path=db_path)

        with patch(_LOAD_CONFIG, return_value=config):
            result = runner.invoke(app, ["history", "show", "fallback_good"])

        assert result.exit_code == 0
        assert "Execution: fallback_good0001" in result.output
        assert "Draft the release notes" in result.output
        assert "Attempts" in result.output

    def test_show_missing(self, tmp_path):
        config = EngineConfig(execution_db_path=str(tmp_path / "exec.db"))
        with patch(_LOAD_CONFIG, return_value=config):
            result = runner.invoke(app, ["history", "show", "nope1234"])
        assert result.exit_code == 1
        assert "Execution not found" in result.output
