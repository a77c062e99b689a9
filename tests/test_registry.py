"""Tests for cascade.providers.registry: tier topology and TOML loading."""

from __future__ import annotations

import logging

import pytest

from cascade.errors import ConfigurationError, UnknownProviderError
from cascade.providers.registry import (
    ProviderRegistry,
    load_engine_config,
    load_registry,
)
from cascade.schemas.engine import EngineConfig
from cascade.schemas.provider import FallbackTier, Provider
from cascade.schemas.selection import SelectionStrategy


def _make_provider(provider_id: str) -> Provider:
    return Provider(id=provider_id, name=provider_id.upper(), model=f"test/{provider_id}")


def _make_tier(rank: int, ids: list[str]) -> FallbackTier:
    return FallbackTier(
        rank=rank,
        name=f"Tier {rank}",
        providers=[_make_provider(pid) for pid in ids],
        quality_threshold=0.5,
        max_retries=2,
        timeout_seconds=10,
    )


def _make_registry() -> ProviderRegistry:
    return ProviderRegistry([
        _make_tier(2, ["c"]),
        _make_tier(1, ["a", "b"]),
        _make_tier(4, ["d"]),
    ])


# ── ProviderRegistry ──────────────────────────────────────────────


class TestProviderRegistry:
    def test_tiers_sorted_by_rank(self):
        registry = _make_registry()
        assert [t.rank for t in registry.tiers()] == [1, 2, 4]
        assert registry.ranks() == [1, 2, 4]

    def test_providers_stamped_with_tier(self):
        registry = _make_registry()
        assert registry.find_provider("c").tier == 2
        assert registry.tier_of("d") == 4

    def test_len_counts_providers(self):
        assert len(_make_registry()) == 4

    def test_unknown_lookups(self):
        registry = _make_registry()
        assert registry.find_provider("zzz") is None
        assert registry.tier_of("zzz") is None
        assert registry.providers_in(3) == []
        assert registry.get_tier(3) is None

    def test_providers_in_returns_copy(self):
        registry = _make_registry()
        providers = registry.providers_in(1)
        providers.clear()
        assert [p.id for p in registry.providers_in(1)] == ["a", "b"]

    def test_provider_ids_in_tier_order(self):
        assert _make_registry().provider_ids() == ["a", "b", "c", "d"]

    def test_duplicate_ranks_rejected(self):
        with pytest.raises(ConfigurationError):
            ProviderRegistry([_make_tier(1, ["a"]), _make_tier(1, ["b"])])

    def test_duplicate_ids_first_match_wins(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cascade.providers.registry"):
            registry = ProviderRegistry([_make_tier(1, ["a"]), _make_tier(3, ["a", "b"])])
        assert registry.tier_of("a") == 1
        assert registry.provider_ids() == ["a", "b"]
        assert "appears in tiers 1 and 3" in caplog.text

    def test_unknown_domain_provider_rejected(self):
        with pytest.raises(UnknownProviderError):
            ProviderRegistry([_make_tier(1, ["a"])], domain_mappings={"x": ["nope"]})

    def test_domain_mappings_copied(self):
        registry = ProviderRegistry([_make_tier(1, ["a"])], domain_mappings={"x": ["a"]})
        registry.domain_mappings["x"].append("b")
        assert registry.domain_mappings == {"x": ["a"]}


class TestReorder:
    @pytest.mark.asyncio()
    async def test_reorder_changes_iteration_order(self):
        registry = _make_registry()
        await registry.reorder(1, ["b", "a"])
        assert [p.id for p in registry.providers_in(1)] == ["b", "a"]
        assert registry.tier_of("a") == 1

    @pytest.mark.asyncio()
    async def test_reorder_rejects_membership_change(self):
        registry = _make_registry()
        with pytest.raises(ValueError):
            await registry.reorder(1, ["a", "c"])
        with pytest.raises(ValueError):
            await registry.reorder(1, ["a"])

    @pytest.mark.asyncio()
    async def test_reorder_unknown_tier(self):
        with pytest.raises(KeyError):
            await _make_registry().reorder(9, [])

    @pytest.mark.asyncio()
    async def test_earlier_snapshot_unchanged(self):
        registry = _make_registry()
        before = registry.tiers()
        await registry.reorder(1, ["b", "a"])
        assert [p.id for p in before[0].providers] == ["a", "b"]


# ── Loaders ───────────────────────────────────────────────────────


class TestLoadRegistry:
    def test_default_tiers(self):
        registry = load_registry()
        assert registry.ranks() == [1, 2, 3, 4, 5]
        assert len(registry) == 6
        assert registry.tier_of("anthropic/claude-3.5-sonnet") == 1
        assert registry.tier_of("local/emergency-model") == 5

    def test_default_thresholds_descend(self):
        thresholds = [t.quality_threshold for t in load_registry().tiers()]
        assert thresholds == sorted(thresholds, reverse=True)

    def test_last_tier_has_emergency_protocol(self):
        last = load_registry().tiers()[-1]
        assert [p.trigger for p in last.emergency_protocols] == ["all_levels_failed"]

    def test_default_domains(self):
        mappings = load_registry().domain_mappings
        assert "cohere/command-a-03-2025" in mappings["data-analysis"]
        assert "software-development" in mappings

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_registry(tmp_path / "missing.toml")

    def test_no_tiers(self, tmp_path):
        path = tmp_path / "tiers.toml"
        path.write_text('[domains]\nx = []\n')
        with pytest.raises(ConfigurationError):
            load_registry(path)

    def test_invalid_tier(self, tmp_path):
        path = tmp_path / "tiers.toml"
        path.write_text('[[tiers]]\nrank = 1\nname = "T"\n')
        with pytest.raises(ConfigurationError):
            load_registry(path)

    def test_unknown_domain_provider(self, tmp_path):
        path = tmp_path / "tiers.toml"
        path.write_text(
            '[[tiers]]\nrank = 1\nname = "T"\nquality_threshold = 0.5\n'
            'max_retries = 1\ntimeout_seconds = 5\n\n'
            '[[tiers.providers]]\nid = "a"\nname = "A"\nmodel = "m"\n\n'
            '[domains]\nx = ["b"]\n'
        )
        with pytest.raises(UnknownProviderError):
            load_registry(path)


class TestLoadEngineConfig:
    def test_defaults(self):
        config = load_engine_config()
        assert config == EngineConfig()
        assert config.default_strategy == SelectionStrategy.HYBRID

    def test_overrides(self, tmp_path):
        path = tmp_path / "defaults.toml"
        path.write_text('[engine]\ncircuit_breaker_threshold = 3\ndefault_strategy = "adaptive"\n')
        config = load_engine_config(path)
        assert config.circuit_breaker_threshold == 3
        assert config.default_strategy == SelectionStrategy.ADAPTIVE

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "defaults.toml"
        path.write_text('[engine]\nhealth_alpha = 2.0\n')
        with pytest.raises(ConfigurationError):
            load_engine_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "missing.toml")
