"""Provider registry and TOML configuration loader.

Loads the tiered provider topology from tiers.toml and engine defaults
from defaults.toml. The registry holds the fixed tier -> provider layout;
only the Strategy Optimizer may re-order providers inside a tier.
"""

from __future__ import annotations

import asyncio
import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError

from cascade.errors import ConfigurationError, UnknownProviderError
from cascade.schemas.engine import EngineConfig
from cascade.schemas.provider import FallbackTier, Provider

logger = logging.getLogger(__name__)

# Default config directory relative to the cascade package
_CONFIG_DIR = Path(__file__).parent.parent / "config"


class ProviderRegistry:
    """Ordered catalog of fallback tiers and their providers.

    Reads are served from immutable snapshots; ``reorder`` swaps in a new
    tier object under a lock, so concurrent readers never observe a
    half-updated provider list.
    """

    def __init__(
        self,
        tiers: list[FallbackTier],
        domain_mappings: dict[str, list[str]] | None = None,
    ) -> None:
        ranks = [t.rank for t in tiers]
        if len(ranks) != len(set(ranks)):
            raise ConfigurationError(f"Duplicate tier ranks in {sorted(ranks)}")

        self._tiers: dict[int, FallbackTier] = {}
        for tier in sorted(tiers, key=lambda t: t.rank):
            stamped = [p.model_copy(update={"tier": tier.rank}) for p in tier.providers]
            self._tiers[tier.rank] = tier.model_copy(update={"providers": stamped})

        self._warn_duplicates()
        self._domain_mappings = dict(domain_mappings or {})
        for domain, ids in self._domain_mappings.items():
            for provider_id in ids:
                if self.find_provider(provider_id) is None:
                    logger.error("Domain %s references unknown provider %s", domain, provider_id)
                    raise UnknownProviderError(provider_id)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return sum(len(t.providers) for t in self._tiers.values())

    @property
    def domain_mappings(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._domain_mappings.items()}

    def tiers(self) -> list[FallbackTier]:
        """All tiers in ascending rank order."""
        return [self._tiers[rank] for rank in sorted(self._tiers)]

    def ranks(self) -> list[int]:
        return sorted(self._tiers)

    def get_tier(self, rank: int) -> FallbackTier | None:
        return self._tiers.get(rank)

    def providers_in(self, rank: int) -> list[Provider]:
        """Providers of one tier in current iteration order (empty if unknown)."""
        tier = self._tiers.get(rank)
        return list(tier.providers) if tier else []

    def find_provider(self, provider_id: str) -> Provider | None:
        """Find a provider by id across all tiers; the first match wins."""
        for tier in self.tiers():
            for provider in tier.providers:
                if provider.id == provider_id:
                    return provider
        return None

    def tier_of(self, provider_id: str) -> int | None:
        """Rank of the first tier containing ``provider_id``."""
        provider = self.find_provider(provider_id)
        return provider.tier if provider else None

    def all_providers(self) -> list[Provider]:
        """Every provider, tier order first, duplicates collapsed to the first."""
        seen: set[str] = set()
        providers: list[Provider] = []
        for tier in self.tiers():
            for provider in tier.providers:
                if provider.id not in seen:
                    seen.add(provider.id)
                    providers.append(provider)
        return providers

    def provider_ids(self) -> list[str]:
        return [p.id for p in self.all_providers()]

    async def reorder(self, rank: int, provider_ids: list[str]) -> None:
        """Replace the iteration order of one tier.

        Raises:
            KeyError: If the tier does not exist.
            ValueError: If ``provider_ids`` is not a permutation of the
                tier's current membership.
        """
        async with self._lock:
            tier = self._tiers[rank]
            current = [p.id for p in tier.providers]
            if sorted(current) != sorted(provider_ids):
                raise ValueError(
                    f"Re-ordering tier {rank} must keep its membership "
                    f"({current} != {provider_ids})"
                )
            by_id = {p.id: p for p in tier.providers}
            reordered = [by_id[pid] for pid in provider_ids]
            self._tiers[rank] = tier.model_copy(update={"providers": reordered})

    def _warn_duplicates(self) -> None:
        seen: dict[str, int] = {}
        for tier in self.tiers():
            for provider in tier.providers:
                if provider.id in seen and seen[provider.id] != tier.rank:
                    logger.warning(
                        "Provider %s appears in tiers %d and %d; lookups use tier %d",
                        provider.id, seen[provider.id], tier.rank, seen[provider.id],
                    )
                seen.setdefault(provider.id, tier.rank)


def load_registry(config_path: Path | None = None) -> ProviderRegistry:
    """Load the tier topology from a TOML file.

    Args:
        config_path: Path to tiers.toml. Defaults to cascade/config/tiers.toml.

    Returns:
        A ProviderRegistry with tiers in ascending rank order.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If the TOML structure is invalid.
        UnknownProviderError: If a domain mapping names an unknown provider.
    """
    path = config_path or _CONFIG_DIR / "tiers.toml"
    if not path.exists():
        raise FileNotFoundError(f"Tier configuration not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    tiers_section = raw.get("tiers")
    if not tiers_section or not isinstance(tiers_section, list):
        raise ConfigurationError(f"No [[tiers]] entries found in {path}")

    try:
        tiers = [FallbackTier(**entry) for entry in tiers_section]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid tier configuration in {path}: {e}") from e

    domains = raw.get("domains", {})
    if not isinstance(domains, dict):
        raise ConfigurationError(f"[domains] must be a table in {path}")

    registry = ProviderRegistry(tiers, domain_mappings=domains)
    logger.info(
        "Loaded %d providers across %d tiers from %s",
        len(registry), len(registry.ranks()), path,
    )
    return registry


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    """Load engine defaults from a TOML file.

    Args:
        config_path: Path to defaults.toml. Defaults to cascade/config/defaults.toml.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If a value fails validation.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    try:
        return EngineConfig(**raw.get("engine", {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine configuration in {path}: {e}") from e
