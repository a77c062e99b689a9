"""API key loading for Cascade providers.

Keys are read from the environment with this priority:
  1. Environment variables (highest, already set in the shell)
  2. ~/.cascade/keys.env
  3. .env in the current directory
Each provider names the variable it needs in tiers.toml (``api_key_env``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cascade.schemas.provider import Provider

logger = logging.getLogger(__name__)

# Directory for user-level Cascade state (keys, execution database)
CASCADE_HOME = Path.home() / ".cascade"
KEYS_FILE = CASCADE_HOME / "keys.env"


def load_keys_env(extra_files: list[Path] | None = None) -> None:
    """Load API keys from ~/.cascade/keys.env and ./.env into os.environ.

    Existing environment variables are never overwritten, and earlier
    files win over later ones.
    """
    files = [KEYS_FILE, Path.cwd() / ".env", *(extra_files or [])]
    for env_file in files:
        if env_file.is_file():
            _load_env_file(env_file)


def _load_env_file(path: Path) -> None:
    """Parse a simple KEY=VALUE file and set vars that aren't already set."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        if key and not os.environ.get(key):
            os.environ[key] = value
            logger.debug("Loaded %s from %s", key, path)


def has_key(provider: Provider) -> bool:
    """True if the provider needs no key or its key variable is set."""
    return not provider.api_key_env or bool(os.environ.get(provider.api_key_env))


def missing_keys(providers: list[Provider]) -> list[str]:
    """Sorted, de-duplicated env var names that providers need but lack."""
    return sorted({p.api_key_env for p in providers if not has_key(p)})
