"""Cascade: tiered provider fallback and context-aware model selection."""

__version__ = "0.1.0"

from .engine import CascadeEngine
from .errors import CascadeError

__all__ = ["CascadeEngine", "CascadeError"]
