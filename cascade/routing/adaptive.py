"""Feedback-driven learning for provider selection.

SatisfactionLedger keeps the per-provider satisfaction and feedback
quality EMAs read by context-aware and performance-based scoring.
AdaptiveLearner turns the same feedback into the boosts and penalties
applied by the adaptive strategy.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from cascade.schemas.context import UserFeedback

logger = logging.getLogger(__name__)

# Starting satisfaction for providers without feedback
DEFAULT_SATISFACTION = 0.85

# Learning rate for feedback EMAs
_ALPHA = 0.1


@dataclass
class ProviderSatisfaction:
    """Accumulated caller feedback for one provider."""

    satisfaction: float = DEFAULT_SATISFACTION
    quality: float = DEFAULT_SATISFACTION
    sample_size: int = 0


@dataclass
class AdaptiveInsights:
    """Learned adjustments on the 0-100 capability scale."""

    boosts: dict[str, float] = field(default_factory=dict)
    penalties: dict[str, float] = field(default_factory=dict)


class SatisfactionLedger:
    """Per-provider satisfaction and quality EMAs folded from feedback."""

    def __init__(self, alpha: float = _ALPHA) -> None:
        self._alpha = alpha
        self._entries: dict[str, ProviderSatisfaction] = {}
        self._lock = asyncio.Lock()

    def satisfaction(self, provider_id: str) -> float:
        entry = self._entries.get(provider_id)
        return entry.satisfaction if entry else DEFAULT_SATISFACTION

    def get(self, provider_id: str) -> ProviderSatisfaction | None:
        entry = self._entries.get(provider_id)
        if entry is None:
            return None
        return ProviderSatisfaction(entry.satisfaction, entry.quality, entry.sample_size)

    async def record(self, provider_id: str, feedback: UserFeedback) -> ProviderSatisfaction:
        a = self._alpha
        async with self._lock:
            entry = self._entries.setdefault(provider_id, ProviderSatisfaction())
            entry.satisfaction = entry.satisfaction * (1 - a) + (feedback.rating / 5.0) * a
            entry.quality = entry.quality * (1 - a) + feedback.aspects.normalized() * a
            entry.sample_size += 1
            return ProviderSatisfaction(entry.satisfaction, entry.quality, entry.sample_size)


class AdaptiveLearner:
    """Learns per-provider boosts and penalties from caller ratings.

    Each provider keeps an EMA of its normalized rating (0-1, neutral
    0.5). The distance above neutral becomes a boost and the distance
    below becomes a penalty, both scaled to 0-100.
    """

    def __init__(self, alpha: float = _ALPHA * 3) -> None:
        self._alpha = alpha
        self._signals: dict[str, float] = {}
        self._feedback_count = 0
        self._lock = asyncio.Lock()

    @property
    def feedback_count(self) -> int:
        return self._feedback_count

    async def process_feedback(self, provider_id: str, feedback: UserFeedback) -> float:
        """Fold one rating into the provider's signal; returns the new signal."""
        async with self._lock:
            current = self._signals.get(provider_id, 0.5)
            signal = current * (1 - self._alpha) + feedback.satisfaction * self._alpha
            self._signals[provider_id] = signal
            self._feedback_count += 1
        logger.debug("Adaptive signal for %s is now %.3f", provider_id, signal)
        return signal

    def insights(self) -> AdaptiveInsights:
        """Snapshot of the current boosts and penalties."""
        insights = AdaptiveInsights()
        for provider_id, signal in self._signals.items():
            if signal > 0.5:
                insights.boosts[provider_id] = (signal - 0.5) * 200.0
            elif signal < 0.5:
                insights.penalties[provider_id] = (0.5 - signal) * 200.0
        return insights
