"""Response quality evaluation for the fallback quality gate.

QualityEvaluator is the pluggable interface; the orchestrator only ever
calls ``assess``. HeuristicQualityEvaluator is the rule-based default:
five cheap sub-scores averaged without weights. It is a placeholder for
a model-based scorer, not a measure of factual correctness.
"""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod

from cascade.schemas.context import CallerRequest, RequestContext
from cascade.schemas.quality import QualityAssessment

_UNSAFE_KEYWORDS = ("harmful", "dangerous", "illegal")

_REFUSAL_MARKERS = (
    "i cannot",
    "i can't",
    "i'm not able",
    "i am not able",
    "i'm not sure",
    "i am not sure",
    "i don't know",
    "as an ai",
)

# Sentence-final characters that mark a response as cleanly finished
_CLEAN_ENDINGS = (".", "!", "?", "```", ")", "]", "}", '"', "'", "*")

_WORD_RE = re.compile(r"[a-z0-9]+")

# Words too common to signal relevance
_STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "for",
    "from", "how", "i", "in", "is", "it", "me", "my", "of", "on", "or",
    "please", "that", "the", "this", "to", "was", "what", "with", "you",
    "your",
})


class QualityEvaluator(ABC):
    """Scores a response against a tier's quality threshold."""

    @abstractmethod
    async def assess(
        self,
        content: str,
        context: RequestContext,
        threshold: float,
        request: CallerRequest | None = None,
    ) -> QualityAssessment:
        """Assess ``content`` and report whether it clears ``threshold``.

        Args:
            content: The provider's generated text.
            context: Inferred context of the originating request.
            threshold: The active tier's quality bar, 0-1.
            request: The originating request, when known.
        """


def _keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if w not in _STOPWORDS and len(w) > 2}


class HeuristicQualityEvaluator(QualityEvaluator):
    """Rule-based default evaluator."""

    method = "rule_based"

    async def assess(
        self,
        content: str,
        context: RequestContext,
        threshold: float,
        request: CallerRequest | None = None,
    ) -> QualityAssessment:
        start = time.monotonic()
        prompt = request.prompt if request else ""
        metrics = {
            "coherence": self._coherence(content),
            "relevance": self._relevance(content, prompt),
            "accuracy": self._accuracy(content),
            "completeness": self._completeness(content),
            "safety": self._safety(content),
        }
        score = sum(metrics.values()) / len(metrics)
        return QualityAssessment(
            score=score,
            passes_threshold=score >= threshold,
            threshold=threshold,
            metrics=metrics,
            method=self.method,
            assessment_time_ms=(time.monotonic() - start) * 1000.0,
        )

    @staticmethod
    def _coherence(content: str) -> float:
        if len(content) < 10:
            return 0.3
        if len(content) < 50:
            return 0.6
        return 0.8

    @staticmethod
    def _relevance(content: str, prompt: str) -> float:
        prompt_words = _keywords(prompt)
        if not prompt_words:
            return 0.8
        overlap = len(prompt_words & _keywords(content)) / len(prompt_words)
        return 0.4 + 0.6 * overlap

    @staticmethod
    def _accuracy(content: str) -> float:
        lowered = content.lower()
        if any(marker in lowered for marker in _REFUSAL_MARKERS):
            return 0.5
        return 0.8

    @staticmethod
    def _completeness(content: str) -> float:
        stripped = content.rstrip()
        if stripped.endswith(_CLEAN_ENDINGS):
            return 0.8
        return 0.6

    @staticmethod
    def _safety(content: str) -> float:
        lowered = content.lower()
        if any(keyword in lowered for keyword in _UNSAFE_KEYWORDS):
            return 0.3
        return 0.9
