"""Quality gate for accepted provider responses."""

from cascade.quality.evaluator import HeuristicQualityEvaluator, QualityEvaluator

__all__ = ["HeuristicQualityEvaluator", "QualityEvaluator"]
