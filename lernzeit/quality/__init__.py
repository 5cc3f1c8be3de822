"""
Question quality: weighted dimension scoring and rule-based optimization.
"""
from lernzeit.quality.dimensions import (
    EvaluationContext,
    QualityDimension,
    default_dimensions,
)
from lernzeit.quality.evaluator import (
    QualityEvaluator,
    confidence_from_scores,
    quality_band,
    summarize,
)
from lernzeit.quality.optimizer import QuestionOptimizer

__all__ = [
    "EvaluationContext",
    "QualityDimension",
    "default_dimensions",
    "QualityEvaluator",
    "confidence_from_scores",
    "quality_band",
    "summarize",
    "QuestionOptimizer",
]
