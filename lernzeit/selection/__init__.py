"""
Template selection: weighted multi-criteria rotation over the template pool.
"""
from lernzeit.selection.template_rotator import (
    ScoredTemplate,
    TemplateRotator,
    difficulty_score,
    diversity_score,
    domain_for_category,
    ensure_question_type_diversity,
    freshness_score,
    quality_score,
    rotation_reason,
    template_success_rate,
)

__all__ = [
    "ScoredTemplate",
    "TemplateRotator",
    "difficulty_score",
    "diversity_score",
    "domain_for_category",
    "ensure_question_type_diversity",
    "freshness_score",
    "quality_score",
    "rotation_reason",
    "template_success_rate",
]
