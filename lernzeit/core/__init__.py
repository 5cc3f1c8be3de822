"""
Core building blocks shared by all engine components.

- models: store records (pydantic) and engine state (dataclasses)
- tuning: every weight and threshold in one table
- stores: collaborator contracts, StoreError, in-memory stores
"""
from lernzeit.core.models import (
    BehaviorPattern,
    BehaviorPatternType,
    DifficultyAdjustment,
    DifficultyProfile,
    FeedbackType,
    OptimizationResult,
    PerformanceMetrics,
    PoolRotation,
    QualityRecommendation,
    QualityReport,
    Question,
    RotationResult,
    SelectionCriteria,
    Template,
    TemplateStatus,
    normalize_difficulty,
    normalize_question_type,
)
from lernzeit.core.stores import (
    InMemoryProfileStore,
    InMemoryQualityMetricsStore,
    InMemoryTemplateStore,
    StoreError,
)

__all__ = [
    "BehaviorPattern",
    "BehaviorPatternType",
    "DifficultyAdjustment",
    "DifficultyProfile",
    "FeedbackType",
    "OptimizationResult",
    "PerformanceMetrics",
    "PoolRotation",
    "QualityRecommendation",
    "QualityReport",
    "Question",
    "RotationResult",
    "SelectionCriteria",
    "Template",
    "TemplateStatus",
    "normalize_difficulty",
    "normalize_question_type",
    "InMemoryProfileStore",
    "InMemoryQualityMetricsStore",
    "InMemoryTemplateStore",
    "StoreError",
]
