"""
Data models for the adaptive content selection engine.

Store-facing records (Template, DifficultyProfile) are pydantic models so
rows coming back from the external store are validated on the way in.
In-memory engine state and computed results are plain dataclasses.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lernzeit.core.tuning import DIFFICULTY_ALIASES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_difficulty(value: Optional[str]) -> str:
    """Map store spellings (AFB I-III, German labels) onto easy/medium/hard."""
    if not value:
        return "medium"
    key = str(value).strip().lower()
    return DIFFICULTY_ALIASES.get(key, key)


def normalize_question_type(value: str) -> str:
    """MULTIPLE_CHOICE for "multiple-choice", "multiple choice" and friends."""
    return re.sub(r"[\s-]+", "_", str(value).strip()).upper()


class BehaviorPatternType(str, Enum):
    """Learner behavior classification used to pick an adjustment heuristic."""
    STRUGGLING = "struggling"
    THRIVING = "thriving"
    PLATEAUING = "plateauing"
    IMPROVING = "improving"


class FeedbackType(str, Enum):
    """Explicit learner sentiment signals."""
    TOO_HARD = "too_hard"
    TOO_EASY = "too_easy"
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"


class TemplateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


# =============================================================================
# Store records
# =============================================================================

class Template(BaseModel):
    """Exercise template as stored in the external template store."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    grade: int
    domain: str = ""
    quarter: Optional[str] = Field(default=None, alias="quarter_app")
    difficulty: str = "medium"
    question_type: str = "FREETEXT"
    quality_score: Optional[float] = None
    plays: int = 0
    correct: int = 0
    status: str = TemplateStatus.ACTIVE.value
    last_validated: Optional[datetime] = None
    student_prompt: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalize_difficulty(cls, value: Any) -> str:
        return normalize_difficulty(value)

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> str:
        return str(value).upper() if value else value

    @field_validator("question_type", mode="before")
    @classmethod
    def _normalize_question_type(cls, value: Any) -> str:
        return normalize_question_type(value) if value else value

    @field_validator("plays", "correct", mode="before")
    @classmethod
    def _zero_if_null(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def is_active(self) -> bool:
        return self.status == TemplateStatus.ACTIVE.value

    @property
    def success_rate(self) -> Optional[float]:
        if self.plays <= 0:
            return None
        return self.correct / self.plays


class DifficultyProfile(BaseModel):
    """Per (learner, category, grade) difficulty calibration."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    category: str
    grade: int
    current_level: float = 0.5
    mastery_score: float = 0.0
    learning_velocity: float = 0.0
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.user_id, self.category, self.grade)

    def to_record(self) -> dict[str, Any]:
        """Row shape for the profile store."""
        return self.model_dump(mode="json")


# =============================================================================
# Engine state and results
# =============================================================================

@dataclass
class SelectionCriteria:
    """Slice of the template pool a request is drawn from."""
    grade: int
    domain: Optional[str] = None
    quarter: Optional[str] = None
    difficulty: Optional[str] = None
    question_type: Optional[str] = None
    min_quality: Optional[float] = None

    def matches(self, template: Template) -> bool:
        if template.grade != self.grade:
            return False
        if self.domain and template.domain != self.domain:
            return False
        if self.quarter and template.quarter != self.quarter:
            return False
        if self.difficulty and template.difficulty != normalize_difficulty(self.difficulty):
            return False
        if self.question_type and template.question_type != normalize_question_type(self.question_type):
            return False
        return True


@dataclass
class RotationResult:
    """Template picked by the rotator and why."""
    template: Template
    reason: str
    diversity_score: float
    quality_score: float
    total_score: float = 0.0
    sub_scores: dict[str, float] = field(default_factory=dict)


@dataclass
class PoolRotation:
    """Outcome of a pool maintenance pass."""
    grade: int
    domain: str
    archived_ids: list[str] = field(default_factory=list)
    active_count: int = 0
    pool_low: bool = False


@dataclass
class PerformanceMetrics:
    """Rolling performance snapshot for one learner session."""
    accuracy: float = 0.0
    response_time: float = 0.0  # mean, milliseconds
    confidence_level: float = 0.0
    help_requests: int = 0
    streak_count: int = 0


@dataclass
class BehaviorPattern:
    pattern_type: BehaviorPatternType
    confidence: float
    recommended_action: str
    indicators: list[str] = field(default_factory=list)


@dataclass
class DifficultyAdjustment:
    previous_level: float
    new_level: float
    adjustment_reason: str
    confidence: float
    delta: float = 0.0
    pattern: Optional[BehaviorPatternType] = None
    recommended_topics: list[str] = field(default_factory=list)


@dataclass
class Question:
    """Concrete question produced from a template by the generation service."""
    id: Union[int, str]
    question: str
    question_type: str = "text-input"
    answer: str = ""
    explanation: str = ""
    options: list[str] = field(default_factory=list)
    template_id: Optional[str] = None


@dataclass
class QualityRecommendation:
    type: str  # content, difficulty, structure, engagement
    priority: str  # high, medium, low
    message: str
    action: str
    dimension: str = ""


@dataclass
class QualityReport:
    overall_score: float
    dimension_scores: dict[str, float]
    confidence_level: float
    recommendations: list[QualityRecommendation] = field(default_factory=list)
    improvement_suggestions: list[str] = field(default_factory=list)

    @property
    def failed_dimensions(self) -> list[str]:
        return [r.dimension for r in self.recommendations]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "dimension_scores": dict(self.dimension_scores),
            "confidence_level": self.confidence_level,
            "improvement_suggestions": list(self.improvement_suggestions),
            "recommendations": [
                {
                    "type": r.type,
                    "priority": r.priority,
                    "message": r.message,
                    "action": r.action,
                    "dimension": r.dimension,
                }
                for r in self.recommendations
            ],
        }


@dataclass
class OptimizationResult:
    original: list[Question]
    optimized: list[Question]
    improvement_delta: float
    applied_actions: list[str] = field(default_factory=list)
    duration: float = 0.0  # seconds
