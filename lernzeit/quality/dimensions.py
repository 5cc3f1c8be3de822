"""
Quality dimensions for generated questions.

Each dimension is an independent heuristic returning a score in [0, 1]
together with its own weight and pass threshold. The heuristics are tuned
for German primary-school exercises (grades 1-6).

Dimensions:
- difficulty_consistency: text length vs. expected complexity for the grade
- engagement_level: named characters, interactivity, real-world anchoring
- pedagogical_effectiveness: explanation, word count, instructional verbs
- content_accuracy: number magnitudes and negative quantities (math only)
- language_clarity: average word length and sentence length
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from lernzeit.core.models import Question
from lernzeit.core.tuning import (
    EXPLANATION_MIN_CHARS,
    MATH_CATEGORIES,
    NEGATIVE_NUMBER_MAX_GRADE,
    QUALITY_DIMENSIONS,
    WORD_COUNT_RANGE,
)


@dataclass(frozen=True)
class EvaluationContext:
    """Who the question is for."""
    grade: int
    category: str = "math"

    @property
    def is_math(self) -> bool:
        return self.category.lower() in MATH_CATEGORIES


Evaluator = Callable[[Question, EvaluationContext], float]


@dataclass(frozen=True)
class QualityDimension:
    id: str
    name: str
    weight: float
    threshold: float
    evaluator: Evaluator


# =============================================================================
# Pattern Definitions
# =============================================================================

CONTEXT_NAMES = ("Emma", "Max", "Lina", "Tom")
CONTEXT_WORDS = CONTEXT_NAMES + ("Schule", "Familie")

REAL_WORLD_PATTERN = re.compile(r"(?:kaufen|Geld|Euro|Meter|Kilometer|Zeit|Uhr)", re.IGNORECASE)
INSTRUCTION_PATTERN = re.compile(r"\?|Berechne|Erkläre|Bestimme|Finde")
NUMBER_PATTERN = re.compile(r"\d+")
NEGATIVE_NUMBER_PATTERN = re.compile(r"(?<![\w)])-\d+")
SENTENCE_END_PATTERN = re.compile(r"[.!?]")

TEXT_INPUT_TYPES = frozenset({"text-input", "text_input", "freetext", "FREETEXT"})


def _words(text: str) -> list[str]:
    return text.split()


def has_named_context(text: str) -> bool:
    return any(word in text for word in CONTEXT_WORDS)


# =============================================================================
# Evaluators
# =============================================================================

def difficulty_consistency(question: Question, ctx: EvaluationContext) -> float:
    text_complexity = len(question.question) / 50
    grade_target = max(0.1, min(1.0, ctx.grade * 0.15 + 0.1))
    score = grade_target - abs(text_complexity - grade_target)
    return max(0.0, min(1.0, score))


def engagement_level(question: Question, ctx: EvaluationContext) -> float:
    text = question.question
    score = 0.4
    if has_named_context(text):
        score += 0.2
    if question.question_type not in TEXT_INPUT_TYPES:
        score += 0.25
    if REAL_WORLD_PATTERN.search(text):
        score += 0.15
    return min(1.0, score)


def pedagogical_effectiveness(question: Question, ctx: EvaluationContext) -> float:
    word_count = len(_words(question.question))
    low, high = WORD_COUNT_RANGE

    score = 0.5
    if question.explanation and len(question.explanation) > EXPLANATION_MIN_CHARS:
        score += 0.25
    if low <= word_count <= high:
        score += 0.15
    if INSTRUCTION_PATTERN.search(question.question):
        score += 0.1
    return min(1.0, score)


def content_accuracy(question: Question, ctx: EvaluationContext) -> float:
    score = 0.8
    if ctx.is_math:
        text = question.question
        if NEGATIVE_NUMBER_PATTERN.search(text) and ctx.grade <= NEGATIVE_NUMBER_MAX_GRADE:
            score -= 0.2
        numbers = [int(n) for n in NUMBER_PATTERN.findall(text)]
        if numbers and max(numbers) > 10 ** (ctx.grade + 1):
            score -= 0.15
    return max(0.1, score)


def language_clarity(question: Question, ctx: EvaluationContext) -> float:
    text = question.question
    words = _words(text)
    if not words:
        return 0.0

    avg_word_length = sum(len(w) for w in words) / len(words)
    expected_length = 4 + ctx.grade * 0.3
    length_score = 1 - abs(avg_word_length - expected_length) / expected_length

    sentence_count = len(SENTENCE_END_PATTERN.findall(text))
    avg_sentence_length = len(words) / max(1, sentence_count)
    complexity_score = 1.0 if avg_sentence_length <= 8 + ctx.grade * 2 else 0.7

    return max(0.0, min(1.0, length_score * 0.6 + complexity_score * 0.4))


_EVALUATORS: dict[str, tuple[str, Evaluator]] = {
    "difficulty_consistency": ("Difficulty consistency", difficulty_consistency),
    "engagement_level": ("Learner engagement", engagement_level),
    "pedagogical_effectiveness": ("Pedagogical effectiveness", pedagogical_effectiveness),
    "content_accuracy": ("Content accuracy", content_accuracy),
    "language_clarity": ("Language clarity", language_clarity),
}


def default_dimensions() -> list[QualityDimension]:
    dimensions = []
    for dim_id, (weight, threshold) in QUALITY_DIMENSIONS.items():
        name, evaluator = _EVALUATORS[dim_id]
        dimensions.append(QualityDimension(dim_id, name, weight, threshold, evaluator))
    return dimensions


# dimension -> (type, priority, message, action, suggestion)
RECOMMENDATIONS: dict[str, tuple[str, str, str, str, str]] = {
    "difficulty_consistency": (
        "difficulty",
        "high",
        "Question is too hard or too easy for this grade",
        "Adjust numbers or complexity",
        "Match difficulty to the grade level",
    ),
    "engagement_level": (
        "engagement",
        "medium",
        "Question could be more engaging",
        "Add a real-world reference or interactive elements",
        "Use more relatable everyday contexts",
    ),
    "pedagogical_effectiveness": (
        "structure",
        "high",
        "Pedagogical structure needs work",
        "Expand the explanation or make the solution steps explicit",
        "Structure the learning goal more clearly",
    ),
    "content_accuracy": (
        "content",
        "high",
        "Possible content inaccuracies",
        "Validate facts and calculations",
        "Check content correctness",
    ),
    "language_clarity": (
        "content",
        "medium",
        "Language too complex for the target group",
        "Use simpler words and shorter sentences",
        "Simplify the wording",
    ),
}
