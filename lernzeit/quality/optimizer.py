"""
Rule-based question optimizer.

Applies small rewrites to questions whose quality report fired
recommendations. Rewrites never touch the answer and never regenerate the
question: numbers are resampled, a character is introduced, an explanation
is elaborated or wording is simplified. A rewrite that scores worse than
the original on re-evaluation is reverted.
"""
from __future__ import annotations

import random
import re
import time
from dataclasses import replace
from typing import Optional

from loguru import logger

from lernzeit.core.models import OptimizationResult, QualityReport, Question
from lernzeit.core.tuning import ELABORATE_EXPLANATION_BELOW
from lernzeit.quality.dimensions import CONTEXT_NAMES, NUMBER_PATTERN, has_named_context
from lernzeit.quality.evaluator import QualityEvaluator

ELABORATION = (
    "Lösung: Schritt für Schritt: Zuerst die gegebenen Informationen sammeln, "
    "dann die passende Rechenmethode wählen und schließlich das Ergebnis berechnen."
)

SIMPLER_WORDING = {
    "berechnen Sie": "berechne",
    "ermitteln Sie": "finde heraus",
    "bestimmen Sie": "bestimme",
    "geben Sie an": "gib an",
    "addieren Sie": "addiere",
    "subtrahieren Sie": "ziehe ab",
}

_SIMPLER_PATTERNS = [
    (re.compile(re.escape(formal), re.IGNORECASE), simple)
    for formal, simple in SIMPLER_WORDING.items()
]


def _match_case(original: str, replacement: str) -> str:
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


class QuestionOptimizer:
    """
    Improves low-scoring questions with bounded rewrites.

    Usage:
        optimizer = QuestionOptimizer(QualityEvaluator(grade=2))
        result = await optimizer.optimize(questions)
        result.improvement_delta  # mean overall score gain
    """

    def __init__(self, evaluator: QualityEvaluator, rng: Optional[random.Random] = None):
        self.evaluator = evaluator
        self.rng = rng or random.Random()

    @property
    def grade(self) -> int:
        return self.evaluator.context.grade

    async def optimize(
        self,
        questions: list[Question],
        reports: Optional[dict] = None,
    ) -> OptimizationResult:
        """
        Rewrite low scorers and re-evaluate them.

        ``reports`` maps question id to a report the caller already computed
        for exactly these questions; every other question is evaluated fresh.
        """
        started = time.perf_counter()
        reports = dict(reports or {})

        original_scores = []
        optimized: list[Question] = []
        optimized_scores = []
        applied_actions: list[str] = []

        for question in questions:
            report = reports.get(question.id)
            if report is None:
                report = self.evaluator.evaluate(question)
            original_scores.append(report.overall_score)

            candidate, actions = self.rewrite(question, report)
            if not actions:
                optimized.append(question)
                optimized_scores.append(report.overall_score)
                continue

            new_report = self.evaluator.evaluate(candidate)
            if new_report.overall_score < report.overall_score:
                logger.debug(
                    f"Reverting rewrite of question {question.id}: "
                    f"{report.overall_score:.2f} -> {new_report.overall_score:.2f}"
                )
                optimized.append(question)
                optimized_scores.append(report.overall_score)
                continue

            optimized.append(candidate)
            optimized_scores.append(new_report.overall_score)
            applied_actions.extend(f"{question.id}: {action}" for action in actions)

        improvement = 0.0
        if questions:
            improvement = (sum(optimized_scores) - sum(original_scores)) / len(questions)

        duration = time.perf_counter() - started
        logger.info(
            f"Optimized {len(questions)} questions, {len(applied_actions)} rewrites applied, "
            f"improvement {improvement:+.3f}"
        )
        return OptimizationResult(
            original=list(questions),
            optimized=optimized,
            improvement_delta=improvement,
            applied_actions=applied_actions,
            duration=duration,
        )

    # =========================================================================
    # Rewrites
    # =========================================================================

    def rewrite(self, question: Question, report: QualityReport) -> tuple[Question, list[str]]:
        """Apply the rewrite for each fired recommendation. Returns (question, actions)."""
        actions: list[str] = []
        current = question
        fired = set(report.failed_dimensions)

        if fired & {"difficulty_consistency", "content_accuracy"} and self.evaluator.context.is_math:
            text = self.resample_numbers(current)
            if text != current.question:
                current = replace(current, question=text)
                actions.append("resampled numbers into grade range")

        if "engagement_level" in fired and not has_named_context(current.question):
            name = self.rng.choice(CONTEXT_NAMES)
            current = replace(current, question=f"{name} fragt dich: {current.question}")
            actions.append(f"added character {name}")

        if "pedagogical_effectiveness" in fired and len(current.explanation) < ELABORATE_EXPLANATION_BELOW:
            explanation = f"{current.explanation} {ELABORATION}".strip()
            current = replace(current, explanation=explanation)
            actions.append("elaborated explanation")

        if "language_clarity" in fired:
            text = self.simplify_wording(current.question)
            if text != current.question:
                current = replace(current, question=text)
                actions.append("simplified wording")

        return current, actions

    def resample_numbers(self, question: Question) -> str:
        # Numbers in the answer would no longer match
        if NUMBER_PATTERN.search(question.answer):
            return question.question

        limit = 10 ** self.grade

        def _resample(match: re.Match) -> str:
            value = int(match.group())
            if value <= limit:
                return match.group()
            return str(self.rng.randint(1, limit))

        return NUMBER_PATTERN.sub(_resample, question.question)

    @staticmethod
    def simplify_wording(text: str) -> str:
        for pattern, simple in _SIMPLER_PATTERNS:
            text = pattern.sub(lambda m, s=simple: _match_case(m.group(), s), text)
        return text
