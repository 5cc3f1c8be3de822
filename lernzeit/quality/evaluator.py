"""
Multi-dimension quality evaluation for generated questions.

Usage:
    evaluator = QualityEvaluator(grade=3, category="math")
    report = evaluator.evaluate(question)
    if report.recommendations:
        ...

A dimension whose heuristic raises is scored with a neutral 0.5 so one
broken heuristic never aborts the whole report.
"""
from __future__ import annotations

import asyncio
import math
from typing import Any, Optional, Union

from loguru import logger

from lernzeit.core.models import QualityRecommendation, QualityReport, Question, utcnow
from lernzeit.core.stores import QualityMetricsStore, StoreError
from lernzeit.core.tuning import (
    EVALUATOR_FALLBACK_SCORE,
    HISTORY_SIZE,
    MIN_CONFIDENCE,
    NEEDS_OPTIMIZATION_BELOW,
    PRIORITY_ORDER,
    QUALITY_BANDS,
    QUALITY_BATCH_PAUSE_SECONDS,
    QUALITY_BATCH_SIZE,
)
from lernzeit.quality.dimensions import (
    RECOMMENDATIONS,
    EvaluationContext,
    QualityDimension,
    default_dimensions,
)

QuestionId = Union[int, str]


class QualityEvaluator:
    """Scores questions along weighted, independent quality dimensions."""

    def __init__(
        self,
        grade: int,
        category: str = "math",
        dimensions: Optional[list[QualityDimension]] = None,
        metrics_store: Optional[QualityMetricsStore] = None,
        batch_size: int = QUALITY_BATCH_SIZE,
        batch_pause: float = QUALITY_BATCH_PAUSE_SECONDS,
    ):
        self.context = EvaluationContext(grade=grade, category=category)
        self.dimensions = dimensions if dimensions is not None else default_dimensions()
        self.metrics_store = metrics_store
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause

        self.trends: list[dict[str, Any]] = []

    def evaluate(self, question: Question) -> QualityReport:
        dimension_scores: dict[str, float] = {}
        weighted_sum = 0.0
        total_weight = 0.0

        for dimension in self.dimensions:
            try:
                score = float(dimension.evaluator(question, self.context))
            except Exception as e:
                logger.warning(f"Failed to evaluate dimension {dimension.id} for question {question.id}: {e}")
                score = EVALUATOR_FALLBACK_SCORE
            dimension_scores[dimension.id] = score
            weighted_sum += score * dimension.weight
            total_weight += dimension.weight

        overall = weighted_sum / total_weight if total_weight > 0 else EVALUATOR_FALLBACK_SCORE

        recommendations = []
        suggestions = []
        for dimension in self.dimensions:
            if dimension_scores[dimension.id] >= dimension.threshold:
                continue
            entry = RECOMMENDATIONS.get(dimension.id)
            if entry is None:
                continue
            rec_type, priority, message, action, suggestion = entry
            recommendations.append(QualityRecommendation(
                type=rec_type,
                priority=priority,
                message=message,
                action=action,
                dimension=dimension.id,
            ))
            suggestions.append(suggestion)

        recommendations.sort(key=lambda r: PRIORITY_ORDER.get(r.priority, len(PRIORITY_ORDER)))

        report = QualityReport(
            overall_score=overall,
            dimension_scores=dimension_scores,
            confidence_level=confidence_from_scores(list(dimension_scores.values())),
            recommendations=recommendations,
            improvement_suggestions=suggestions,
        )
        return report

    async def batch_evaluate(
        self,
        questions: list[Question],
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        persist: bool = False,
    ) -> dict[QuestionId, QualityReport]:
        """
        Evaluate questions in fixed-size chunks with a pause between chunks.

        When ``persist`` is set each chunk's reports are written to the
        metrics store before the next chunk starts.
        """
        logger.info(f"Starting batch quality analysis for {len(questions)} questions")
        reports: dict[QuestionId, QualityReport] = {}

        for start in range(0, len(questions), self.batch_size):
            chunk = questions[start:start + self.batch_size]
            chunk_reports = [(q, self.evaluate(q)) for q in chunk]
            for question, report in chunk_reports:
                reports[question.id] = report

            if persist:
                await asyncio.gather(*(
                    self.store_report(q, r, user_id=user_id, session_id=session_id)
                    for q, r in chunk_reports
                ))

            if start + self.batch_size < len(questions):
                await asyncio.sleep(self.batch_pause)

        if reports:
            self._record_trend(list(reports.values()))
            summary = summarize(list(reports.values()))
            logger.info(f"Batch quality analysis complete. Average score: {summary['average_score']:.2f}")
        return reports

    async def store_report(
        self,
        question: Question,
        report: QualityReport,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> bool:
        if self.metrics_store is None:
            return False
        record = {
            "question_id": question.id,
            "template_id": question.template_id,
            "user_id": user_id,
            "session_id": session_id,
            "category": self.context.category,
            "grade": self.context.grade,
            "created_at": utcnow().isoformat(),
            **report.to_dict(),
        }
        try:
            await self.metrics_store.store_quality_report(record)
            return True
        except StoreError as e:
            logger.warning(f"Failed to store quality metrics for question {question.id}: {e}")
            return False

    def _record_trend(self, reports: list[QualityReport]) -> None:
        dimension_averages = {
            dim.id: sum(r.dimension_scores.get(dim.id, 0.0) for r in reports) / len(reports)
            for dim in self.dimensions
        }
        self.trends.append({
            "timestamp": utcnow(),
            "overall_score": sum(r.overall_score for r in reports) / len(reports),
            "dimension_scores": dimension_averages,
        })
        del self.trends[:-HISTORY_SIZE]


def confidence_from_scores(scores: list[float]) -> float:
    """1 - standard deviation of the dimension scores, floored at 0.1."""
    if not scores:
        return MIN_CONFIDENCE
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    return max(MIN_CONFIDENCE, 1 - math.sqrt(variance))


def quality_band(score: float) -> str:
    for band, floor in QUALITY_BANDS.items():
        if score >= floor:
            return band
    return "poor"


def summarize(reports: list[QualityReport]) -> dict[str, Any]:
    distribution = {"excellent": 0, "good": 0, "fair": 0, "poor": 0}
    for report in reports:
        distribution[quality_band(report.overall_score)] += 1

    return {
        "average_score": (
            sum(r.overall_score for r in reports) / len(reports) if reports else 0.0
        ),
        "distribution": distribution,
        "needs_optimization": any(
            r.overall_score < NEEDS_OPTIMIZATION_BELOW
            or any(rec.priority == "high" for rec in r.recommendations)
            for r in reports
        ),
    }
