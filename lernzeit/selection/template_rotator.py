"""
Template Rotation for Adaptive Content Selection.

Picks the next exercise template for a learner by scoring every eligible
candidate on four independent signals:

- Quality: stored quality score, pulled toward the observed success rate
- Freshness: how often the whole learner population used it in the last 24h
- Difficulty match: fit between the requested and the template difficulty
- Diversity: how under-represented its question type is in the session

The composite is a fixed weighted sum (see tuning.ROTATION_WEIGHTS). The
session tracker gates eligibility so a template is never repeated within a
session. An exhausted pool is reported as None, never as an exception.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from lernzeit.core.models import (
    PoolRotation,
    RotationResult,
    SelectionCriteria,
    Template,
    normalize_difficulty,
    normalize_question_type,
    utcnow,
)
from lernzeit.core.stores import StoreError, TemplateStore
from lernzeit.core.tuning import (
    ARCHIVE_MAX_QUALITY,
    ARCHIVE_MAX_SUCCESS_RATE,
    ARCHIVE_MIN_PLAYS,
    CATEGORY_DOMAINS,
    DEFAULT_DOMAIN,
    DEFAULT_TEMPLATE_QUALITY,
    DIFFICULTY_MATCH,
    DIFFICULTY_MATCH_UNKNOWN,
    DIVERSITY_EMPTY_SESSION,
    DIVERSITY_NOT_ENFORCED,
    FRESHNESS_FLOOR,
    FRESHNESS_TIERS,
    FRESHNESS_WINDOW_HOURS,
    MIN_TEMPLATE_QUALITY,
    POOL_MIN_ACTIVE,
    QUESTION_TYPES,
    REASON_THRESHOLD,
    ROTATION_WEIGHTS,
    UNIQUE_SELECTION_MIN_QUALITY,
    VALIDATION_BONUS_DAYS,
    VALIDATION_BONUS_FACTOR,
)
from lernzeit.session.tracker import SessionTracker, question_hash


@dataclass
class ScoredTemplate:
    template: Template
    total_score: float
    quality: float
    freshness: float
    difficulty: float
    diversity: float
    reason: str

    @property
    def sub_scores(self) -> dict[str, float]:
        return {
            "quality": self.quality,
            "freshness": self.freshness,
            "difficulty": self.difficulty,
            "diversity": self.diversity,
        }


# =============================================================================
# Sub-scores
# =============================================================================

def quality_score(template: Template, now: Optional[datetime] = None) -> float:
    """Stored quality blended with observed success rate, bonus if recently validated."""
    score = template.quality_score if template.quality_score is not None else DEFAULT_TEMPLATE_QUALITY

    success_rate = template.success_rate
    if success_rate is not None:
        score = (score + success_rate) / 2

    if template.last_validated is not None:
        now = now or utcnow()
        last_validated = template.last_validated
        if last_validated.tzinfo is None and now.tzinfo is not None:
            last_validated = last_validated.replace(tzinfo=now.tzinfo)
        if now - last_validated < timedelta(days=VALIDATION_BONUS_DAYS):
            score *= VALIDATION_BONUS_FACTOR

    return min(1.0, max(0.0, score))


def freshness_score(times_used_recently: int) -> float:
    if times_used_recently < len(FRESHNESS_TIERS):
        return FRESHNESS_TIERS[max(0, times_used_recently)]
    return FRESHNESS_FLOOR


def difficulty_score(template_difficulty: str, preferred_difficulty: str) -> float:
    row = DIFFICULTY_MATCH.get(normalize_difficulty(preferred_difficulty))
    if row is None:
        return DIFFICULTY_MATCH_UNKNOWN
    return row.get(normalize_difficulty(template_difficulty), DIFFICULTY_MATCH_UNKNOWN)


def diversity_score(question_type: str, type_counts: dict[str, int]) -> float:
    """Reward question types under-represented in the session so far."""
    total = sum(type_counts.values())
    if total == 0:
        return DIVERSITY_EMPTY_SESSION

    ideal_ratio = 1 / len(QUESTION_TYPES)
    actual_ratio = type_counts.get(normalize_question_type(question_type), 0) / total
    return max(0.0, 1 - abs(actual_ratio - ideal_ratio) * 2)


def rotation_reason(scores: dict[str, float]) -> str:
    labels = {
        "quality": "High quality",
        "freshness": "Fresh content",
        "difficulty": "Perfect difficulty match",
        "diversity": "Good type diversity",
    }
    reasons = [label for key, label in labels.items() if scores.get(key, 0.0) > REASON_THRESHOLD]
    return ", ".join(reasons) if reasons else "Best available option"


def domain_for_category(category: str) -> str:
    return CATEGORY_DOMAINS.get(category.lower(), DEFAULT_DOMAIN)


# =============================================================================
# Rotator
# =============================================================================

class TemplateRotator:
    """
    Select templates for a learner session.

    The rotator can work on a caller-supplied candidate list (select_best)
    or pull candidates itself from the template store
    (get_optimal_template, select_unique_templates).
    """

    def __init__(
        self,
        tracker: SessionTracker,
        template_store: Optional[TemplateStore] = None,
        min_quality: float = MIN_TEMPLATE_QUALITY,
        archive_max_quality: float = ARCHIVE_MAX_QUALITY,
        archive_min_plays: int = ARCHIVE_MIN_PLAYS,
        archive_max_success_rate: float = ARCHIVE_MAX_SUCCESS_RATE,
        pool_min_active: int = POOL_MIN_ACTIVE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tracker = tracker
        self.template_store = template_store
        self.min_quality = min_quality
        self.archive_max_quality = archive_max_quality
        self.archive_min_plays = archive_min_plays
        self.archive_max_success_rate = archive_max_success_rate
        self.pool_min_active = pool_min_active
        self._clock = clock

    # =========================================================================
    # Selection
    # =========================================================================

    async def select_best(
        self,
        candidates: Iterable[Template],
        user_id: str,
        session_id: Optional[str] = None,
        preferred_difficulty: str = "medium",
        enforce_type_diversity: bool = True,
        exclude_ids: Iterable[str] = (),
        criteria: Optional[SelectionCriteria] = None,
    ) -> Optional[RotationResult]:
        """
        Score eligible candidates and return the best one.

        Returns:
            RotationResult, or None when no candidate is eligible
        """
        eligible = self.filter_candidates(candidates, session_id, exclude_ids, criteria)
        if not eligible:
            logger.warning(f"No eligible templates for user {user_id} (session {session_id})")
            return None

        recent_usage = await self._recent_usage([t.id for t in eligible])
        scored = self.score_templates(
            eligible,
            recent_usage=recent_usage,
            preferred_difficulty=preferred_difficulty,
            type_counts=self.tracker.type_counts(session_id),
            enforce_type_diversity=enforce_type_diversity,
        )

        best = scored[0]
        template = best.template

        if session_id and self.tracker.get_session(session_id) is not None:
            self.tracker.mark_used(
                session_id,
                template.id,
                question_type=template.question_type,
                question_hash=question_hash(template),
            )
        await self._record_usage(template.id, user_id, session_id)

        logger.info(f"Selected template {template.id} (score: {best.total_score:.2f}) for user {user_id}")

        return RotationResult(
            template=template,
            reason=best.reason,
            diversity_score=best.diversity,
            quality_score=template.quality_score or 0.0,
            total_score=best.total_score,
            sub_scores=best.sub_scores,
        )

    def filter_candidates(
        self,
        candidates: Iterable[Template],
        session_id: Optional[str] = None,
        exclude_ids: Iterable[str] = (),
        criteria: Optional[SelectionCriteria] = None,
    ) -> list[Template]:
        used = self.tracker.used_template_ids(session_id)
        excluded = set(exclude_ids)
        min_quality = criteria.min_quality if criteria and criteria.min_quality is not None else self.min_quality

        eligible = []
        for template in candidates:
            if not template.is_active:
                continue
            if criteria is not None and not criteria.matches(template):
                continue
            if (template.quality_score or 0.0) < min_quality:
                continue
            if template.id in used or template.id in excluded:
                continue
            eligible.append(template)
        return eligible

    def score_templates(
        self,
        templates: list[Template],
        recent_usage: dict[str, int],
        preferred_difficulty: str = "medium",
        type_counts: Optional[dict[str, int]] = None,
        enforce_type_diversity: bool = True,
    ) -> list[ScoredTemplate]:
        """Score and sort, best first. Ties go to the higher stored quality."""
        now = self._clock()
        type_counts = type_counts or {}
        scored = []

        for template in templates:
            scores = {
                "quality": quality_score(template, now),
                "freshness": freshness_score(recent_usage.get(template.id, 0)),
                "difficulty": difficulty_score(template.difficulty, preferred_difficulty),
                "diversity": (
                    diversity_score(template.question_type, type_counts)
                    if enforce_type_diversity
                    else DIVERSITY_NOT_ENFORCED
                ),
            }
            total = sum(scores[key] * weight for key, weight in ROTATION_WEIGHTS.items())
            scored.append(ScoredTemplate(
                template=template,
                total_score=total,
                quality=scores["quality"],
                freshness=scores["freshness"],
                difficulty=scores["difficulty"],
                diversity=scores["diversity"],
                reason=rotation_reason(scores),
            ))

        scored.sort(key=lambda s: (-s.total_score, -(s.template.quality_score or 0.0)))
        return scored

    async def get_optimal_template(
        self,
        user_id: str,
        grade: int,
        category: str,
        session_id: Optional[str] = None,
        quarter: Optional[str] = None,
        preferred_difficulty: str = "medium",
        enforce_type_diversity: bool = True,
    ) -> Optional[RotationResult]:
        """Pull candidates from the store and pick one, resetting the session on exhaustion."""
        criteria = SelectionCriteria(
            grade=grade,
            domain=domain_for_category(category),
            quarter=quarter,
            min_quality=self.min_quality,
        )
        logger.debug(f"Template rotation for user {user_id}, grade {grade}, category {category}")

        candidates = await self._fetch(criteria)
        if not candidates:
            logger.warning(f"No templates in store for grade {grade}, {criteria.domain}, {quarter}")
            return None

        result = await self.select_best(
            candidates,
            user_id,
            session_id=session_id,
            preferred_difficulty=preferred_difficulty,
            enforce_type_diversity=enforce_type_diversity,
            criteria=criteria,
        )
        if result is None and session_id and self.tracker.used_template_ids(session_id):
            self.tracker.reset_used(session_id)
            result = await self.select_best(
                candidates,
                user_id,
                session_id=session_id,
                preferred_difficulty=preferred_difficulty,
                enforce_type_diversity=enforce_type_diversity,
                criteria=criteria,
            )
        return result

    async def select_unique_templates(
        self,
        criteria: SelectionCriteria,
        user_id: str,
        session_id: Optional[str],
        count: int = 1,
        exclude_ids: Iterable[str] = (),
    ) -> list[Template]:
        """
        Pick up to ``count`` templates not yet served in the session.

        Least-used (24h) first, then highest quality. Without a requested
        question type the picks are spread round-robin over the known types.
        """
        session = self.tracker.get_session(session_id)
        if session is None:
            session_id = self.tracker.create_session(user_id, criteria.grade, criteria.domain or "")
            session = self.tracker.get_session(session_id)

        if criteria.min_quality is None:
            criteria = SelectionCriteria(
                grade=criteria.grade,
                domain=criteria.domain,
                quarter=criteria.quarter,
                difficulty=criteria.difficulty,
                question_type=criteria.question_type,
                min_quality=UNIQUE_SELECTION_MIN_QUALITY,
            )

        available = await self._fetch(criteria)
        if not available:
            logger.warning(f"No templates found for grade {criteria.grade}, {criteria.domain}, {criteria.quarter}")
            return []

        excluded = set(exclude_ids)
        unused = [
            t for t in available
            if t.id not in session.used_template_ids and t.id not in excluded
        ]
        if not unused:
            logger.info(f"All templates served in session {session_id}, starting over")
            self.tracker.reset_used(session_id)
            unused = [t for t in available if t.id not in excluded]
            if not unused:
                return []

        usage = await self._recent_usage([t.id for t in unused])
        prioritized = sorted(unused, key=lambda t: (usage.get(t.id, 0), -(t.quality_score or 0.0)))

        if criteria.question_type:
            selected = prioritized[:count]
        else:
            selected = ensure_question_type_diversity(prioritized, count)

        for template in selected:
            self.tracker.mark_used(
                session_id,
                template.id,
                question_type=template.question_type,
                question_hash=question_hash(template),
            )

        logger.info(f"Selected {len(selected)}/{count} unique templates for user {user_id}")
        return selected

    # =========================================================================
    # Pool maintenance
    # =========================================================================

    async def rotate_template_pool(self, grade: int, domain: str) -> Optional[PoolRotation]:
        """Archive persistent low performers and report whether the pool runs low."""
        logger.info(f"Rotating template pool for grade {grade}, {domain}")
        if self.template_store is None:
            logger.error("No template store configured for pool rotation")
            return None

        try:
            templates = await self.template_store.fetch_templates(
                SelectionCriteria(grade=grade, domain=domain)
            )
            archive_ids = [
                t.id for t in templates
                if (t.quality_score or 0.0) < self.archive_max_quality
                and t.plays > self.archive_min_plays
                and (t.success_rate or 0.0) < self.archive_max_success_rate
            ]
            if archive_ids:
                await self.template_store.archive_templates(archive_ids)
                logger.info(f"Archived {len(archive_ids)} low-performing templates")
        except StoreError as e:
            logger.error(f"Template pool rotation failed: {e}")
            return None

        active_count = len(templates) - len(archive_ids)
        rotation = PoolRotation(
            grade=grade,
            domain=domain,
            archived_ids=archive_ids,
            active_count=active_count,
            pool_low=active_count < self.pool_min_active,
        )
        if rotation.pool_low:
            logger.warning(f"Template pool low ({active_count}) for grade {grade}, {domain}")
        return rotation

    async def get_rotation_statistics(self, grade: int) -> Optional[dict[str, Any]]:
        if self.template_store is None:
            return None
        try:
            templates = await self.template_store.fetch_grade_templates(grade)
        except StoreError as e:
            logger.error(f"Error fetching rotation statistics: {e}")
            return None

        stats: dict[str, Any] = {
            "total": len(templates),
            "active": sum(1 for t in templates if t.is_active),
            "archived": sum(1 for t in templates if not t.is_active),
            "by_domain": {},
            "by_difficulty": {},
            "by_question_type": {},
            "average_quality": 0.0,
            "average_success_rate": 0.0,
        }
        for template in templates:
            for key, value in (
                ("by_domain", template.domain),
                ("by_difficulty", template.difficulty),
                ("by_question_type", template.question_type),
            ):
                stats[key][value] = stats[key].get(value, 0) + 1

        active = [t for t in templates if t.is_active]
        if active:
            stats["average_quality"] = sum(t.quality_score or 0.0 for t in active) / len(active)
            played = [t.success_rate for t in active if t.success_rate is not None]
            if played:
                stats["average_success_rate"] = sum(played) / len(played)
        return stats

    # =========================================================================
    # Store access
    # =========================================================================

    async def _fetch(self, criteria: SelectionCriteria) -> list[Template]:
        if self.template_store is None:
            logger.error("No template store configured")
            return []
        try:
            return await self.template_store.fetch_templates(criteria)
        except StoreError as e:
            logger.error(f"Error fetching templates: {e}")
            return []

    async def _recent_usage(self, template_ids: list[str]) -> dict[str, int]:
        if self.template_store is None or not template_ids:
            return {}
        since = self._clock() - timedelta(hours=FRESHNESS_WINDOW_HOURS)
        try:
            return await self.template_store.recent_usage(template_ids, since)
        except StoreError as e:
            logger.warning(f"Recent usage unavailable, treating all templates as fresh: {e}")
            return {}

    async def _record_usage(self, template_id: str, user_id: str, session_id: Optional[str]) -> None:
        if self.template_store is None:
            return
        try:
            await self.template_store.record_usage(template_id, user_id, session_id)
        except StoreError as e:
            logger.warning(f"Failed to record usage of template {template_id}: {e}")


def template_success_rate(template: Template) -> float:
    """Observed success rate, falling back to the stored quality score."""
    if template.success_rate is not None:
        return template.success_rate
    return template.quality_score or 0.0


def ensure_question_type_diversity(templates: list[Template], count: int) -> list[Template]:
    """Round-robin over question types, topping up with whatever is left."""
    by_type: dict[str, list[Template]] = {qt: [] for qt in QUESTION_TYPES}
    for template in templates:
        if template.question_type in by_type:
            by_type[template.question_type].append(template)

    selected: list[Template] = []
    type_index = 0
    while len(selected) < count and len(selected) < len(templates):
        current_type = QUESTION_TYPES[type_index % len(QUESTION_TYPES)]
        bucket = by_type[current_type]
        if bucket:
            selected.append(bucket.pop(0))

        type_index += 1
        if type_index >= len(QUESTION_TYPES) * 2:
            remaining = [t for t in templates if t not in selected]
            selected.extend(remaining[: count - len(selected)])
            break

    return selected[:count]
