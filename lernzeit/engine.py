"""
Adaptive Content Selection Engine.

Single entry point for the app: wires the session tracker, template
rotator, difficulty controller and quality evaluator/optimizer together
and exposes their caller-facing operations as coroutines.

Usage:
    engine = AdaptiveContentEngine.from_settings()
    session_id = await engine.create_session("kid-1", grade=3, category="math")
    pick = await engine.next_template("kid-1", session_id)
    ...
    await engine.record_answer("kid-1", "math", 3, is_correct=True, response_time_ms=8_000)
    await engine.shutdown()

Per question-serving event the controller's recommended difficulty feeds
the rotator's difficulty match, and the session tracker gates eligibility.
"""
from __future__ import annotations

import random
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union

from loguru import logger

from config import Settings, get_settings
from lernzeit.adaptive.difficulty_controller import DifficultyController
from lernzeit.core.models import (
    DifficultyAdjustment,
    FeedbackType,
    OptimizationResult,
    PoolRotation,
    QualityReport,
    Question,
    RotationResult,
    SelectionCriteria,
    Template,
    utcnow,
)
from lernzeit.core.stores import (
    InMemoryProfileStore,
    InMemoryQualityMetricsStore,
    InMemoryTemplateStore,
    ProfileStore,
    QualityMetricsStore,
    TemplateStore,
)
from lernzeit.core.tuning import (
    MIN_TEMPLATE_QUALITY,
    QUALITY_BATCH_PAUSE_SECONDS,
    QUALITY_BATCH_SIZE,
    SESSION_TIMEOUT_MINUTES,
)
from lernzeit.integrations.supabase_store import SupabaseStore
from lernzeit.quality.evaluator import QualityEvaluator
from lernzeit.quality.optimizer import QuestionOptimizer
from lernzeit.selection.template_rotator import TemplateRotator, domain_for_category
from lernzeit.session.tracker import SessionTracker


class AdaptiveContentEngine:
    """Caller-facing facade over the four selection components."""

    def __init__(
        self,
        template_store: Optional[TemplateStore] = None,
        profile_store: Optional[ProfileStore] = None,
        metrics_store: Optional[QualityMetricsStore] = None,
        tracker: Optional[SessionTracker] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        session_timeout_minutes: int = SESSION_TIMEOUT_MINUTES,
        min_quality: float = MIN_TEMPLATE_QUALITY,
        quality_batch_size: int = QUALITY_BATCH_SIZE,
        quality_batch_pause: float = QUALITY_BATCH_PAUSE_SECONDS,
        rotator_options: Optional[dict[str, Any]] = None,
    ):
        self.template_store = template_store
        self.profile_store = profile_store
        self.metrics_store = metrics_store
        self.rng = rng or random.Random()
        self._clock = clock

        self.tracker = tracker or SessionTracker(session_timeout_minutes, clock=clock)
        self.tracker.init()
        self.rotator = TemplateRotator(
            self.tracker,
            template_store=template_store,
            min_quality=min_quality,
            clock=clock,
            **(rotator_options or {}),
        )
        self.controller = DifficultyController(profile_store=profile_store, rng=self.rng, clock=clock)

        self.quality_batch_size = quality_batch_size
        self.quality_batch_pause = quality_batch_pause
        self._evaluators: dict[tuple[int, str], QualityEvaluator] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AdaptiveContentEngine":
        """Build an engine from LERNZEIT_* settings (Supabase if configured, else in-memory)."""
        settings = settings or get_settings()

        template_store: TemplateStore
        profile_store: ProfileStore
        metrics_store: QualityMetricsStore
        if settings.has_supabase_config():
            store = SupabaseStore(
                settings.supabase_url,
                settings.supabase_key,
                timeout=settings.supabase_timeout,
            )
            template_store = profile_store = metrics_store = store
            logger.info(f"Using Supabase store at {settings.supabase_url}")
        else:
            template_store = InMemoryTemplateStore()
            profile_store = InMemoryProfileStore()
            metrics_store = InMemoryQualityMetricsStore()
            logger.warning("Supabase not configured, using in-memory stores")

        rng = random.Random(settings.random_seed) if settings.random_seed is not None else None
        return cls(
            template_store=template_store,
            profile_store=profile_store,
            metrics_store=metrics_store,
            rng=rng,
            session_timeout_minutes=settings.session_timeout_minutes,
            min_quality=settings.min_template_quality,
            quality_batch_size=settings.quality_batch_size,
            quality_batch_pause=settings.quality_batch_pause,
            rotator_options={
                "archive_max_quality": settings.archive_max_quality,
                "archive_min_plays": settings.archive_min_plays,
                "archive_max_success_rate": settings.archive_max_success_rate,
                "pool_min_active": settings.pool_min_active,
            },
        )

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session(self, user_id: str, grade: int, category: str) -> str:
        return self.tracker.create_session(user_id, grade, category)

    async def clear_session(self, session_id: str) -> bool:
        return self.tracker.clear(session_id)

    def session_stats(self, session_id: str) -> Optional[dict[str, Any]]:
        return self.tracker.get_stats(session_id)

    # =========================================================================
    # Selection
    # =========================================================================

    async def select_best(
        self,
        candidates: Iterable[Template],
        user_id: str,
        session_id: Optional[str] = None,
        preferred_difficulty: Optional[str] = None,
        enforce_type_diversity: bool = True,
        exclude_ids: Iterable[str] = (),
        quarter: Optional[str] = None,
    ) -> Optional[RotationResult]:
        """
        Pick the best of the given candidates for the learner.

        With a live session only candidates of the session's grade and
        domain (and ``quarter``, if given) are eligible. Without an explicit
        difficulty the learner's recommended difficulty for the session's
        category and grade is used.
        """
        session = self.tracker.get_session(session_id)
        criteria = None
        if session is not None:
            criteria = SelectionCriteria(
                grade=session.grade,
                domain=domain_for_category(session.category),
                quarter=quarter,
            )
            if preferred_difficulty is None:
                preferred_difficulty = await self.controller.get_recommended_difficulty(
                    user_id, session.category, session.grade
                )
        elif quarter is not None:
            logger.warning(f"Ignoring quarter {quarter} without a live session")

        return await self.rotator.select_best(
            candidates,
            user_id,
            session_id=session_id,
            preferred_difficulty=preferred_difficulty or "medium",
            enforce_type_diversity=enforce_type_diversity,
            exclude_ids=exclude_ids,
            criteria=criteria,
        )

    async def next_template(
        self,
        user_id: str,
        session_id: str,
        quarter: Optional[str] = None,
        enforce_type_diversity: bool = True,
    ) -> Optional[RotationResult]:
        """Pull candidates from the template store for the session and pick one."""
        session = self.tracker.get_session(session_id)
        if session is None:
            logger.warning(f"Unknown or expired session {session_id}")
            return None

        difficulty = await self.controller.get_recommended_difficulty(user_id, session.category, session.grade)
        return await self.rotator.get_optimal_template(
            user_id,
            session.grade,
            session.category,
            session_id=session_id,
            quarter=quarter,
            preferred_difficulty=difficulty,
            enforce_type_diversity=enforce_type_diversity,
        )

    async def rotate_pool(self, grade: int, domain: str) -> Optional[PoolRotation]:
        return await self.rotator.rotate_template_pool(grade, domain)

    async def rotation_statistics(self, grade: int) -> Optional[dict[str, Any]]:
        return await self.rotator.get_rotation_statistics(grade)

    # =========================================================================
    # Difficulty
    # =========================================================================

    async def record_answer(
        self,
        user_id: str,
        category: str,
        grade: int,
        is_correct: bool,
        response_time_ms: float,
        used_help: bool = False,
        adjust: bool = True,
    ) -> Optional[DifficultyAdjustment]:
        """Record an answer; run an adjustment cycle once enough snapshots exist."""
        self.controller.record_answer(user_id, category, grade, is_correct, response_time_ms, used_help)
        if adjust and self.controller.should_adjust(user_id, category, grade):
            return await self.controller.perform_adaptive_adjustment(user_id, category, grade)
        return None

    async def perform_adaptive_adjustment(
        self,
        user_id: str,
        category: str,
        grade: int,
    ) -> Optional[DifficultyAdjustment]:
        return await self.controller.perform_adaptive_adjustment(user_id, category, grade)

    async def apply_user_feedback(
        self,
        user_id: str,
        category: str,
        grade: int,
        feedback: Union[FeedbackType, str],
    ) -> DifficultyAdjustment:
        return await self.controller.apply_user_feedback(user_id, category, grade, feedback)

    # =========================================================================
    # Quality
    # =========================================================================

    def evaluator(self, grade: int, category: str = "math") -> QualityEvaluator:
        key = (grade, category)
        if key not in self._evaluators:
            self._evaluators[key] = QualityEvaluator(
                grade,
                category,
                metrics_store=self.metrics_store,
                batch_size=self.quality_batch_size,
                batch_pause=self.quality_batch_pause,
            )
        return self._evaluators[key]

    async def evaluate(
        self,
        question: Question,
        grade: int,
        category: str = "math",
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        persist: bool = False,
    ) -> QualityReport:
        evaluator = self.evaluator(grade, category)
        report = evaluator.evaluate(question)
        if persist:
            await evaluator.store_report(question, report, user_id=user_id, session_id=session_id)
        return report

    async def evaluate_batch(
        self,
        questions: list[Question],
        grade: int,
        category: str = "math",
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        persist: bool = False,
    ) -> dict[Union[int, str], QualityReport]:
        return await self.evaluator(grade, category).batch_evaluate(
            questions, user_id=user_id, session_id=session_id, persist=persist
        )

    async def optimize(
        self,
        questions: list[Question],
        grade: int,
        category: str = "math",
    ) -> OptimizationResult:
        optimizer = QuestionOptimizer(self.evaluator(grade, category), rng=self.rng)
        return await optimizer.optimize(questions)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def shutdown(self) -> None:
        self.tracker.shutdown()
        closed = set()
        for store in (self.template_store, self.profile_store, self.metrics_store):
            if isinstance(store, SupabaseStore) and id(store) not in closed:
                await store.close()
                closed.add(id(store))
