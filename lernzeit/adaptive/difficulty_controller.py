"""
Adaptive Difficulty Controller.

Keeps one difficulty profile per (learner, category, grade) and moves its
continuous level in response to two signals:

1. Automatic cycle: rolling performance snapshots are classified into a
   behavior pattern (struggling, thriving, plateauing, improving) and a
   bounded delta is computed from accuracy, response time, the pattern and
   help requests.
2. Explicit feedback: too_hard / too_easy / thumbs_up / thumbs_down apply a
   fixed delta immediately, bypassing the classifier.

Level bounds:
- automatic path: [0.1, 1.0]
- feedback path:  [0.1, 0.9]

Every adjustment is persisted through the profile store. Persistence
failures are logged; the in-memory profile stays authoritative for the
running session.
"""
from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Union

from loguru import logger

from lernzeit.core.models import (
    BehaviorPattern,
    BehaviorPatternType,
    DifficultyAdjustment,
    DifficultyProfile,
    FeedbackType,
    PerformanceMetrics,
    utcnow,
)
from lernzeit.core.stores import ProfileStore, StoreError
from lernzeit.core.tuning import (
    ADJUSTMENT_RULES,
    DEFAULT_LEVEL,
    FEEDBACK_CONFIDENCE,
    FEEDBACK_DELTAS,
    FEEDBACK_LEVEL_MAX,
    HISTORY_SIZE,
    LEVEL_EASY_BELOW,
    LEVEL_MAX,
    LEVEL_MEDIUM_BELOW,
    LEVEL_MIN,
    MAX_DELTA,
    MIN_SNAPSHOTS,
    PATTERN_CONFIDENCE,
    PATTERN_DELTAS,
    PATTERN_THRESHOLDS,
    STREAK_CONFIDENCE_STEP,
    STRENGTH_RULES,
    WEAKNESS_RULES,
)

ProfileKey = tuple[str, str, int]


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def level_to_difficulty(level: float) -> str:
    """Continuous level -> categorical difficulty used by the rotator."""
    if level < LEVEL_EASY_BELOW:
        return "easy"
    if level < LEVEL_MEDIUM_BELOW:
        return "medium"
    return "hard"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# =============================================================================
# Classification and adjustment
# =============================================================================

def analyze_behavior_pattern(history: list[PerformanceMetrics]) -> BehaviorPattern:
    """
    Classify recent performance into one of four patterns.

    Needs at least three snapshots; with fewer the learner is assumed to be
    improving, with low confidence.
    """
    t = PATTERN_THRESHOLDS

    if len(history) < MIN_SNAPSHOTS:
        return BehaviorPattern(
            pattern_type=BehaviorPatternType.IMPROVING,
            confidence=PATTERN_CONFIDENCE["insufficient"],
            recommended_action="Collect more data",
            indicators=["Too few data points for analysis"],
        )

    avg_accuracy = _mean([p.accuracy for p in history])
    avg_response_time = _mean([p.response_time for p in history])
    recent_accuracy = _mean([p.accuracy for p in history[-2:]])
    earlier_accuracy = _mean([p.accuracy for p in history[:-2]])
    accuracy_trend = recent_accuracy - earlier_accuracy

    has_high_streak = any(p.streak_count >= t["thriving_streak"] for p in history)
    needs_help = any(p.help_requests > t["help_indicator"] for p in history)

    if avg_accuracy < t["struggling_accuracy"] and avg_response_time > t["struggling_response_ms"]:
        indicators = ["Low accuracy", "Slow responses"]
        if needs_help:
            indicators.append("Frequent help requests")
        return BehaviorPattern(
            pattern_type=BehaviorPatternType.STRUGGLING,
            confidence=PATTERN_CONFIDENCE["struggling"],
            recommended_action="Reduce difficulty and offer support",
            indicators=indicators,
        )

    if avg_accuracy >= t["thriving_accuracy"] and has_high_streak:
        return BehaviorPattern(
            pattern_type=BehaviorPatternType.THRIVING,
            confidence=PATTERN_CONFIDENCE["thriving"],
            recommended_action="Raise difficulty for further challenge",
            indicators=["High accuracy", "Long success streak"],
        )

    if (
        abs(accuracy_trend) < t["plateau_trend"]
        and t["plateau_accuracy_low"] < avg_accuracy < t["plateau_accuracy_high"]
    ):
        return BehaviorPattern(
            pattern_type=BehaviorPatternType.PLATEAUING,
            confidence=PATTERN_CONFIDENCE["plateauing"],
            recommended_action="Introduce other approaches or topics",
            indicators=["Steady performance", "Medium accuracy"],
        )

    if accuracy_trend > t["improving_trend"]:
        return BehaviorPattern(
            pattern_type=BehaviorPatternType.IMPROVING,
            confidence=PATTERN_CONFIDENCE["improving"],
            recommended_action="Keep the current approach",
            indicators=["Rising accuracy", "Positive development"],
        )

    return BehaviorPattern(
        pattern_type=BehaviorPatternType.PLATEAUING,
        confidence=PATTERN_CONFIDENCE["fallback"],
        recommended_action="Review learning strategy",
        indicators=["Unclear development"],
    )


def calculate_adjustment(
    profile: DifficultyProfile,
    performance: PerformanceMetrics,
    pattern: BehaviorPattern,
    rng: Optional[random.Random] = None,
) -> DifficultyAdjustment:
    """Bounded level change for one automatic adjustment cycle."""
    r = ADJUSTMENT_RULES
    rng = rng or random.Random()
    delta = 0.0
    reasons = []

    if performance.accuracy >= r["excellent_accuracy"] and performance.streak_count >= r["excellent_streak"]:
        delta += r["excellent_delta"]
        reasons.append("Excellent performance")
    elif performance.accuracy <= r["low_accuracy"]:
        delta += r["low_accuracy_delta"]
        reasons.append("Low accuracy")

    if performance.response_time < r["fast_response_ms"] and performance.accuracy >= r["fast_accuracy"]:
        delta += r["fast_delta"]
        reasons.append("Fast correct answers")
    elif performance.response_time > r["slow_response_ms"]:
        delta += r["slow_delta"]
        reasons.append("Long working time")

    kind = pattern.pattern_type
    if kind == BehaviorPatternType.STRUGGLING:
        delta += PATTERN_DELTAS["struggling"]
        reasons.append("Difficulties detected")
    elif kind == BehaviorPatternType.THRIVING:
        delta += PATTERN_DELTAS["thriving"]
        reasons.append("Excellent progress")
    elif kind == BehaviorPatternType.PLATEAUING:
        nudge = PATTERN_DELTAS["plateauing"]
        delta += nudge if rng.random() > 0.5 else -nudge
        reasons.append("Variety for motivation")
    elif kind == BehaviorPatternType.IMPROVING:
        delta += PATTERN_DELTAS["improving"]
        reasons.append("Positive development")

    if performance.help_requests > r["help_requests"]:
        delta += r["help_delta"]
        reasons.append("Frequent help requests")

    delta = clamp(delta, -MAX_DELTA, MAX_DELTA)
    new_level = clamp(profile.current_level + delta, LEVEL_MIN, LEVEL_MAX)

    return DifficultyAdjustment(
        previous_level=profile.current_level,
        new_level=new_level,
        adjustment_reason=", ".join(reasons),
        confidence=pattern.confidence,
        delta=delta,
        pattern=kind,
    )


def derive_strengths_weaknesses(performance: PerformanceMetrics) -> tuple[list[str], list[str]]:
    strengths = []
    weaknesses = []

    if performance.accuracy >= STRENGTH_RULES["accuracy"]:
        strengths.append("High accuracy")
    if performance.response_time <= STRENGTH_RULES["response_ms"]:
        strengths.append("Fast work")
    if performance.streak_count >= STRENGTH_RULES["streak"]:
        strengths.append("Consistent performance")

    if performance.accuracy <= WEAKNESS_RULES["accuracy"]:
        weaknesses.append("Low accuracy")
    if performance.response_time >= WEAKNESS_RULES["response_ms"]:
        weaknesses.append("Slow work")
    if performance.help_requests >= WEAKNESS_RULES["help_requests"]:
        weaknesses.append("Needs a lot of support")

    return strengths, weaknesses


# =============================================================================
# Per-session performance
# =============================================================================

@dataclass
class PerformanceTracker:
    """Running counters for one learner session plus a bounded snapshot history."""

    start_time: datetime = field(default_factory=utcnow)
    question_count: int = 0
    correct_answers: int = 0
    total_response_time: float = 0.0
    help_requests: int = 0
    current_streak: int = 0
    current: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    history: deque = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))

    def record(self, is_correct: bool, response_time_ms: float, used_help: bool = False) -> PerformanceMetrics:
        self.question_count += 1
        self.total_response_time += response_time_ms

        if is_correct:
            self.correct_answers += 1
            self.current_streak += 1
        else:
            self.current_streak = 0

        if used_help:
            self.help_requests += 1

        self.current = PerformanceMetrics(
            accuracy=self.correct_answers / self.question_count,
            response_time=self.total_response_time / self.question_count,
            confidence_level=min(1.0, self.current_streak * STREAK_CONFIDENCE_STEP) if is_correct else 0.0,
            help_requests=self.help_requests,
            streak_count=self.current_streak,
        )
        self.history.append(self.current)
        return self.current

    def reset(self, now: Optional[datetime] = None) -> None:
        self.start_time = now or utcnow()
        self.question_count = 0
        self.correct_answers = 0
        self.total_response_time = 0.0
        self.help_requests = 0
        self.current_streak = 0
        self.current = PerformanceMetrics()
        self.history.clear()

    def stats(self, now: datetime) -> dict[str, Any]:
        return {
            "questions_answered": self.question_count,
            "current_accuracy": (
                self.correct_answers / self.question_count if self.question_count else 0.0
            ),
            "current_streak": self.current_streak,
            "session_duration": (now - self.start_time).total_seconds(),
        }


# =============================================================================
# Controller
# =============================================================================

class DifficultyController:
    """
    Owns difficulty profiles and performance trackers for active learners.

    Profiles are loaded lazily from the profile store and cached; a learner
    without a stored profile starts at level 0.5.
    """

    def __init__(
        self,
        profile_store: Optional[ProfileStore] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.profile_store = profile_store
        self.rng = rng or random.Random()
        self._clock = clock
        self._profiles: dict[ProfileKey, DifficultyProfile] = {}
        self._trackers: dict[ProfileKey, PerformanceTracker] = {}
        self._last_adjustment: dict[ProfileKey, DifficultyAdjustment] = {}
        self._patterns: dict[ProfileKey, BehaviorPattern] = {}
        self._adapting: set[ProfileKey] = set()

    # =========================================================================
    # Profiles
    # =========================================================================

    async def load_profile(self, user_id: str, category: str, grade: int) -> DifficultyProfile:
        key = (user_id, category, grade)
        cached = self._profiles.get(key)
        if cached is not None:
            return cached

        profile = None
        if self.profile_store is not None:
            try:
                profile = await self.profile_store.get_profile(user_id, category, grade)
            except StoreError as e:
                logger.error(f"Failed to load difficulty profile for {user_id}/{category}/{grade}: {e}")

        if profile is None:
            profile = DifficultyProfile(
                user_id=user_id,
                category=category,
                grade=grade,
                current_level=DEFAULT_LEVEL,
                last_updated=self._clock(),
            )
            logger.debug(f"Created default difficulty profile for {user_id}/{category}/{grade}")

        self._profiles[key] = profile
        return profile

    def cached_profile(self, user_id: str, category: str, grade: int) -> Optional[DifficultyProfile]:
        return self._profiles.get((user_id, category, grade))

    async def _persist(self, profile: DifficultyProfile) -> bool:
        if self.profile_store is None:
            return False
        try:
            await self.profile_store.upsert_profile(profile)
            return True
        except StoreError as e:
            logger.error(f"Failed to save difficulty profile for {profile.user_id}: {e}")
            return False

    # =========================================================================
    # Performance
    # =========================================================================

    def tracker(self, user_id: str, category: str, grade: int) -> PerformanceTracker:
        key = (user_id, category, grade)
        if key not in self._trackers:
            self._trackers[key] = PerformanceTracker(start_time=self._clock())
        return self._trackers[key]

    def record_answer(
        self,
        user_id: str,
        category: str,
        grade: int,
        is_correct: bool,
        response_time_ms: float,
        used_help: bool = False,
    ) -> PerformanceMetrics:
        return self.tracker(user_id, category, grade).record(is_correct, response_time_ms, used_help)

    def should_adjust(self, user_id: str, category: str, grade: int) -> bool:
        key = (user_id, category, grade)
        tracker = self._trackers.get(key)
        return tracker is not None and len(tracker.history) >= MIN_SNAPSHOTS and key not in self._adapting

    def reset_session(self, user_id: str, category: str, grade: int) -> None:
        self.tracker(user_id, category, grade).reset(self._clock())

    def session_stats(self, user_id: str, category: str, grade: int) -> dict[str, Any]:
        return self.tracker(user_id, category, grade).stats(self._clock())

    # =========================================================================
    # Adjustments
    # =========================================================================

    async def perform_adaptive_adjustment(
        self,
        user_id: str,
        category: str,
        grade: int,
    ) -> Optional[DifficultyAdjustment]:
        """Run one automatic adjustment cycle and persist the updated profile."""
        key = (user_id, category, grade)
        if key in self._adapting:
            return None

        self._adapting.add(key)
        try:
            profile = await self.load_profile(user_id, category, grade)
            tracker = self.tracker(user_id, category, grade)
            history = list(tracker.history)
            performance = tracker.current

            pattern = analyze_behavior_pattern(history)
            adjustment = calculate_adjustment(profile, performance, pattern, self.rng)
            strengths, weaknesses = derive_strengths_weaknesses(performance)

            updated = profile.model_copy(update={
                "current_level": adjustment.new_level,
                "mastery_score": performance.accuracy,
                "learning_velocity": (
                    history[-1].accuracy - history[0].accuracy if len(history) >= 2 else 0.0
                ),
                "strengths": strengths,
                "weaknesses": weaknesses,
                "last_updated": self._clock(),
            })
            self._profiles[key] = updated
            self._patterns[key] = pattern
            self._last_adjustment[key] = adjustment

            await self._persist(updated)

            logger.info(
                f"Difficulty adjusted from {adjustment.previous_level:.2f} to {adjustment.new_level:.2f} "
                f"({pattern.pattern_type.value}, {adjustment.adjustment_reason})"
            )
            return adjustment
        finally:
            self._adapting.discard(key)

    async def apply_user_feedback(
        self,
        user_id: str,
        category: str,
        grade: int,
        feedback: Union[FeedbackType, str],
    ) -> DifficultyAdjustment:
        """Apply an explicit feedback signal immediately."""
        feedback = FeedbackType(feedback)
        delta = FEEDBACK_DELTAS[feedback.value]

        profile = await self.load_profile(user_id, category, grade)
        new_level = clamp(profile.current_level + delta, LEVEL_MIN, FEEDBACK_LEVEL_MAX)

        updated = profile.model_copy(update={
            "current_level": new_level,
            "last_updated": self._clock(),
        })
        key = (user_id, category, grade)
        self._profiles[key] = updated

        adjustment = DifficultyAdjustment(
            previous_level=profile.current_level,
            new_level=new_level,
            adjustment_reason=f"User feedback: {feedback.value}",
            confidence=FEEDBACK_CONFIDENCE,
            delta=delta,
        )
        self._last_adjustment[key] = adjustment

        await self._persist(updated)
        logger.info(f"Feedback {feedback.value}: difficulty {profile.current_level:.2f} -> {new_level:.2f}")
        return adjustment

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_recommended_level(self, user_id: str, category: str, grade: int) -> float:
        profile = await self.load_profile(user_id, category, grade)
        return profile.current_level

    async def get_recommended_difficulty(self, user_id: str, category: str, grade: int) -> str:
        return level_to_difficulty(await self.get_recommended_level(user_id, category, grade))

    def last_adjustment(self, user_id: str, category: str, grade: int) -> Optional[DifficultyAdjustment]:
        return self._last_adjustment.get((user_id, category, grade))

    def behavior_pattern(self, user_id: str, category: str, grade: int) -> Optional[BehaviorPattern]:
        return self._patterns.get((user_id, category, grade))
