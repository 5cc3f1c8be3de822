"""
Unit tests for the adaptive difficulty controller.

Tests cover:
- Behavior pattern classification
- Bounded adjustment computation
- Feedback fast-path and clamping
- Profile loading, caching and persistence failures
"""

import random

import pytest

from lernzeit.adaptive.difficulty_controller import (
    DifficultyController,
    PerformanceTracker,
    analyze_behavior_pattern,
    calculate_adjustment,
    derive_strengths_weaknesses,
    level_to_difficulty,
)
from lernzeit.core.models import (
    BehaviorPatternType,
    DifficultyProfile,
    FeedbackType,
    PerformanceMetrics,
)
from lernzeit.core.stores import InMemoryProfileStore, StoreError


class FailingProfileStore:
    """Profile store whose backend is unreachable."""

    def __init__(self):
        self.attempts = 0

    async def get_profile(self, user_id, category, grade):
        self.attempts += 1
        raise StoreError("timeout")

    async def upsert_profile(self, profile):
        self.attempts += 1
        raise StoreError("timeout")


def snapshots(accuracies, response_time=8_000.0, streak=0, help_requests=0):
    return [
        PerformanceMetrics(
            accuracy=a,
            response_time=response_time,
            streak_count=streak,
            help_requests=help_requests,
        )
        for a in accuracies
    ]


def profile(level=0.5):
    return DifficultyProfile(user_id="kid-1", category="math", grade=3, current_level=level)


# =============================================================================
# Classification
# =============================================================================


class TestBehaviorPattern:
    """Pattern classification from snapshot history."""

    def test_insufficient_data(self):
        pattern = analyze_behavior_pattern(snapshots([1.0, 1.0]))

        assert pattern.pattern_type == BehaviorPatternType.IMPROVING
        assert pattern.confidence == pytest.approx(0.3)

    def test_thriving(self):
        history = snapshots([0.9, 0.9, 0.9, 0.95, 0.95], streak=4)

        pattern = analyze_behavior_pattern(history)

        assert pattern.pattern_type == BehaviorPatternType.THRIVING
        assert pattern.confidence == pytest.approx(0.9)

    def test_high_accuracy_without_streak_is_not_thriving(self):
        pattern = analyze_behavior_pattern(snapshots([0.9, 0.9, 0.9], streak=1))

        assert pattern.pattern_type != BehaviorPatternType.THRIVING

    def test_struggling(self):
        history = snapshots([0.4, 0.3, 0.4], response_time=40_000, help_requests=3)

        pattern = analyze_behavior_pattern(history)

        assert pattern.pattern_type == BehaviorPatternType.STRUGGLING
        assert "Frequent help requests" in pattern.indicators

    def test_plateauing(self):
        pattern = analyze_behavior_pattern(snapshots([0.7, 0.7, 0.7, 0.7], response_time=20_000))

        assert pattern.pattern_type == BehaviorPatternType.PLATEAUING
        assert pattern.confidence == pytest.approx(0.7)

    def test_improving(self):
        pattern = analyze_behavior_pattern(snapshots([0.3, 0.3, 0.6, 0.7]))

        assert pattern.pattern_type == BehaviorPatternType.IMPROVING
        assert pattern.confidence == pytest.approx(0.8)


# =============================================================================
# Adjustment
# =============================================================================


class TestCalculateAdjustment:
    """Bounded deltas per cycle."""

    def test_thriving_learner_moves_up(self):
        history = snapshots([0.9, 0.9, 0.9, 0.95, 0.95], streak=5)
        pattern = analyze_behavior_pattern(history)

        adjustment = calculate_adjustment(profile(0.5), history[-1], pattern)

        assert adjustment.delta > 0
        assert adjustment.delta == pytest.approx(0.3)
        assert adjustment.new_level == pytest.approx(0.8)
        assert adjustment.pattern == BehaviorPatternType.THRIVING

    def test_struggling_delta_is_capped(self):
        history = snapshots([0.3, 0.3, 0.3], response_time=50_000, help_requests=4)
        pattern = analyze_behavior_pattern(history)

        adjustment = calculate_adjustment(profile(0.5), history[-1], pattern)

        assert adjustment.delta == pytest.approx(-0.3)
        assert adjustment.new_level == pytest.approx(0.2)

    def test_level_never_leaves_bounds(self):
        history = snapshots([1.0, 1.0, 1.0], streak=5)
        up = calculate_adjustment(profile(0.95), history[-1], analyze_behavior_pattern(history))

        slow = snapshots([0.2, 0.2, 0.2], response_time=60_000, help_requests=5)
        down = calculate_adjustment(profile(0.15), slow[-1], analyze_behavior_pattern(slow))

        assert up.new_level == 1.0
        assert down.new_level == pytest.approx(0.1)

    def test_plateau_nudge_is_reproducible(self):
        history = snapshots([0.7, 0.7, 0.7, 0.7], response_time=20_000)
        pattern = analyze_behavior_pattern(history)

        first = calculate_adjustment(profile(), history[-1], pattern, random.Random(3))
        second = calculate_adjustment(profile(), history[-1], pattern, random.Random(3))

        assert first.delta == second.delta
        assert abs(first.delta) == pytest.approx(0.05)

    def test_level_to_difficulty(self):
        assert level_to_difficulty(0.1) == "easy"
        assert level_to_difficulty(0.39) == "easy"
        assert level_to_difficulty(0.4) == "medium"
        assert level_to_difficulty(0.69) == "medium"
        assert level_to_difficulty(0.7) == "hard"

    def test_strengths_and_weaknesses(self):
        strong = PerformanceMetrics(accuracy=0.9, response_time=9_000, streak_count=4)
        weak = PerformanceMetrics(accuracy=0.4, response_time=35_000, help_requests=3)

        assert derive_strengths_weaknesses(strong) == (
            ["High accuracy", "Fast work", "Consistent performance"],
            [],
        )
        assert derive_strengths_weaknesses(weak) == (
            [],
            ["Low accuracy", "Slow work", "Needs a lot of support"],
        )


class TestPerformanceTracker:
    """Running counters and bounded history."""

    def test_record_updates_metrics(self):
        tracker = PerformanceTracker()

        tracker.record(True, 10_000)
        tracker.record(True, 20_000, used_help=True)
        current = tracker.record(False, 30_000)

        assert current.accuracy == pytest.approx(2 / 3)
        assert current.response_time == pytest.approx(20_000)
        assert current.help_requests == 1
        assert current.streak_count == 0
        assert len(tracker.history) == 3

    def test_history_is_bounded(self):
        tracker = PerformanceTracker()
        for _ in range(15):
            tracker.record(True, 5_000)

        assert len(tracker.history) == 10
        assert tracker.current.confidence_level == 1.0


# =============================================================================
# Controller
# =============================================================================


class TestDifficultyController:
    """Profiles, feedback and adjustment cycles."""

    @pytest.mark.asyncio
    async def test_default_profile(self, clock):
        controller = DifficultyController(clock=clock)

        loaded = await controller.load_profile("kid-1", "math", 3)

        assert loaded.current_level == 0.5
        assert await controller.get_recommended_difficulty("kid-1", "math", 3) == "medium"

    @pytest.mark.asyncio
    async def test_stored_profile_is_loaded_once(self, clock):
        store = InMemoryProfileStore()
        await store.upsert_profile(profile(0.2))
        controller = DifficultyController(profile_store=store, clock=clock)

        first = await controller.load_profile("kid-1", "math", 3)
        store.profiles.clear()
        second = await controller.load_profile("kid-1", "math", 3)

        assert first.current_level == pytest.approx(0.2)
        assert second.current_level == pytest.approx(0.2)
        assert await controller.get_recommended_difficulty("kid-1", "math", 3) == "easy"

    @pytest.mark.asyncio
    async def test_store_failure_falls_back_to_default(self, clock):
        controller = DifficultyController(profile_store=FailingProfileStore(), clock=clock)

        assert await controller.get_recommended_level("kid-1", "math", 3) == 0.5

    @pytest.mark.asyncio
    async def test_three_too_hard_clamps_at_floor(self, clock):
        store = InMemoryProfileStore()
        controller = DifficultyController(profile_store=store, clock=clock)

        levels = []
        for _ in range(3):
            adjustment = await controller.apply_user_feedback("kid-1", "math", 3, "too_hard")
            levels.append(adjustment.new_level)

        assert levels == [pytest.approx(0.35), pytest.approx(0.2), pytest.approx(0.1)]
        assert store.profiles[("kid-1", "math", 3)].current_level == pytest.approx(0.1)
        assert store.writes == 3

    @pytest.mark.asyncio
    async def test_feedback_ceiling(self, clock):
        store = InMemoryProfileStore()
        await store.upsert_profile(profile(0.85))
        controller = DifficultyController(profile_store=store, clock=clock)

        adjustment = await controller.apply_user_feedback("kid-1", "math", 3, FeedbackType.TOO_EASY)

        assert adjustment.new_level == pytest.approx(0.9)
        assert adjustment.confidence == pytest.approx(0.9)
        assert adjustment.adjustment_reason == "User feedback: too_easy"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "feedback,expected",
        [("too_hard", 0.35), ("too_easy", 0.65), ("thumbs_down", 0.45), ("thumbs_up", 0.55)],
    )
    async def test_each_feedback_signal(self, clock, feedback, expected):
        store = InMemoryProfileStore()
        controller = DifficultyController(profile_store=store, clock=clock)

        adjustment = await controller.apply_user_feedback("kid-1", "math", 3, feedback)

        assert adjustment.previous_level == pytest.approx(0.5)
        assert adjustment.new_level == pytest.approx(expected)
        assert store.profiles[("kid-1", "math", 3)].current_level == pytest.approx(expected)
        assert store.writes == 1

    @pytest.mark.asyncio
    async def test_unknown_feedback_raises(self, clock):
        controller = DifficultyController(clock=clock)

        with pytest.raises(ValueError):
            await controller.apply_user_feedback("kid-1", "math", 3, "meh")

    @pytest.mark.asyncio
    async def test_adjustment_cycle_updates_and_persists(self, clock):
        store = InMemoryProfileStore()
        controller = DifficultyController(profile_store=store, rng=random.Random(1), clock=clock)

        assert controller.should_adjust("kid-1", "math", 3) is False
        for _ in range(5):
            controller.record_answer("kid-1", "math", 3, is_correct=True, response_time_ms=8_000)
        assert controller.should_adjust("kid-1", "math", 3) is True

        adjustment = await controller.perform_adaptive_adjustment("kid-1", "math", 3)

        assert adjustment.new_level == pytest.approx(0.8)
        assert controller.behavior_pattern("kid-1", "math", 3).pattern_type == BehaviorPatternType.THRIVING
        assert controller.last_adjustment("kid-1", "math", 3) is adjustment

        saved = store.profiles[("kid-1", "math", 3)]
        assert saved.current_level == pytest.approx(0.8)
        assert saved.mastery_score == pytest.approx(1.0)
        assert saved.learning_velocity == pytest.approx(0.0)
        assert "High accuracy" in saved.strengths
        assert saved.weaknesses == []

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_memory_state(self, clock):
        store = FailingProfileStore()
        controller = DifficultyController(profile_store=store, clock=clock)

        adjustment = await controller.apply_user_feedback("kid-1", "math", 3, "too_easy")

        assert adjustment.new_level == pytest.approx(0.65)
        assert controller.cached_profile("kid-1", "math", 3).current_level == pytest.approx(0.65)
        assert store.attempts == 2

    @pytest.mark.asyncio
    async def test_reset_session(self, clock):
        controller = DifficultyController(clock=clock)
        for correct in (True, False, True):
            controller.record_answer("kid-1", "math", 3, correct, 12_000)

        stats = controller.session_stats("kid-1", "math", 3)
        controller.reset_session("kid-1", "math", 3)

        assert stats["questions_answered"] == 3
        assert stats["current_accuracy"] == pytest.approx(2 / 3)
        assert controller.should_adjust("kid-1", "math", 3) is False
        assert controller.session_stats("kid-1", "math", 3)["questions_answered"] == 0
