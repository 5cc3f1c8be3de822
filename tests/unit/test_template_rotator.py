"""
Unit tests for weighted template rotation.
"""

from datetime import timedelta

import pytest

from lernzeit.core.models import SelectionCriteria
from lernzeit.core.stores import InMemoryTemplateStore, StoreError
from lernzeit.selection.template_rotator import (
    TemplateRotator,
    difficulty_score,
    diversity_score,
    domain_for_category,
    ensure_question_type_diversity,
    freshness_score,
    quality_score,
    rotation_reason,
)
from lernzeit.session.tracker import SessionTracker


class FailingTemplateStore:
    """Template store whose backend is unreachable."""

    async def fetch_templates(self, criteria):
        raise StoreError("connection refused")

    async def fetch_grade_templates(self, grade):
        raise StoreError("connection refused")

    async def archive_templates(self, template_ids):
        raise StoreError("connection refused")

    async def recent_usage(self, template_ids, since):
        raise StoreError("connection refused")

    async def record_usage(self, template_id, user_id, session_id):
        raise StoreError("connection refused")


@pytest.fixture
def tracker(clock):
    return SessionTracker(clock=clock).init()


@pytest.fixture
def scenario_templates(template_factory):
    return [
        template_factory("T1", quality_score=0.9, question_type="MULTIPLE_CHOICE"),
        template_factory("T2", quality_score=0.5, question_type="MULTIPLE_CHOICE"),
        template_factory("T3", quality_score=0.8, question_type="FREETEXT"),
    ]


# =============================================================================
# Sub-scores
# =============================================================================


class TestQualityScore:
    """Stored quality, success-rate blend and validation bonus."""

    def test_stored_quality_without_plays(self, template_factory, clock):
        assert quality_score(template_factory("t", quality_score=0.8), clock()) == pytest.approx(0.8)

    def test_missing_quality_defaults(self, template_factory, clock):
        assert quality_score(template_factory("t", quality_score=None), clock()) == pytest.approx(0.5)

    def test_blends_success_rate(self, template_factory, clock):
        template = template_factory("t", quality_score=0.8, plays=10, correct=4)

        assert quality_score(template, clock()) == pytest.approx(0.6)

    def test_recent_validation_bonus_is_capped(self, template_factory, clock):
        recent = template_factory("t", quality_score=0.95, last_validated=clock() - timedelta(days=2))
        stale = template_factory("t", quality_score=0.5, last_validated=clock() - timedelta(days=30))

        assert quality_score(recent, clock()) == 1.0
        assert quality_score(stale, clock()) == pytest.approx(0.5)


class TestSubScores:
    """Freshness, difficulty match, diversity and reasons."""

    @pytest.mark.parametrize("uses,expected", [(0, 1.0), (1, 0.8), (2, 0.6), (3, 0.4), (4, 0.2), (50, 0.2)])
    def test_freshness_tiers(self, uses, expected):
        assert freshness_score(uses) == expected

    def test_difficulty_matrix(self):
        assert difficulty_score("medium", "medium") == 1.0
        assert difficulty_score("hard", "easy") == 0.3
        assert difficulty_score("easy", "medium") == 0.8
        assert difficulty_score("AFB I", "leicht") == 1.0
        assert difficulty_score("medium", "impossible") == 0.5

    def test_diversity_empty_session_is_neutral_high(self):
        assert diversity_score("SORT", {}) == 1.0

    def test_diversity_penalizes_overused_type(self):
        counts = {"MULTIPLE_CHOICE": 3, "SORT": 1}

        assert diversity_score("MULTIPLE_CHOICE", counts) == pytest.approx(0.0)
        assert diversity_score("SORT", counts) == pytest.approx(1.0)
        assert diversity_score("MATCH", counts) == pytest.approx(0.5)

    def test_rotation_reason(self):
        assert rotation_reason({"quality": 0.9, "freshness": 1.0, "difficulty": 0.7, "diversity": 0.5}) == (
            "High quality, Fresh content"
        )
        assert rotation_reason({"quality": 0.6}) == "Best available option"

    def test_domain_for_category(self):
        assert domain_for_category("math") == "Zahlen & Operationen"
        assert domain_for_category("Geometry") == "Raum & Form"
        assert domain_for_category("music") == "Zahlen & Operationen"


# =============================================================================
# Selection
# =============================================================================


class TestSelectBest:
    """Composite scoring and session gating."""

    @pytest.mark.asyncio
    async def test_prefers_quality_and_never_repeats(self, tracker, scenario_templates):
        rotator = TemplateRotator(tracker, min_quality=0.0)
        session_id = tracker.create_session("kid-1", 3, "math")

        first = await rotator.select_best(scenario_templates, "kid-1", session_id)
        second = await rotator.select_best(scenario_templates, "kid-1", session_id)
        third = await rotator.select_best(scenario_templates, "kid-1", session_id)
        fourth = await rotator.select_best(scenario_templates, "kid-1", session_id)

        assert first.template.id == "T1"
        assert first.total_score == pytest.approx(0.97)
        assert second.template.id == "T3"
        assert third.template.id == "T2"
        assert fourth is None

    @pytest.mark.asyncio
    async def test_low_quality_candidate_is_ineligible(self, tracker, scenario_templates):
        rotator = TemplateRotator(tracker)
        session_id = tracker.create_session("kid-1", 3, "math")

        picks = []
        for _ in range(3):
            result = await rotator.select_best(scenario_templates, "kid-1", session_id)
            if result is not None:
                picks.append(result.template.id)

        assert picks == ["T1", "T3"]
        assert tracker.used_template_ids(session_id) == frozenset({"T1", "T3"})

    @pytest.mark.asyncio
    async def test_selection_is_deterministic(self, clock, sample_templates):
        picks = []
        for _ in range(2):
            tracker = SessionTracker(clock=clock).init()
            rotator = TemplateRotator(tracker, clock=clock)
            session_id = tracker.create_session("kid-1", 3, "math")
            results = [await rotator.select_best(sample_templates, "kid-1", session_id) for _ in range(4)]
            picks.append([r.template.id for r in results])

        assert picks[0] == picks[1]
        assert len(set(picks[0])) == 4

    @pytest.mark.asyncio
    async def test_exclude_ids(self, tracker, sample_templates):
        rotator = TemplateRotator(tracker)

        result = await rotator.select_best(sample_templates, "kid-1", exclude_ids=["t-1"])

        assert result.template.id != "t-1"

    @pytest.mark.asyncio
    async def test_population_freshness(self, tracker, clock, template_factory):
        popular = template_factory("popular", quality_score=0.9)
        quiet = template_factory("quiet", quality_score=0.8)
        store = InMemoryTemplateStore([popular, quiet], clock=clock)
        for user in ("a", "b", "c"):
            await store.record_usage("popular", user, None)
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)

        result = await rotator.select_best([popular, quiet], "kid-1")

        assert result.template.id == "quiet"
        assert result.sub_scores["freshness"] == 1.0
        assert len(store.usage_events) == 4

    @pytest.mark.asyncio
    async def test_usage_outside_window_is_ignored(self, tracker, clock, template_factory):
        popular = template_factory("popular", quality_score=0.9)
        quiet = template_factory("quiet", quality_score=0.8)
        store = InMemoryTemplateStore([popular, quiet], clock=clock)
        for user in ("a", "b", "c"):
            await store.record_usage("popular", user, None)
        clock.advance(hours=25)
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)

        result = await rotator.select_best([popular, quiet], "kid-1")

        assert result.template.id == "popular"

    @pytest.mark.asyncio
    async def test_store_failure_during_scoring_is_soft(self, tracker, sample_templates):
        rotator = TemplateRotator(tracker, template_store=FailingTemplateStore())

        result = await rotator.select_best(sample_templates, "kid-1")

        assert result is not None
        assert result.sub_scores["freshness"] == 1.0


class TestOptimalTemplate:
    """Store-backed selection with exhaustion fallback."""

    @pytest.mark.asyncio
    async def test_exhaustion_resets_session(self, tracker, clock, template_factory):
        store = InMemoryTemplateStore(
            [template_factory("t-1", quality_score=0.9), template_factory("t-2", quality_score=0.8)],
            clock=clock,
        )
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)
        session_id = tracker.create_session("kid-1", 3, "math")

        first = await rotator.get_optimal_template("kid-1", 3, "math", session_id)
        second = await rotator.get_optimal_template("kid-1", 3, "math", session_id)
        third = await rotator.get_optimal_template("kid-1", 3, "math", session_id)

        assert {first.template.id, second.template.id} == {"t-1", "t-2"}
        assert third is not None
        assert tracker.used_template_ids(session_id) == frozenset({third.template.id})

    @pytest.mark.asyncio
    async def test_filters_by_category_domain(self, tracker, clock, template_factory):
        store = InMemoryTemplateStore(
            [template_factory("geo", domain="Raum & Form"), template_factory("num")],
            clock=clock,
        )
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)

        result = await rotator.get_optimal_template("kid-1", 3, "geometry")

        assert result.template.id == "geo"

    @pytest.mark.asyncio
    async def test_empty_store_returns_none(self, tracker, clock):
        rotator = TemplateRotator(tracker, template_store=InMemoryTemplateStore(clock=clock))

        assert await rotator.get_optimal_template("kid-1", 3, "math") is None

    @pytest.mark.asyncio
    async def test_unreachable_store_returns_none(self, tracker):
        rotator = TemplateRotator(tracker, template_store=FailingTemplateStore())

        assert await rotator.get_optimal_template("kid-1", 3, "math") is None


class TestUniqueTemplates:
    """Batch selection without repeats."""

    @pytest.mark.asyncio
    async def test_spreads_question_types(self, tracker, clock, sample_templates):
        store = InMemoryTemplateStore(sample_templates, clock=clock)
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)
        session_id = tracker.create_session("kid-1", 3, "math")
        criteria = SelectionCriteria(grade=3, domain="Zahlen & Operationen")

        first = await rotator.select_unique_templates(criteria, "kid-1", session_id, count=3)
        second = await rotator.select_unique_templates(criteria, "kid-1", session_id, count=3)

        assert [t.id for t in first] == ["t-1", "t-2", "t-3"]
        assert [t.id for t in second] == ["t-4"]

    @pytest.mark.asyncio
    async def test_exhaustion_starts_over_without_excluded_and_marks_used(self, tracker, clock, template_factory):
        store = InMemoryTemplateStore(
            [
                template_factory("a", quality_score=0.9),
                template_factory("b", quality_score=0.85, question_type="SORT"),
                template_factory("c", quality_score=0.8, question_type="MATCH"),
            ],
            clock=clock,
        )
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)
        session_id = tracker.create_session("kid-1", 3, "math")
        criteria = SelectionCriteria(grade=3, domain="Zahlen & Operationen")
        await rotator.select_unique_templates(criteria, "kid-1", session_id, count=3)

        restart = await rotator.select_unique_templates(criteria, "kid-1", session_id, count=2, exclude_ids=["a"])
        used_after_restart = tracker.used_template_ids(session_id)
        following = await rotator.select_unique_templates(criteria, "kid-1", session_id, count=3)

        assert {t.id for t in restart} == {"b", "c"}
        assert used_after_restart == frozenset({"b", "c"})
        assert [t.id for t in following] == ["a"]

    def test_hyphenated_types_join_the_round_robin(self, template_factory):
        pool = [
            template_factory("mc", question_type="multiple-choice"),
            template_factory("ft", question_type="freetext"),
        ]

        selected = ensure_question_type_diversity(pool, 2)

        assert [t.id for t in selected] == ["mc", "ft"]
        assert diversity_score("multiple-choice", {"MULTIPLE_CHOICE": 1, "FREETEXT": 3}) == pytest.approx(1.0)

    def test_round_robin_tops_up(self, sample_templates, template_factory):
        pool = [template_factory(f"s-{i}", question_type="SORT") for i in range(3)]

        assert len(ensure_question_type_diversity(pool, 2)) == 2
        types = [t.question_type for t in ensure_question_type_diversity(sample_templates, 4)]
        assert types == ["MULTIPLE_CHOICE", "FREETEXT", "SORT", "MATCH"]


class TestPoolMaintenance:
    """Archival and pool statistics."""

    @pytest.mark.asyncio
    async def test_rotate_pool_archives_low_performers(self, tracker, clock, sample_templates, template_factory):
        weak = template_factory("weak", quality_score=0.3, plays=20, correct=5)
        popular_but_fine = template_factory("busy", quality_score=0.3, plays=20, correct=15)
        store = InMemoryTemplateStore(sample_templates + [weak, popular_but_fine], clock=clock)
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)

        rotation = await rotator.rotate_template_pool(3, "Zahlen & Operationen")

        assert rotation.archived_ids == ["weak"]
        assert rotation.active_count == 6
        assert rotation.pool_low is True
        assert store.templates["weak"].is_active is False

    @pytest.mark.asyncio
    async def test_rotate_pool_store_failure(self, tracker):
        rotator = TemplateRotator(tracker, template_store=FailingTemplateStore())

        assert await rotator.rotate_template_pool(3, "Zahlen & Operationen") is None

    @pytest.mark.asyncio
    async def test_rotation_statistics(self, tracker, clock, sample_templates, template_factory):
        archived = template_factory("old", status="ARCHIVED", question_type="SORT")
        store = InMemoryTemplateStore(sample_templates + [archived], clock=clock)
        rotator = TemplateRotator(tracker, template_store=store, clock=clock)

        stats = await rotator.get_rotation_statistics(3)

        assert stats["total"] == 6
        assert stats["active"] == 5
        assert stats["archived"] == 1
        assert stats["by_question_type"]["SORT"] == 2
        assert stats["average_quality"] == pytest.approx(0.76)
