"""
Unit tests for session-scoped duplicate prevention.
"""

import pytest

from lernzeit.session.tracker import SessionTracker, hash_similarity, question_hash


@pytest.fixture
def tracker(clock):
    return SessionTracker(timeout_minutes=30, clock=clock).init()


class TestSessionLifecycle:
    """Create, expire, clear."""

    def test_create_session_returns_unique_ids(self, tracker):
        first = tracker.create_session("kid-1", 3, "math")
        second = tracker.create_session("kid-1", 3, "math")

        assert first != second
        assert first.startswith("kid-1-")
        assert len(tracker) == 2

    def test_session_expires_after_timeout(self, tracker, clock):
        session_id = tracker.create_session("kid-1", 3, "math")

        clock.advance(minutes=29)
        assert tracker.get_session(session_id) is not None

        clock.advance(minutes=2)
        assert tracker.get_session(session_id) is None
        assert tracker.get_stats(session_id) is None

    def test_activity_keeps_session_alive(self, tracker, clock):
        session_id = tracker.create_session("kid-1", 3, "math")

        clock.advance(minutes=25)
        tracker.mark_used(session_id, "t-1")
        clock.advance(minutes=25)

        assert tracker.get_session(session_id) is not None

    def test_sweep_on_create_removes_expired(self, tracker, clock):
        old = tracker.create_session("kid-1", 3, "math")
        clock.advance(minutes=31)

        new = tracker.create_session("kid-2", 2, "math")

        assert old not in tracker
        assert new in tracker

    def test_clear(self, tracker):
        session_id = tracker.create_session("kid-1", 3, "math")

        assert tracker.clear(session_id) is True
        assert tracker.clear(session_id) is False
        assert tracker.is_used(session_id, "t-1") is False

    def test_shutdown_drops_everything(self, tracker):
        tracker.create_session("kid-1", 3, "math")
        tracker.create_session("kid-2", 3, "math")

        assert tracker.shutdown() == 2
        assert len(tracker) == 0


class TestDuplicatePrevention:
    """Used-template bookkeeping."""

    def test_mark_and_query(self, tracker):
        session_id = tracker.create_session("kid-1", 3, "math")

        assert tracker.is_used(session_id, "t-1") is False
        tracker.mark_used(session_id, "t-1", question_type="sort")

        assert tracker.is_used(session_id, "t-1") is True
        assert tracker.is_used(session_id, "t-2") is False
        assert tracker.type_counts(session_id) == {"SORT": 1}

    def test_marking_twice_counts_type_once(self, tracker):
        session_id = tracker.create_session("kid-1", 3, "math")

        tracker.mark_used(session_id, "t-1", question_type="SORT")
        tracker.mark_used(session_id, "t-1", question_type="SORT")

        assert tracker.type_counts(session_id) == {"SORT": 1}
        assert tracker.used_template_ids(session_id) == frozenset({"t-1"})

    def test_mark_unknown_session_raises(self, tracker):
        with pytest.raises(ValueError):
            tracker.mark_used("missing", "t-1")

    def test_unknown_session_queries_are_soft(self, tracker):
        assert tracker.is_used("missing", "t-1") is False
        assert tracker.used_template_ids("missing") == frozenset()
        assert tracker.type_counts(None) == {}

    def test_reset_used(self, tracker):
        session_id = tracker.create_session("kid-1", 3, "math")
        tracker.mark_used(session_id, "t-1", question_type="SORT", question_hash="abc")

        tracker.reset_used(session_id)

        assert tracker.used_template_ids(session_id) == frozenset()
        assert tracker.type_counts(session_id) == {}

    def test_semantic_duplicate(self, tracker, template_factory):
        session_id = tracker.create_session("kid-1", 3, "math")
        template = template_factory("t-1", student_prompt="Addiere zwei Zahlen bis 100")
        tracker.mark_used(session_id, template.id, question_hash=question_hash(template))

        twin = template_factory("t-9", student_prompt="Addiere zwei Zahlen bis 100")
        other = template_factory("t-2", student_prompt="Sortiere die Formen nach Ecken", difficulty="hard")

        assert tracker.is_semantic_duplicate(session_id, twin) is True
        assert tracker.is_semantic_duplicate(session_id, other) is False


class TestHashing:
    """Question hashes."""

    def test_hash_length_and_determinism(self, template_factory):
        template = template_factory("t-1")

        assert len(question_hash(template)) == 16
        assert question_hash(template) == question_hash(template_factory("t-1"))

    def test_similarity(self):
        assert hash_similarity("abcd", "abcd") == 1.0
        assert hash_similarity("abcd", "abce") == 0.75
        assert hash_similarity("abc", "abcd") == 0.0


class TestStats:
    """Session statistics."""

    def test_get_stats(self, tracker, clock):
        session_id = tracker.create_session("kid-1", 3, "math")
        tracker.mark_used(session_id, "t-1", question_type="SORT", question_hash="h1")
        tracker.mark_used(session_id, "t-2", question_type="MATCH", question_hash="h2")
        clock.advance(minutes=5)

        stats = tracker.get_stats(session_id)

        assert stats["templates_used"] == 2
        assert stats["questions_answered"] == 2
        assert stats["duration"] == pytest.approx(300.0)
        assert stats["grade"] == 3
        assert stats["category"] == "math"

    def test_get_all_stats_flags_expired(self, tracker, clock):
        tracker.create_session("kid-1", 3, "math")
        clock.advance(minutes=45)

        stats = tracker.get_all_stats()

        assert len(stats) == 1
        assert stats[0]["is_expired"] is True
