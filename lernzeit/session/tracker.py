"""
Session-scoped duplicate prevention.

Tracks which templates (and question hashes) a learner has already been
shown during one play session, so the rotator never serves the same
template twice in a session.

Sessions live in process memory inside a SessionTracker instance. There is
no timer thread: expired sessions are swept lazily whenever a new session
is created (or when sweep() is called explicitly).
"""
from __future__ import annotations

import base64
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from loguru import logger

from lernzeit.core.models import Template, normalize_question_type, utcnow
from lernzeit.core.tuning import (
    QUESTION_HASH_LENGTH,
    SEMANTIC_DUPLICATE_SIMILARITY,
    SESSION_TIMEOUT_MINUTES,
)


@dataclass
class LearnerSession:
    """In-memory state for one play session."""

    session_id: str
    user_id: str
    grade: int
    category: str
    start_time: datetime
    last_activity: datetime

    used_template_ids: set[str] = field(default_factory=set)
    used_question_hashes: set[str] = field(default_factory=set)
    type_counts: Counter = field(default_factory=Counter)

    def is_expired(self, now: datetime, timeout: timedelta) -> bool:
        return now - self.last_activity > timeout

    def touch(self, now: datetime) -> None:
        self.last_activity = now

    def to_stats(self, now: datetime) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "templates_used": len(self.used_template_ids),
            "questions_answered": len(self.used_question_hashes),
            "start_time": self.start_time,
            "last_activity": self.last_activity,
            "duration": (now - self.start_time).total_seconds(),
            "grade": self.grade,
            "category": self.category,
            "type_counts": dict(self.type_counts),
        }


def question_hash(template: Template) -> str:
    """Short content hash of a template's prompt, domain and difficulty."""
    content = f"{template.student_prompt}-{template.domain}-{template.difficulty}"
    return base64.b64encode(content.encode("utf-8")).decode("ascii")[:QUESTION_HASH_LENGTH]


def hash_similarity(hash1: str, hash2: str) -> float:
    """Positional character agreement between two equal-length hashes."""
    if len(hash1) != len(hash2) or not hash1:
        return 0.0
    matches = sum(1 for a, b in zip(hash1, hash2) if a == b)
    return matches / len(hash1)


class SessionTracker:
    """
    Owns every active learner session of the process.

    Usage:
        tracker = SessionTracker()
        session_id = tracker.create_session("kid-1", grade=3, category="math")
        tracker.mark_used(session_id, "tpl-42", question_type="SORT")
        tracker.is_used(session_id, "tpl-42")  # True
    """

    def __init__(
        self,
        timeout_minutes: int = SESSION_TIMEOUT_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.timeout = timedelta(minutes=timeout_minutes)
        self._clock = clock
        self._sessions: dict[str, LearnerSession] = {}
        self._running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def init(self) -> "SessionTracker":
        self._sessions.clear()
        self._running = True
        return self

    def shutdown(self) -> int:
        """Drop all sessions. Returns how many were dropped."""
        dropped = len(self._sessions)
        self._sessions.clear()
        self._running = False
        if dropped:
            logger.info(f"Session tracker shut down, dropped {dropped} sessions")
        return dropped

    def sweep(self) -> int:
        """Remove sessions idle for longer than the timeout."""
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.is_expired(now, self.timeout)
        ]
        for session_id in expired:
            del self._sessions[session_id]
            logger.debug(f"Cleaned up expired session: {session_id}")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(self, user_id: str, grade: int, category: str) -> str:
        now = self._clock()
        session_id = f"{user_id}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"
        self._sessions[session_id] = LearnerSession(
            session_id=session_id,
            user_id=user_id,
            grade=grade,
            category=category,
            start_time=now,
            last_activity=now,
        )
        logger.info(f"Created new session {session_id} for user {user_id}")

        self.sweep()
        return session_id

    def get_session(self, session_id: Optional[str]) -> Optional[LearnerSession]:
        """Live session or None (unknown or expired)."""
        if session_id is None:
            return None
        session = self._sessions.get(session_id)
        if session is None or session.is_expired(self._clock(), self.timeout):
            return None
        return session

    def clear(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info(f"Manually cleared session: {session_id}")
        return removed

    # =========================================================================
    # Duplicate prevention
    # =========================================================================

    def is_used(self, session_id: str, template_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and template_id in session.used_template_ids

    def mark_used(
        self,
        session_id: str,
        template_id: str,
        question_type: Optional[str] = None,
        question_hash: Optional[str] = None,
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Unknown session: {session_id}")

        if template_id not in session.used_template_ids:
            session.used_template_ids.add(template_id)
            if question_type:
                session.type_counts[normalize_question_type(question_type)] += 1
        if question_hash:
            session.used_question_hashes.add(question_hash)
        session.touch(self._clock())

    def used_template_ids(self, session_id: Optional[str]) -> frozenset[str]:
        session = self._sessions.get(session_id) if session_id else None
        return frozenset(session.used_template_ids) if session else frozenset()

    def type_counts(self, session_id: Optional[str]) -> dict[str, int]:
        session = self._sessions.get(session_id) if session_id else None
        return dict(session.type_counts) if session else {}

    def reset_used(self, session_id: str) -> None:
        """Forget everything served in the session (pool exhausted)."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        logger.warning(
            f"All templates used in session {session_id} "
            f"({len(session.used_template_ids)} served), resetting session memory"
        )
        session.used_template_ids.clear()
        session.used_question_hashes.clear()
        session.type_counts.clear()
        session.touch(self._clock())

    def is_semantic_duplicate(self, session_id: str, template: Template) -> bool:
        """True if the template's hash is close to one already served."""
        session = self._sessions.get(session_id)
        if session is None:
            return False

        new_hash = question_hash(template)
        for used_hash in session.used_question_hashes:
            similarity = hash_similarity(new_hash, used_hash)
            if similarity > SEMANTIC_DUPLICATE_SIMILARITY:
                logger.debug(f"Semantic duplicate detected: {similarity:.2f} similarity")
                return True
        return False

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self, session_id: str) -> Optional[dict[str, Any]]:
        session = self.get_session(session_id)
        if session is None:
            return None
        return session.to_stats(self._clock())

    def get_all_stats(self) -> list[dict[str, Any]]:
        now = self._clock()
        stats = []
        for session in self._sessions.values():
            entry = session.to_stats(now)
            entry["is_expired"] = session.is_expired(now, self.timeout)
            stats.append(entry)
        return stats
