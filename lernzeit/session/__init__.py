"""
Session tracking: per-session duplicate prevention with lazy expiry.
"""
from lernzeit.session.tracker import (
    LearnerSession,
    SessionTracker,
    hash_similarity,
    question_hash,
)

__all__ = [
    "LearnerSession",
    "SessionTracker",
    "hash_similarity",
    "question_hash",
]
