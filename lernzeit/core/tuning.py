"""
Scoring weights and thresholds for the content selection engine.

Every numeric constant that shapes a selection, a difficulty adjustment or a
quality score lives here, so the scoring contract can be read (and tested)
in one place. Components import from this module instead of carrying their
own literals.
"""
from __future__ import annotations

# =============================================================================
# Question types and difficulties
# =============================================================================

QUESTION_TYPES = ("MULTIPLE_CHOICE", "FREETEXT", "SORT", "MATCH")

DIFFICULTIES = ("easy", "medium", "hard")

# AFB (Anforderungsbereich) tiers and spelling variants found in the store
DIFFICULTY_ALIASES = {
    "easy": "easy",
    "leicht": "easy",
    "afb i": "easy",
    "afb1": "easy",
    "afb_i": "easy",
    "medium": "medium",
    "mittel": "medium",
    "afb ii": "medium",
    "afb2": "medium",
    "afb_ii": "medium",
    "hard": "hard",
    "schwer": "hard",
    "afb iii": "hard",
    "afb3": "hard",
    "afb_iii": "hard",
}

# Curriculum domains keyed by the category names the app uses
CATEGORY_DOMAINS = {
    "math": "Zahlen & Operationen",
    "mathematik": "Zahlen & Operationen",
    "geometry": "Raum & Form",
    "measurement": "Größen & Messen",
    "data": "Daten & Zufall",
}
DEFAULT_DOMAIN = "Zahlen & Operationen"

MATH_CATEGORIES = frozenset({"math", "mathematik"})

# =============================================================================
# Session tracking
# =============================================================================

SESSION_TIMEOUT_MINUTES = 30
SEMANTIC_DUPLICATE_SIMILARITY = 0.8
QUESTION_HASH_LENGTH = 16

# =============================================================================
# Template rotation
# =============================================================================

ROTATION_WEIGHTS = {
    "quality": 0.30,
    "freshness": 0.25,
    "difficulty": 0.20,
    "diversity": 0.25,
}

MIN_TEMPLATE_QUALITY = 0.6
UNIQUE_SELECTION_MIN_QUALITY = 0.7
DEFAULT_TEMPLATE_QUALITY = 0.5

VALIDATION_BONUS_DAYS = 7
VALIDATION_BONUS_FACTOR = 1.1

FRESHNESS_WINDOW_HOURS = 24
# Index = uses in the window; anything beyond the last tier gets the floor
FRESHNESS_TIERS = (1.0, 0.8, 0.6, 0.4)
FRESHNESS_FLOOR = 0.2

DIFFICULTY_MATCH = {
    "easy": {"easy": 1.0, "medium": 0.7, "hard": 0.3},
    "medium": {"easy": 0.8, "medium": 1.0, "hard": 0.8},
    "hard": {"easy": 0.3, "medium": 0.7, "hard": 1.0},
}
DIFFICULTY_MATCH_UNKNOWN = 0.5

DIVERSITY_NOT_ENFORCED = 0.5
DIVERSITY_EMPTY_SESSION = 1.0

REASON_THRESHOLD = 0.8

# Level -> categorical difficulty handed to the rotator
LEVEL_EASY_BELOW = 0.4
LEVEL_MEDIUM_BELOW = 0.7

# Pool maintenance
ARCHIVE_MAX_QUALITY = 0.5
ARCHIVE_MIN_PLAYS = 10
ARCHIVE_MAX_SUCCESS_RATE = 0.4
POOL_MIN_ACTIVE = 30

# =============================================================================
# Difficulty controller
# =============================================================================

DEFAULT_LEVEL = 0.5
LEVEL_MIN = 0.1
LEVEL_MAX = 1.0
FEEDBACK_LEVEL_MAX = 0.9
MAX_DELTA = 0.3

HISTORY_SIZE = 10
MIN_SNAPSHOTS = 3

PATTERN_THRESHOLDS = {
    "struggling_accuracy": 0.6,
    "struggling_response_ms": 30_000,
    "thriving_accuracy": 0.85,
    "thriving_streak": 3,
    "plateau_trend": 0.1,
    "plateau_accuracy_low": 0.5,
    "plateau_accuracy_high": 0.8,
    "improving_trend": 0.1,
    "help_indicator": 2,
}

PATTERN_CONFIDENCE = {
    "insufficient": 0.3,
    "struggling": 0.8,
    "thriving": 0.9,
    "plateauing": 0.7,
    "improving": 0.8,
    "fallback": 0.5,
}

ADJUSTMENT_RULES = {
    "excellent_accuracy": 0.9,
    "excellent_streak": 3,
    "excellent_delta": 0.1,
    "low_accuracy": 0.4,
    "low_accuracy_delta": -0.15,
    "fast_response_ms": 10_000,
    "fast_accuracy": 0.8,
    "fast_delta": 0.05,
    "slow_response_ms": 45_000,
    "slow_delta": -0.1,
    "help_requests": 3,
    "help_delta": -0.1,
}

PATTERN_DELTAS = {
    "struggling": -0.2,
    "thriving": 0.15,
    "improving": 0.05,
    "plateauing": 0.05,  # sign drawn at random
}

FEEDBACK_DELTAS = {
    "too_hard": -0.15,
    "too_easy": 0.15,
    "thumbs_down": -0.05,
    "thumbs_up": 0.05,
}
FEEDBACK_CONFIDENCE = 0.9

STRENGTH_RULES = {
    "accuracy": 0.8,
    "response_ms": 15_000,
    "streak": 3,
}
WEAKNESS_RULES = {
    "accuracy": 0.5,
    "response_ms": 30_000,
    "help_requests": 3,
}

STREAK_CONFIDENCE_STEP = 0.2

# =============================================================================
# Quality evaluation
# =============================================================================

# id -> (weight, threshold); weights sum to 1.0
QUALITY_DIMENSIONS = {
    "difficulty_consistency": (0.25, 0.70),
    "engagement_level": (0.20, 0.65),
    "pedagogical_effectiveness": (0.25, 0.75),
    "content_accuracy": (0.20, 0.80),
    "language_clarity": (0.10, 0.70),
}

EVALUATOR_FALLBACK_SCORE = 0.5
MIN_CONFIDENCE = 0.1

QUALITY_BATCH_SIZE = 3
QUALITY_BATCH_PAUSE_SECONDS = 0.1

QUALITY_BANDS = {
    "excellent": 0.8,
    "good": 0.6,
    "fair": 0.4,
}
NEEDS_OPTIMIZATION_BELOW = 0.6

EXPLANATION_MIN_CHARS = 10
ELABORATE_EXPLANATION_BELOW = 20
WORD_COUNT_RANGE = (5, 20)
NEGATIVE_NUMBER_MAX_GRADE = 4

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
