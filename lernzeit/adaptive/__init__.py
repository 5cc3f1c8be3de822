"""
Adaptive difficulty control.

Components:
- analyze_behavior_pattern: classifies rolling performance
- calculate_adjustment: bounded level delta per cycle
- PerformanceTracker: per-session counters and snapshot history
- DifficultyController: profile cache, feedback fast-path, persistence
"""
from lernzeit.adaptive.difficulty_controller import (
    DifficultyController,
    PerformanceTracker,
    analyze_behavior_pattern,
    calculate_adjustment,
    clamp,
    derive_strengths_weaknesses,
    level_to_difficulty,
)

__all__ = [
    "DifficultyController",
    "PerformanceTracker",
    "analyze_behavior_pattern",
    "calculate_adjustment",
    "clamp",
    "derive_strengths_weaknesses",
    "level_to_difficulty",
]
