"""
Rules Engine Evaluator Package
"""

from .condition_matcher import (
    ConditionMatcher,
    MatchResult,
    SENSITIVITY_THRESHOLDS,
    confidence_threshold,
    parse_time_of_day
)

__all__ = [
    "ConditionMatcher",
    "MatchResult",
    "SENSITIVITY_THRESHOLDS",
    "confidence_threshold",
    "parse_time_of_day"
]
