"""
Rules Engine Models Package

Exports all model classes for the security rules engine.
"""

from .rule import (
    Rule,
    Condition,
    Action,
    NotificationAction,
    LightAction,
    SpeakerAction,
    AlarmAction,
    PoliceAction,
    ActionType,
    ConditionType,
    ConditionOperator,
    Sensitivity,
    NotificationType,
    ALLOWED_OPERATORS,
    ValidationResult
)
from .event import Event, EventSource
from .alert import (
    Alert,
    ActionOutcome,
    DispatchResult,
    EvaluationReport,
    OutcomeStatus,
    Severity
)

__all__ = [
    "Rule",
    "Condition",
    "Action",
    "NotificationAction",
    "LightAction",
    "SpeakerAction",
    "AlarmAction",
    "PoliceAction",
    "ActionType",
    "ConditionType",
    "ConditionOperator",
    "Sensitivity",
    "NotificationType",
    "ALLOWED_OPERATORS",
    "ValidationResult",
    "Event",
    "EventSource",
    "Alert",
    "ActionOutcome",
    "DispatchResult",
    "EvaluationReport",
    "OutcomeStatus",
    "Severity"
]
