"""
Rules Engine Package

Condition-to-action security rules for HomeGuard.
"""

from .models import (
    Alert,
    ActionType,
    ConditionOperator,
    ConditionType,
    EvaluationReport,
    Event,
    EventSource,
    Rule,
    Sensitivity,
    Severity
)
from .parser import RuleParser
from .evaluator import ConditionMatcher
from .devices import InMemoryDeviceRegistry
from .normalizer import EventNormalizer
from .actions import ActionDispatcher, ConfirmationGate, LogActionHandler, WebhookActionHandler
from .store import HostedRulePersistence, RuleSnapshot, RuleStore, SqliteRulePersistence
from .rules_engine import RulesEngine
from .evaluation_loop import EvaluationLoop, LoopState

__all__ = [
    "Alert",
    "ActionType",
    "ConditionOperator",
    "ConditionType",
    "EvaluationReport",
    "Event",
    "EventSource",
    "Rule",
    "Sensitivity",
    "Severity",
    "RuleParser",
    "ConditionMatcher",
    "InMemoryDeviceRegistry",
    "EventNormalizer",
    "ActionDispatcher",
    "ConfirmationGate",
    "LogActionHandler",
    "WebhookActionHandler",
    "HostedRulePersistence",
    "RuleSnapshot",
    "RuleStore",
    "SqliteRulePersistence",
    "RulesEngine",
    "EvaluationLoop",
    "LoopState"
]
