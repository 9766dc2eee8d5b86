"""
Rules Engine Parser Package

Exports parser classes for parsing rule definitions.
"""

from .rule_parser import RuleParser
from .templates import (
    DEFAULT_MONITORING_RULES,
    TRIGGER_TEMPLATES,
    get_template,
    template_to_definition
)

__all__ = [
    "RuleParser",
    "DEFAULT_MONITORING_RULES",
    "TRIGGER_TEMPLATES",
    "get_template",
    "template_to_definition"
]
