"""
Rules Engine Store Package
"""

from .persistence import HostedRulePersistence, RulePersistence, SqliteRulePersistence
from .rule_store import RuleSnapshot, RuleStore

__all__ = [
    "HostedRulePersistence",
    "RulePersistence",
    "SqliteRulePersistence",
    "RuleSnapshot",
    "RuleStore"
]
