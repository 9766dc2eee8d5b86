"""
Rules Engine Actions Package

Exports the dispatcher, built-in handlers and the confirmation gate.
"""

from .action_dispatcher import ActionDispatcher, ActionHandler, DEFAULT_ACTION_TIMEOUT
from .confirmation_gate import ConfirmationGate, ConfirmationStatus, ConfirmationToken
from .handlers import LogActionHandler, WebhookActionHandler

__all__ = [
    "ActionDispatcher",
    "ActionHandler",
    "DEFAULT_ACTION_TIMEOUT",
    "ConfirmationGate",
    "ConfirmationStatus",
    "ConfirmationToken",
    "LogActionHandler",
    "WebhookActionHandler"
]
