"""
Custom Exception Hierarchy for HomeGuard
Provides structured error handling with context preservation.
"""
from typing import Optional, Dict, Any


class HomeGuardError(Exception):
    """Base exception for all HomeGuard errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        trace_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.component = component
        self.trace_id = trace_id
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "trace_id": self.trace_id,
            "context": self.context
        }


# -------------------------------------------------------------------------
# CONFIGURATION ERRORS
# -------------------------------------------------------------------------

class ConfigurationError(HomeGuardError):
    """Raised when application settings are invalid or missing."""
    pass


class InvalidModeError(ConfigurationError):
    """Raised when system mode is invalid."""
    pass


# -------------------------------------------------------------------------
# RULE ERRORS
# -------------------------------------------------------------------------

class ConfigError(HomeGuardError):
    """
    Raised when a rule or one of its conditions is malformed.

    The offending rule is skipped during evaluation and the error is
    reported back to the administrative interface.
    """

    def __init__(self, message: str, rule_id: Optional[str] = None, **kwargs):
        self.rule_id = rule_id
        context = kwargs.pop("context", None) or {}
        if rule_id is not None:
            context.setdefault("rule_id", rule_id)
        super().__init__(message, context=context, **kwargs)


class DuplicateRuleError(HomeGuardError):
    """Raised when a rule with the same id already exists."""
    pass


class RuleNotFoundError(HomeGuardError):
    """Raised when a rule id is not present in the store."""
    pass


# -------------------------------------------------------------------------
# STORE ERRORS
# -------------------------------------------------------------------------

class StoreUnavailableError(HomeGuardError):
    """Raised when the rule persistence store cannot be reached."""
    pass


# -------------------------------------------------------------------------
# DISPATCH ERRORS
# -------------------------------------------------------------------------

class DispatchError(HomeGuardError):
    """Raised by an action handler when an action could not be carried out."""

    def __init__(self, message: str, action_type: Optional[str] = None, **kwargs):
        self.action_type = action_type
        super().__init__(message, **kwargs)


# -------------------------------------------------------------------------
# EVALUATION LOOP ERRORS
# -------------------------------------------------------------------------

class QueueOverflowError(HomeGuardError):
    """Raised (and logged, never propagated) when an event is dropped."""
    pass


# -------------------------------------------------------------------------
# DATABASE ERRORS
# -------------------------------------------------------------------------

class DatabaseError(HomeGuardError):
    """Base class for database-related errors."""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """Raised when database connection pool is exhausted."""
    pass


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""
    pass


class QueryExecutionError(DatabaseError):
    """Raised when database query execution fails."""
    pass


# -------------------------------------------------------------------------
# HISTORIAN ERRORS
# -------------------------------------------------------------------------

class HistorianError(HomeGuardError):
    """Base class for alert historian errors."""
    pass


class AlertStorageError(HistorianError):
    """Raised when alerts cannot be stored."""
    pass


class AlertRetrievalError(HistorianError):
    """Raised when alert retrieval fails."""
    pass


# -------------------------------------------------------------------------
# EVENT ERRORS
# -------------------------------------------------------------------------

class InvalidEventError(HomeGuardError):
    """Raised when raw input cannot be normalized into an event."""
    pass
