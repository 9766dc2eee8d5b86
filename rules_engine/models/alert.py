"""
Alert and Dispatch Models

Audit records produced when rules match, plus per-action dispatch outcomes.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field


class OutcomeStatus(str, Enum):
    """Result of attempting a single action."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class Severity(str, Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionOutcome(BaseModel):
    """
    Result of dispatching one action.
    """
    index: int
    action_type: str
    status: OutcomeStatus
    reason: Optional[str] = None
    duration_ms: float = 0.0
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED


class DispatchResult(BaseModel):
    """
    Per-action outcomes for one rule's action list, in rule order.
    """
    rule_id: Optional[str] = None
    outcomes: List[ActionOutcome] = Field(default_factory=list)

    @property
    def attempted(self) -> List[ActionOutcome]:
        """Outcomes for actions that were handed to a handler."""
        return [o for o in self.outcomes if o.status != OutcomeStatus.SKIPPED]

    @property
    def succeeded(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.SUCCEEDED]

    @property
    def failed(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def skipped(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.SKIPPED]

    @property
    def all_succeeded(self) -> bool:
        return all(o.succeeded for o in self.outcomes)


class Alert(BaseModel):
    """
    Durable audit record for a rule match. Written once, never mutated.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    rule_id: str
    rule_name: str = ""
    event_id: str
    actions_attempted: List[str] = Field(default_factory=list)
    actions_succeeded: List[str] = Field(default_factory=list)
    severity: Severity
    message: str = ""
    degraded: bool = False
    outcomes: List[ActionOutcome] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json")


class EvaluationReport(BaseModel):
    """
    Everything the evaluation loop did with one event.
    """
    event_id: str
    snapshot_version: int = 0
    degraded: bool = False
    rules_evaluated: int = 0
    matched_rule_ids: List[str] = Field(default_factory=list)
    dispatch_results: Dict[str, DispatchResult] = Field(default_factory=dict)
    alerts: List[Alert] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    alerts_persisted: bool = True
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def matched(self) -> bool:
        return bool(self.matched_rule_ids)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json")
