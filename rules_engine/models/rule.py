"""
Rule Models

Defines data models for condition-to-action security rules.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
import re


class ConditionType(str, Enum):
    """What part of an event a rule condition inspects."""
    FACE = "face"
    BEHAVIOR = "behavior"
    TIME = "time"
    DEVICE = "device"


class ConditionOperator(str, Enum):
    """Operators for condition evaluation."""
    EQUALS = "equals"
    CONTAINS = "contains"
    AFTER = "after"
    BEFORE = "before"


class Sensitivity(str, Enum):
    """Confidence level a rule demands before it fires."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationType(str, Enum):
    """How urgently a rule's alerts are surfaced to the homeowner."""
    ALERT = "alert"
    EMERGENCY = "emergency"
    BOTH = "both"


class ActionType(str, Enum):
    """Side effects a rule can trigger."""
    NOTIFICATION = "notification"
    LIGHT = "light"
    SPEAKER = "speaker"
    ALARM = "alarm"
    POLICE = "police"


# Operators each condition type understands.
ALLOWED_OPERATORS: Dict[ConditionType, tuple] = {
    ConditionType.FACE: (ConditionOperator.EQUALS, ConditionOperator.CONTAINS),
    ConditionType.BEHAVIOR: (ConditionOperator.EQUALS, ConditionOperator.CONTAINS),
    ConditionType.DEVICE: (ConditionOperator.EQUALS, ConditionOperator.CONTAINS),
    ConditionType.TIME: (ConditionOperator.AFTER, ConditionOperator.BEFORE),
}


class _BaseAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str = Field(..., description="Action payload")

    @field_validator('value')
    @classmethod
    def validate_value(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Action value must be a non-empty string")
        return v

    @property
    def action_type(self) -> ActionType:
        return ActionType(self.type)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json", exclude_none=True)


class NotificationAction(_BaseAction):
    """Push a message to the homeowner."""
    type: Literal["notification"] = "notification"
    recipient: Optional[str] = Field(None, description="Recipient override (defaults to the account owner)")


class LightAction(_BaseAction):
    """Drive a light pattern such as ``red_flash``."""
    type: Literal["light"] = "light"
    device_id: Optional[str] = Field(None, description="Target light; all lights when omitted")


class SpeakerAction(_BaseAction):
    """Play a spoken phrase on a speaker."""
    type: Literal["speaker"] = "speaker"
    device_id: Optional[str] = None
    volume: Optional[int] = Field(None, ge=0, le=100)


class AlarmAction(_BaseAction):
    """Sound the siren."""
    type: Literal["alarm"] = "alarm"
    duration_seconds: Optional[int] = Field(None, gt=0)


class PoliceAction(_BaseAction):
    """Contact emergency services. Always goes through a confirmation gate."""
    type: Literal["police"] = "police"


Action = Annotated[
    Union[NotificationAction, LightAction, SpeakerAction, AlarmAction, PoliceAction],
    Field(discriminator="type"),
]


class Condition(BaseModel):
    """The condition half of a rule."""
    model_config = ConfigDict(frozen=True)

    type: ConditionType
    operator: ConditionOperator
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "operator": self.operator.value,
            "value": self.value
        }


class Rule(BaseModel):
    """
    A named condition-action binding.

    Rules are immutable; edits produce a new instance so that snapshots taken
    by the evaluation loop never observe a half-applied change.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique rule identifier")
    name: str = Field(default="", description="Human-readable rule name")
    condition_type: ConditionType = Field(..., description="What the condition inspects")
    condition_value: str = Field(..., description="Value compared against event data")
    operator: ConditionOperator = Field(default=ConditionOperator.EQUALS)
    sensitivity: Sensitivity = Field(default=Sensitivity.MEDIUM)
    actions: List[Action] = Field(default_factory=list, description="Ordered actions to dispatch")
    enabled: bool = Field(default=True, description="Whether rule is active")
    notification_type: NotificationType = Field(default=NotificationType.ALERT)
    tags: List[str] = Field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate rule ID format."""
        if not re.match(r'^[a-z0-9_-]+$', v):
            raise ValueError("Rule ID must contain only lowercase letters, numbers, hyphens, and underscores")
        return v

    @field_validator('condition_value')
    @classmethod
    def validate_condition_value(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Condition value must be a non-empty string")
        return v

    @property
    def condition(self) -> Condition:
        return Condition(type=self.condition_type, operator=self.operator, value=self.condition_value)

    @property
    def action_types(self) -> List[ActionType]:
        return [action.action_type for action in self.actions]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "condition_type": self.condition_type.value,
            "condition_value": self.condition_value,
            "operator": self.operator.value,
            "sensitivity": self.sensitivity.value,
            "actions": [a.to_dict() for a in self.actions],
            "enabled": self.enabled,
            "notification_type": self.notification_type.value,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


class ValidationResult(BaseModel):
    """
    Result of validating a rule.
    """
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
