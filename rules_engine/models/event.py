"""
Event Models

A normalized occurrence fed to the rules engine.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventSource(str, Enum):
    """Subsystem an event originated from."""
    FACE = "face"
    DEVICE = "device"
    SYSTEM = "system"
    MANUAL = "manual"


class Event(BaseModel):
    """
    A single normalized occurrence.

    ``kind`` carries the classification label: ``Friend``/``Unknown``/``Foe``
    for faces, ``intrusion``/``fire``/``fall``/``hazard``/``inactivity`` for
    device and system signals.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: EventSource
    kind: str
    confidence: float = Field(default=100.0, ge=0.0, le=100.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    device_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Event kind must be a non-empty string")
        return v.strip()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "source": self.source.value,
            "kind": self.kind,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
            "device_id": self.device_id,
            "metadata": self.metadata
        }
