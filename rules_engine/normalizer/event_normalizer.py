"""
Event Normalizer

Converts raw perception results, device telemetry and manual triggers into
uniform ``Event`` records.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from exceptions import InvalidEventError
from rules_engine.models import Event, EventSource


logger = logging.getLogger("HomeGuardNormalizer")

# Device alerts carry a coarse severity instead of a score.
DEVICE_SEVERITY_CONFIDENCE: Dict[str, float] = {
    "low": 30.0,
    "medium": 60.0,
    "high": 90.0,
}

FACE_CLASSES = ("Friend", "Unknown", "Foe")


class EventNormalizer:
    """
    Normalize heterogeneous inputs into ``Event`` records.
    """

    def __init__(self, default_device_confidence: float = 100.0):
        """
        Args:
            default_device_confidence: Confidence for telemetry that carries
                neither a score nor a severity
        """
        self.default_device_confidence = default_device_confidence

    def normalize(self, raw: Dict[str, Any]) -> Event:
        """
        Normalize a raw payload, routing on its ``source`` field.

        Raises:
            InvalidEventError: If the payload cannot be normalized
        """
        if not isinstance(raw, dict):
            raise InvalidEventError(
                f"Event payload must be an object, got {type(raw).__name__}",
                component="EventNormalizer"
            )

        source = str(raw.get("source", "")).lower()
        if source == EventSource.FACE.value:
            return self.from_face(raw)
        if source == EventSource.DEVICE.value:
            return self.from_device(raw)
        if source in (EventSource.SYSTEM.value, EventSource.MANUAL.value):
            return self._build(
                source=EventSource(source),
                kind=raw.get("kind") or raw.get("type"),
                confidence=self._confidence(raw.get("confidence", 100.0)),
                timestamp=raw.get("timestamp"),
                device_id=raw.get("device_id") or raw.get("deviceId"),
                metadata=dict(raw.get("metadata") or {}),
                event_id=raw.get("id")
            )

        raise InvalidEventError(
            f"Unknown event source: {raw.get('source')!r}",
            component="EventNormalizer",
            context={"raw": raw}
        )

    def from_face(self, result: Dict[str, Any]) -> Event:
        """
        Normalize a face classification result.

        Accepts ``class``/``label``/``kind`` for the classification and either
        ``score`` (a 0-1 fraction) or ``confidence`` (already a percentage).
        """
        label = result.get("class") or result.get("label") or result.get("kind")
        if label and label not in FACE_CLASSES:
            logger.debug(f"Unrecognized face class: {label}")

        if "score" in result:
            confidence = self._confidence(result["score"], fraction=True)
        else:
            confidence = self._confidence(result.get("confidence", 0.0))

        metadata = dict(result.get("metadata") or {})
        for key in ("box", "name", "face_id"):
            if key in result:
                metadata[key] = result[key]

        return self._build(
            source=EventSource.FACE,
            kind=label,
            confidence=confidence,
            timestamp=result.get("timestamp"),
            device_id=result.get("device_id") or result.get("camera_id"),
            metadata=metadata,
            event_id=result.get("id")
        )

    def from_device(self, telemetry: Dict[str, Any]) -> Event:
        """
        Normalize a device alert (``intrusion``, ``fire``, ``fall``, ...).
        """
        device_id = telemetry.get("device_id") or telemetry.get("deviceId")
        if not device_id:
            raise InvalidEventError(
                "Device telemetry requires a device_id",
                component="EventNormalizer",
                context={"raw": telemetry}
            )

        if "confidence" in telemetry:
            confidence = self._confidence(telemetry["confidence"])
        else:
            severity = str(telemetry.get("severity", "")).lower()
            confidence = DEVICE_SEVERITY_CONFIDENCE.get(severity, self.default_device_confidence)

        metadata = dict(telemetry.get("metadata") or {})
        for key in ("severity", "message"):
            if key in telemetry:
                metadata[key] = telemetry[key]

        return self._build(
            source=EventSource.DEVICE,
            kind=telemetry.get("kind") or telemetry.get("alert_type") or telemetry.get("type"),
            confidence=confidence,
            timestamp=telemetry.get("timestamp"),
            device_id=device_id,
            metadata=metadata,
            event_id=telemetry.get("id")
        )

    def manual(
        self,
        kind: str,
        device_id: Optional[str] = None,
        confidence: float = 100.0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Event:
        """Build an event for a trigger fired by hand from the dashboard."""
        return self._build(
            source=EventSource.MANUAL,
            kind=kind,
            confidence=confidence,
            timestamp=None,
            device_id=device_id,
            metadata=dict(metadata or {}),
            event_id=None
        )

    def _build(
        self,
        source: EventSource,
        kind: Optional[str],
        confidence: float,
        timestamp: Any,
        device_id: Optional[str],
        metadata: Dict[str, Any],
        event_id: Optional[str]
    ) -> Event:
        if not kind:
            raise InvalidEventError(
                f"{source.value} event is missing its kind",
                component="EventNormalizer"
            )

        fields: Dict[str, Any] = {
            "source": source,
            "kind": kind,
            "confidence": confidence,
            "timestamp": self._timestamp(timestamp),
            "device_id": device_id,
            "metadata": metadata,
        }
        if event_id:
            fields["id"] = str(event_id)

        try:
            return Event(**fields)
        except ValidationError as e:
            raise InvalidEventError(
                f"Invalid {source.value} event: {e}",
                component="EventNormalizer",
                context={"kind": kind}
            )

    def _confidence(self, value: Any, fraction: bool = False) -> float:
        try:
            score = float(value)
        except (TypeError, ValueError):
            raise InvalidEventError(
                f"Confidence must be numeric, got {value!r}",
                component="EventNormalizer"
            )

        # Detector scores are 0-1 fractions; the engine works in percent.
        if fraction:
            score *= 100.0
        return round(min(max(score, 0.0), 100.0), 2)

    def _timestamp(self, value: Any) -> datetime:
        if value is None:
            return datetime.now(timezone.utc)
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise InvalidEventError(
                f"Invalid timestamp: {value!r}",
                component="EventNormalizer"
            )
