from datetime import datetime, timezone

import pytest

from exceptions import InvalidEventError
from rules_engine.evaluator import ConditionMatcher
from rules_engine.models import EventSource
from rules_engine.normalizer import EventNormalizer
from rules_engine.parser import RuleParser


@pytest.fixture
def normalizer():
    return EventNormalizer()


def test_face_result_with_fractional_score(normalizer):
    event = normalizer.normalize({
        "source": "face",
        "class": "Foe",
        "score": 0.87,
        "camera_id": "cam-front",
        "box": [10, 20, 110, 140],
    })

    assert event.source == EventSource.FACE
    assert event.kind == "Foe"
    assert event.confidence == 87.0
    assert event.device_id == "cam-front"
    assert event.metadata["box"] == [10, 20, 110, 140]


def test_face_confidence_in_percent(normalizer):
    event = normalizer.normalize({"source": "face", "label": "Unknown", "confidence": 79})
    assert event.confidence == 79.0


def test_low_percent_confidence_is_not_scaled(normalizer, vexor_rule):
    event = normalizer.normalize({"source": "face", "label": "Foe", "confidence": 1})

    assert event.confidence == 1.0
    assert not ConditionMatcher().matches(RuleParser().parse_dict(vexor_rule), event)


def test_device_severity_maps_to_confidence(normalizer):
    event = normalizer.normalize({
        "source": "device",
        "deviceId": "smoke-kitchen",
        "alert_type": "fire",
        "severity": "high",
        "message": "Smoke detected",
    })

    assert event.source == EventSource.DEVICE
    assert event.kind == "fire"
    assert event.confidence == 90.0
    assert event.metadata == {"severity": "high", "message": "Smoke detected"}


def test_device_requires_id(normalizer):
    with pytest.raises(InvalidEventError, match="device_id"):
        normalizer.normalize({"source": "device", "kind": "intrusion"})


def test_system_event_keeps_id_and_timestamp(normalizer):
    event = normalizer.normalize({
        "source": "system",
        "id": "evt-42",
        "kind": "inactivity",
        "timestamp": "2024-01-15T23:30:00Z",
    })

    assert event.id == "evt-42"
    assert event.timestamp == datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc)


def test_epoch_timestamp(normalizer):
    event = normalizer.normalize({"source": "manual", "kind": "panic", "timestamp": 0})
    assert event.timestamp == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_manual_helper(normalizer):
    event = normalizer.manual("panic", device_id="keypad")
    assert event.source == EventSource.MANUAL
    assert event.confidence == 100.0


@pytest.mark.parametrize("raw, message", [
    ({"source": "radar", "kind": "motion"}, "Unknown event source"),
    ({"source": "face", "score": 0.9}, "missing its kind"),
    ({"source": "face", "class": "Foe", "confidence": "high"}, "numeric"),
    ({"source": "system", "kind": "x", "timestamp": "yesterday"}, "Invalid timestamp"),
])
def test_invalid_payloads(normalizer, raw, message):
    with pytest.raises(InvalidEventError, match=message):
        normalizer.normalize(raw)


def test_non_mapping_payload(normalizer):
    with pytest.raises(InvalidEventError):
        normalizer.normalize(["face", "Foe"])
