from datetime import datetime, timedelta, timezone

import pytest

from exceptions import AlertStorageError
from historian import AlertHistorian
from rules_engine.models import Alert, Severity


@pytest.fixture
def historian(db):
    return AlertHistorian(db)


def make_alert(rule_id="vexor-warning", event_id="evt-1", severity=Severity.HIGH, **kwargs) -> Alert:
    return Alert(rule_id=rule_id, event_id=event_id, severity=severity, **kwargs)


def test_save_and_fetch(historian):
    alert = make_alert(message="Intruder detected", actions_attempted=["light"], actions_succeeded=["light"])
    historian.save_alert(alert)

    stored = historian.get_alert(alert.id)
    assert stored.message == "Intruder detected"
    assert stored.actions_succeeded == ["light"]
    assert historian.get_alert("missing") is None


def test_batch_is_atomic(historian):
    first = make_alert()
    duplicate_id = make_alert(id=first.id, rule_id="other")

    with pytest.raises(AlertStorageError):
        historian.save_alerts([make_alert(event_id="evt-2"), first, duplicate_id])

    assert historian.count_alerts() == 0


def test_recent_alerts_filters(historian):
    now = datetime.now(timezone.utc)
    historian.save_alerts([
        make_alert(created_at=now - timedelta(hours=2)),
        make_alert(rule_id="fire-evacuation", severity=Severity.CRITICAL, created_at=now - timedelta(minutes=5)),
        make_alert(event_id="evt-2", created_at=now),
    ])

    recent = historian.get_recent_alerts()
    assert [a.event_id for a in recent][0] == "evt-2"
    assert len(recent) == 3

    assert [a.rule_id for a in historian.get_recent_alerts(severity="critical")] == ["fire-evacuation"]
    assert len(historian.get_recent_alerts(rule_id="vexor-warning")) == 2
    assert len(historian.get_recent_alerts(since=now - timedelta(hours=1))) == 2
    assert len(historian.get_recent_alerts(limit=1)) == 1


def test_alerts_for_event(historian):
    historian.save_alerts([make_alert(), make_alert(rule_id="any-foe"), make_alert(event_id="evt-9")])
    assert {a.rule_id for a in historian.get_alerts_for_event("evt-1")} == {"vexor-warning", "any-foe"}


def test_empty_batch(historian):
    assert historian.save_alerts([]) == 0
