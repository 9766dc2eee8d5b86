import threading

import pytest

from exceptions import ConfigError, DuplicateRuleError, RuleNotFoundError, StoreUnavailableError
from rules_engine.models import ActionType, Sensitivity
from rules_engine.store import RuleStore

from conftest import FakePersistence


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def fake_store(persistence):
    return RuleStore(persistence)


def test_add_and_get(fake_store, persistence, vexor_rule):
    rule_id = fake_store.add(vexor_rule)

    assert rule_id == "vexor-warning"
    assert fake_store.get(rule_id).name == "VEXOR Warning"
    assert "vexor-warning" in persistence.records
    assert fake_store.snapshot().version == 1


def test_duplicate_add_leaves_store_unchanged(fake_store, persistence, vexor_rule):
    fake_store.add(vexor_rule)
    before = fake_store.snapshot()

    with pytest.raises(DuplicateRuleError):
        fake_store.add({**vexor_rule, "name": "Other"})

    assert fake_store.snapshot() is before
    assert fake_store.get("vexor-warning").name == "VEXOR Warning"
    assert persistence.writes == 1


def test_invalid_rule_rejected(fake_store, persistence):
    with pytest.raises(ConfigError):
        fake_store.add({
            "id": "bad-time",
            "name": "Bad",
            "condition_type": "time",
            "condition_value": "not a time",
            "operator": "after",
        })
    assert len(fake_store) == 0
    assert persistence.writes == 0


def test_write_failure_leaves_cache_untouched(fake_store, persistence, vexor_rule):
    fake_store.add(vexor_rule)
    before = fake_store.snapshot()
    persistence.available = False

    with pytest.raises(StoreUnavailableError):
        fake_store.add({**vexor_rule, "id": "second-rule"})
    with pytest.raises(StoreUnavailableError):
        fake_store.update("vexor-warning", {"sensitivity": "low"})
    with pytest.raises(StoreUnavailableError):
        fake_store.remove("vexor-warning")

    assert fake_store.snapshot() is before
    assert fake_store.get("vexor-warning").sensitivity == Sensitivity.HIGH


def test_update_partial(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    original = fake_store.get("vexor-warning")

    updated = fake_store.update("vexor-warning", {"sensitivity": "low", "condition": {"value": "Unknown"}})

    assert updated.sensitivity == Sensitivity.LOW
    assert updated.condition_value == "Unknown"
    assert updated.action_types == original.action_types
    assert updated.created_at == original.created_at
    assert fake_store.snapshot().version == 2


def test_update_cannot_change_id(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    with pytest.raises(ConfigError, match="cannot be changed"):
        fake_store.update("vexor-warning", {"id": "renamed"})


def test_update_validates(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    with pytest.raises(ConfigError):
        fake_store.update("vexor-warning", {"actions": [{"type": "teleport", "value": "x"}]})
    assert fake_store.get("vexor-warning").action_types[0] == ActionType.SPEAKER


def test_missing_rule(fake_store):
    with pytest.raises(RuleNotFoundError):
        fake_store.get("ghost")
    with pytest.raises(RuleNotFoundError):
        fake_store.update("ghost", {"enabled": False})
    with pytest.raises(RuleNotFoundError):
        fake_store.remove("ghost")


def test_set_enabled_and_is_active(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    assert not fake_store.set_enabled("vexor-warning", False).enabled
    assert fake_store.update("vexor-warning", {"is_active": True}).enabled


def test_remove(fake_store, persistence, vexor_rule):
    fake_store.add(vexor_rule)
    fake_store.remove("vexor-warning")
    assert "vexor-warning" not in fake_store
    assert persistence.records == {}


def test_list_filters(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    fake_store.add({
        "id": "fire",
        "name": "Fire",
        "condition_type": "behavior",
        "condition_value": "fire",
        "enabled": False,
        "tags": ["monitoring"],
        "actions": [{"type": "alarm", "value": "siren"}],
    })

    assert [r.id for r in fake_store.list(enabled=True)] == ["vexor-warning"]
    assert [r.id for r in fake_store.list(condition_type="behavior")] == ["fire"]
    assert [r.id for r in fake_store.list(tag="monitoring")] == ["fire"]
    assert [r.id for r in fake_store.list(filter=lambda r: r.sensitivity == Sensitivity.HIGH)] == ["vexor-warning"]


def test_refresh_skips_bad_records(vexor_rule):
    persistence = FakePersistence([
        vexor_rule,
        {"id": "broken", "condition_type": "time", "condition_value": "25:00", "operator": "after"},
        {"id": "", "condition_type": "face"},
    ])
    store = RuleStore(persistence)

    snapshot = store.refresh()

    assert [r.id for r in snapshot] == ["vexor-warning"]
    assert len(store.load_errors) == 2
    assert store.load_errors[0].rule_id == "broken"


def test_refresh_failure_keeps_cache(fake_store, persistence, vexor_rule):
    fake_store.add(vexor_rule)
    before = fake_store.snapshot()
    persistence.available = False

    with pytest.raises(StoreUnavailableError):
        fake_store.refresh()
    assert fake_store.snapshot() is before


def test_snapshot_is_isolated_from_later_writes(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    snapshot = fake_store.snapshot()

    fake_store.update("vexor-warning", {"enabled": False})
    fake_store.remove("vexor-warning")

    assert snapshot.get("vexor-warning").enabled
    assert len(snapshot.enabled_rules) == 1


def test_seed_adds_only_missing(fake_store, vexor_rule):
    fake_store.add(vexor_rule)
    added = fake_store.seed([
        vexor_rule,
        {"id": "fire", "name": "Fire", "condition_type": "behavior", "condition_value": "fire"},
    ])
    assert added == ["fire"]


def test_validate_without_storing(fake_store):
    result = fake_store.validate({"id": "x", "condition_type": "weather", "condition_value": "rain"})
    assert not result.valid
    assert len(fake_store) == 0


def test_concurrent_adds_are_serialized(fake_store):
    def add(i):
        fake_store.add({
            "id": f"rule-{i}",
            "name": f"Rule {i}",
            "condition_type": "behavior",
            "condition_value": "fire",
        })

    threads = [threading.Thread(target=add, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(fake_store) == 20
    assert fake_store.snapshot().version == 20


def test_sqlite_persistence_survives_restart(db, store, vexor_rule):
    store.add(vexor_rule)
    store.set_enabled("vexor-warning", False)

    reloaded = RuleStore(store.persistence)
    reloaded.refresh()

    rule = reloaded.get("vexor-warning")
    assert not rule.enabled
    assert rule.action_types == [ActionType.SPEAKER, ActionType.LIGHT, ActionType.NOTIFICATION]


class BlockingLoadPersistence(FakePersistence):
    """``load_all`` pauses until released, after reading its records."""

    def __init__(self, records=None):
        super().__init__(records)
        self.loading = threading.Event()
        self.release = threading.Event()

    def load_all(self):
        records = super().load_all()
        self.loading.set()
        self.release.wait(timeout=5)
        return records


def test_add_during_refresh_is_not_lost(vexor_rule):
    persistence = BlockingLoadPersistence()
    store = RuleStore(persistence)
    store.add(vexor_rule)

    refresher = threading.Thread(target=store.refresh)
    refresher.start()
    assert persistence.loading.wait(timeout=5)

    adder = threading.Thread(target=store.add, args=({
        "id": "kitchen-fire",
        "name": "Kitchen fire",
        "condition_type": "behavior",
        "condition_value": "fire",
    },))
    adder.start()
    adder.join(timeout=0.2)

    persistence.release.set()
    refresher.join(timeout=5)
    adder.join(timeout=5)

    assert sorted(persistence.records) == ["kitchen-fire", "vexor-warning"]
    assert "kitchen-fire" in store
    assert "vexor-warning" in store
