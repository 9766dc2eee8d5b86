from pathlib import Path

import pytest

from exceptions import ConfigError
from rules_engine.models import ActionType, ConditionOperator, ConditionType, Sensitivity
from rules_engine.parser import RuleParser, get_template, template_to_definition


RULES_DIR = Path(__file__).resolve().parent.parent / "rules"


@pytest.fixture
def parser():
    return RuleParser()


def test_parse_nested_trigger_shape(parser, vexor_rule):
    rule = parser.parse_dict(vexor_rule)

    assert rule.id == "vexor-warning"
    assert rule.condition_type == ConditionType.FACE
    assert rule.condition_value == "Foe"
    assert rule.operator == ConditionOperator.EQUALS
    assert rule.sensitivity == Sensitivity.HIGH
    assert rule.action_types == [ActionType.SPEAKER, ActionType.LIGHT, ActionType.NOTIFICATION]
    assert rule.enabled


def test_parse_flat_shape(parser):
    rule = parser.parse_dict({
        "id": "late-door",
        "name": "Door after hours",
        "condition_type": "time",
        "condition_value": "23:00",
        "operator": "after",
        "enabled": False,
        "actions": [{"type": "alarm", "value": "siren", "duration_seconds": 60}],
    })

    assert rule.condition_type == ConditionType.TIME
    assert not rule.enabled
    assert rule.actions[0].duration_seconds == 60
    assert rule.sensitivity == Sensitivity.MEDIUM


def test_is_active_false_disables(parser, vexor_rule):
    vexor_rule["is_active"] = False
    assert not parser.parse_dict(vexor_rule).enabled


def test_missing_id(parser, vexor_rule):
    del vexor_rule["id"]
    with pytest.raises(ConfigError, match="'id' is required"):
        parser.parse_dict(vexor_rule)


def test_invalid_condition_type(parser, vexor_rule):
    vexor_rule["condition"]["type"] = "smell"
    with pytest.raises(ConfigError) as exc_info:
        parser.parse_dict(vexor_rule)
    assert exc_info.value.rule_id == "vexor-warning"


def test_unknown_action_type(parser, vexor_rule):
    vexor_rule["actions"].append({"type": "drone", "value": "launch"})
    with pytest.raises(ConfigError, match="Unknown action type"):
        parser.parse_dict(vexor_rule)


def test_empty_condition_value(parser, vexor_rule):
    vexor_rule["condition"]["value"] = "  "
    with pytest.raises(ConfigError, match="condition_value"):
        parser.parse_dict(vexor_rule)


def test_bad_rule_id(parser, vexor_rule):
    vexor_rule["id"] = "Vexor Warning"
    with pytest.raises(ConfigError, match="Rule ID"):
        parser.parse_dict(vexor_rule)


def test_validate_warnings(parser):
    rule = parser.parse_dict({
        "id": "call-police",
        "condition_type": "behavior",
        "condition_value": "theft",
        "actions": [{"type": "police", "value": "emergency"}],
    })
    result = parser.validate_rule(rule)

    assert result.valid
    assert any("Police contact without a notification" in w for w in result.warnings)
    assert any("no descriptive name" in w for w in result.warnings)


def test_rule_without_actions_is_valid_with_warning(parser):
    rule = parser.parse_dict({
        "id": "watch-only",
        "name": "Watch only",
        "condition_type": "behavior",
        "condition_value": "loitering",
    })
    result = parser.validate_rule(rule)

    assert result.valid
    assert any("no actions" in w for w in result.warnings)


def test_validate_rejects_bad_time_and_operator(parser):
    rule = parser.parse_dict({
        "id": "bad-time",
        "name": "Bad time",
        "condition_type": "time",
        "condition_value": "half past nine",
        "operator": "contains",
    })
    result = parser.validate_rule(rule)

    assert not result.valid
    assert len(result.errors) == 2


def test_yaml_file_round_trip(parser, tmp_path, vexor_rule):
    rule = parser.parse_dict(vexor_rule)
    path = tmp_path / "vexor.yaml"
    parser.save_rule_to_file(rule, str(path))

    loaded = parser.parse_yaml_file(str(path))
    assert loaded.id == rule.id
    assert loaded.actions == rule.actions


def test_parse_multiple_files_skips_bad_ones(parser, tmp_path):
    (tmp_path / "good.yaml").write_text(
        "id: good\nname: Good\ncondition_type: behavior\ncondition_value: fire\n"
        "actions:\n  - type: alarm\n    value: siren\n"
    )
    (tmp_path / "broken.yaml").write_text("id: [unclosed\n")
    (tmp_path / "empty.yml").write_text("")

    rules = parser.parse_multiple_files(str(tmp_path))
    assert [r.id for r in rules] == ["good"]


def test_missing_file_and_directory(parser, tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        parser.parse_yaml_file(str(tmp_path / "nope.yaml"))
    with pytest.raises(ConfigError, match="Directory not found"):
        parser.parse_multiple_files(str(tmp_path / "nope"))


def test_bundled_rule_files_parse(parser):
    rules = {r.id: r for r in parser.parse_multiple_files(str(RULES_DIR))}

    assert rules["vexor-warning"].sensitivity == Sensitivity.HIGH
    assert rules["front-door-after-hours"].enabled is False
    for rule in rules.values():
        assert parser.validate_rule(rule).valid


def test_template_to_definition(parser):
    definition = template_to_definition("vexor warning")
    rule = parser.parse_dict(definition)

    assert rule.id == "vexor-warning"
    assert rule.tags == ["template"]
    assert [a.value for a in rule.actions] == ["Leave the property now.", "red_flash", "Intruder detected"]


def test_template_overrides(parser):
    definition = template_to_definition("Auto Police Contact", rule_id="garage-police", overrides={"sensitivity": "high"})
    rule = parser.parse_dict(definition)

    assert rule.id == "garage-police"
    assert rule.sensitivity == Sensitivity.HIGH
    assert rule.action_types[0] == ActionType.POLICE


def test_unknown_template():
    with pytest.raises(ConfigError, match="Unknown template"):
        get_template("Laser Grid")
