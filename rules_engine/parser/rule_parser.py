"""
Rule Parser

Parses rule definitions from YAML files and plain dictionaries.
"""

import logging
import yaml
from typing import Dict, Any, List
from pathlib import Path
from datetime import datetime, timezone

from pydantic import ValidationError

from exceptions import ConfigError
from rules_engine.models import (
    ALLOWED_OPERATORS,
    ActionType,
    ConditionOperator,
    ConditionType,
    Rule,
    Sensitivity,
    ValidationResult
)
from rules_engine.evaluator import parse_time_of_day


logger = logging.getLogger("HomeGuardRuleParser")


class RuleParser:
    """
    Parse rule definitions.

    Two shapes are accepted: the flat record stored by the rule store and
    the nested ``condition: {type, value, operator}`` shape used by the
    dashboard's trigger editor.
    """

    def __init__(self):
        """Initialize the rule parser."""
        self.valid_operators = set(op.value for op in ConditionOperator)
        self.valid_condition_types = set(t.value for t in ConditionType)
        self.valid_sensitivities = set(s.value for s in Sensitivity)
        self.valid_action_types = set(a.value for a in ActionType)

    def parse_yaml_file(self, file_path: str) -> Rule:
        """
        Parse rule from YAML file.

        Raises:
            ConfigError: If parsing fails
        """
        try:
            with open(file_path, 'r') as f:
                yaml_content = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigError(f"Rule file not found: {file_path}", component="RuleParser")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax in {file_path}: {e}", component="RuleParser")

        if not yaml_content:
            raise ConfigError(f"Empty YAML file: {file_path}", component="RuleParser")

        return self.parse_dict(yaml_content)

    def parse_dict(self, data: Dict[str, Any]) -> Rule:
        """
        Parse rule from a dictionary.

        Raises:
            ConfigError: If a field is missing or invalid
        """
        if not isinstance(data, dict):
            raise ConfigError("Rule definition must be a mapping", component="RuleParser")

        rule_id = data.get('id')
        if not rule_id:
            raise ConfigError("Rule 'id' is required", component="RuleParser")
        rule_id = str(rule_id)

        condition = data.get('condition') or {}
        condition_type = data.get('condition_type', condition.get('type'))
        condition_value = data.get('condition_value', condition.get('value'))
        operator = data.get('operator', condition.get('operator', ConditionOperator.EQUALS.value))

        if not condition_type:
            raise ConfigError("Rule condition type is required", rule_id=rule_id, component="RuleParser")
        if str(condition_type) not in self.valid_condition_types:
            raise ConfigError(
                f"Invalid condition type: {condition_type}. Must be one of: {sorted(self.valid_condition_types)}",
                rule_id=rule_id,
                component="RuleParser"
            )
        if str(operator) not in self.valid_operators:
            raise ConfigError(
                f"Invalid operator: {operator}. Must be one of: {sorted(self.valid_operators)}",
                rule_id=rule_id,
                component="RuleParser"
            )

        sensitivity = data.get('sensitivity', Sensitivity.MEDIUM.value)
        if str(sensitivity) not in self.valid_sensitivities:
            raise ConfigError(f"Invalid sensitivity: {sensitivity}", rule_id=rule_id, component="RuleParser")

        actions = self._parse_actions(data.get('actions') or [], rule_id)

        enabled = data.get('enabled', data.get('is_active', True))
        now = datetime.now(timezone.utc)

        fields = {
            "id": rule_id,
            "name": data.get('name') or rule_id,
            "condition_type": condition_type,
            "condition_value": condition_value if condition_value is not None else "",
            "operator": operator,
            "sensitivity": sensitivity,
            "actions": actions,
            "enabled": bool(enabled),
            "tags": data.get('tags') or [],
            "created_at": data.get('created_at') or now,
            "updated_at": data.get('updated_at') or now,
        }
        if data.get('notification_type'):
            fields["notification_type"] = data['notification_type']

        return self.build_rule(fields)

    def build_rule(self, fields: Dict[str, Any]) -> Rule:
        """
        Construct a Rule, converting pydantic failures into ConfigError.
        """
        try:
            return Rule.model_validate(fields)
        except ValidationError as e:
            messages = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(
                f"Invalid rule: {messages}",
                rule_id=fields.get("id"),
                component="RuleParser"
            )

    def _parse_actions(self, actions_data: List[Dict[str, Any]], rule_id: str) -> List[Dict[str, Any]]:
        """Check action entries before handing them to the model."""
        if not isinstance(actions_data, list):
            raise ConfigError("Actions must be a list", rule_id=rule_id, component="RuleParser")

        actions = []
        for action_data in actions_data:
            if not isinstance(action_data, dict):
                raise ConfigError("Each action must be a mapping", rule_id=rule_id, component="RuleParser")

            action_type = action_data.get('type')
            if not action_type:
                raise ConfigError("Action 'type' is required", rule_id=rule_id, component="RuleParser")
            if action_type not in self.valid_action_types:
                raise ConfigError(
                    f"Unknown action type: {action_type}. Must be one of: {sorted(self.valid_action_types)}",
                    rule_id=rule_id,
                    component="RuleParser"
                )
            actions.append(dict(action_data))

        return actions

    def validate_rule(self, rule: Rule) -> ValidationResult:
        """
        Validate a rule beyond what the model enforces.

        Args:
            rule: Rule to validate

        Returns:
            ValidationResult with any errors/warnings
        """
        errors = []
        warnings = []

        if not rule.condition_value.strip():
            errors.append("Condition value must not be empty")

        if rule.operator not in ALLOWED_OPERATORS[rule.condition_type]:
            errors.append(
                f"Operator '{rule.operator.value}' is not valid for {rule.condition_type.value} conditions"
            )

        if rule.condition_type == ConditionType.TIME:
            try:
                parse_time_of_day(rule.condition_value)
            except ConfigError as e:
                errors.append(e.message)

        for action in rule.actions:
            if action.type not in self.valid_action_types:
                errors.append(f"Unknown action type: {action.type}")

        if not rule.actions:
            warnings.append("Rule has no actions - it will match but dispatch nothing")

        if ActionType.POLICE in rule.action_types and ActionType.NOTIFICATION not in rule.action_types:
            warnings.append("Police contact without a notification - the homeowner will not be told")

        if not rule.name or rule.name == rule.id:
            warnings.append("Rule has no descriptive name")

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def parse_multiple_files(self, directory: str) -> List[Rule]:
        """
        Parse all YAML rule files in a directory.

        Files that fail to parse are logged and skipped.
        """
        rules = []
        rule_dir = Path(directory)

        if not rule_dir.exists():
            raise ConfigError(f"Directory not found: {directory}", component="RuleParser")

        files = sorted(list(rule_dir.glob('*.yaml')) + list(rule_dir.glob('*.yml')))
        for yaml_file in files:
            try:
                rules.append(self.parse_yaml_file(str(yaml_file)))
            except ConfigError as e:
                logger.warning(f"Failed to parse {yaml_file}: {e.message}")

        return rules

    def rule_to_yaml(self, rule: Rule) -> str:
        """
        Convert a rule to YAML string.
        """
        rule_dict = rule.to_dict()
        rule_dict.pop('created_at', None)
        rule_dict.pop('updated_at', None)

        return yaml.dump(rule_dict, default_flow_style=False, sort_keys=False)

    def save_rule_to_file(self, rule: Rule, file_path: str):
        """
        Save a rule to YAML file.
        """
        yaml_content = self.rule_to_yaml(rule)

        with open(file_path, 'w') as f:
            f.write(yaml_content)
