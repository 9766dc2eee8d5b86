"""
Rule Templates

Ready-made triggers offered by the dashboard and the default monitoring
rules installed on a fresh home.
"""

import re
from typing import Any, Dict, List, Optional

from exceptions import ConfigError


TRIGGER_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "VEXOR Warning",
        "condition": {"type": "face", "value": "Foe", "operator": "equals"},
        "actions": [
            {"type": "speaker", "value": "Leave the property now."},
            {"type": "light", "value": "red_flash"},
            {"type": "notification", "value": "Intruder detected"},
        ],
    },
    {
        "name": "Silent Alert",
        "condition": {"type": "face", "value": "Unknown", "operator": "equals"},
        "actions": [
            {"type": "notification", "value": "Unknown person detected"},
            {"type": "light", "value": "yellow_flash"},
        ],
    },
    {
        "name": "Auto Police Contact",
        "condition": {"type": "behavior", "value": "theft", "operator": "equals"},
        "actions": [
            {"type": "police", "value": "emergency"},
            {"type": "notification", "value": "Police contacted"},
            {"type": "light", "value": "red_flash"},
        ],
    },
]


DEFAULT_MONITORING_RULES: List[Dict[str, Any]] = [
    {
        "id": "monitor-intrusion",
        "name": "Intrusion detection",
        "condition_type": "behavior",
        "condition_value": "intrusion",
        "sensitivity": "high",
        "notification_type": "both",
        "actions": [
            {"type": "notification", "value": "Intrusion detected"},
            {"type": "light", "value": "red_flash"},
        ],
        "tags": ["monitoring"],
    },
    {
        "id": "monitor-fire",
        "name": "Fire detection",
        "condition_type": "behavior",
        "condition_value": "fire",
        "sensitivity": "high",
        "notification_type": "emergency",
        "actions": [
            {"type": "notification", "value": "Fire detected"},
            {"type": "speaker", "value": "Fire alert! Evacuate immediately!"},
        ],
        "tags": ["monitoring"],
    },
    {
        "id": "monitor-fall",
        "name": "Fall detection",
        "condition_type": "behavior",
        "condition_value": "fall",
        "sensitivity": "high",
        "notification_type": "both",
        "actions": [
            {"type": "notification", "value": "Fall detected"},
            {"type": "speaker", "value": "Help needed! Fall detected!"},
        ],
        "tags": ["monitoring"],
    },
    {
        "id": "monitor-hazard",
        "name": "Hazard detection",
        "condition_type": "behavior",
        "condition_value": "hazard",
        "sensitivity": "medium",
        "notification_type": "alert",
        "actions": [
            {"type": "notification", "value": "Hazard detected"},
        ],
        "tags": ["monitoring"],
    },
    {
        "id": "monitor-inactivity",
        "name": "Inactivity detection",
        "condition_type": "behavior",
        "condition_value": "inactivity",
        "sensitivity": "medium",
        "notification_type": "alert",
        "actions": [
            {"type": "notification", "value": "Unusual inactivity detected"},
        ],
        "tags": ["monitoring"],
    },
    {
        "id": "monitor-unknown-face",
        "name": "Unknown face",
        "condition_type": "face",
        "condition_value": "Unknown",
        "sensitivity": "high",
        "notification_type": "both",
        "actions": [
            {"type": "notification", "value": "Unknown face detected"},
            {"type": "light", "value": "yellow_flash"},
        ],
        "tags": ["monitoring"],
    },
    {
        "id": "monitor-threatening-behavior",
        "name": "Threatening behavior",
        "condition_type": "behavior",
        "condition_value": "threatening",
        "operator": "contains",
        "sensitivity": "high",
        "notification_type": "both",
        "actions": [
            {"type": "notification", "value": "Threatening behavior detected"},
            {"type": "light", "value": "red_flash"},
            {"type": "speaker", "value": "Warning: Threatening behavior detected"},
        ],
        "tags": ["monitoring"],
    },
]


def slugify(name: str) -> str:
    """Turn a display name into a rule id."""
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    return slug or "rule"


def get_template(name: str) -> Dict[str, Any]:
    """
    Look up a trigger template by name (case-insensitive).

    Raises:
        ConfigError: If no template has that name
    """
    for template in TRIGGER_TEMPLATES:
        if template["name"].lower() == name.strip().lower():
            return template
    raise ConfigError(
        f"Unknown template: {name}",
        component="RuleTemplates",
        context={"available": [t["name"] for t in TRIGGER_TEMPLATES]}
    )


def template_to_definition(
    name: str,
    rule_id: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Build a rule definition from a trigger template.

    The result is a plain dict in the nested trigger shape accepted by
    ``RuleParser.parse_dict``.
    """
    template = get_template(name)
    definition = {
        "id": rule_id or slugify(template["name"]),
        "name": template["name"],
        "condition": dict(template["condition"]),
        "actions": [dict(a) for a in template["actions"]],
        "is_active": True,
        "tags": ["template"],
    }
    if overrides:
        definition.update(overrides)
    return definition
