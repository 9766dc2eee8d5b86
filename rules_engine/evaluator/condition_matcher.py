"""
Condition Matcher

Evaluates a rule's condition against a normalized event.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, tzinfo
from typing import Any, Dict, Iterable, List, Optional

from exceptions import ConfigError
from rules_engine.models import (
    ALLOWED_OPERATORS,
    Condition,
    ConditionOperator,
    ConditionType,
    Event,
    EventSource,
    Rule,
    Sensitivity,
)


# Minimum event confidence (0-100, inclusive) a rule of each sensitivity
# requires before its condition is even considered.
SENSITIVITY_THRESHOLDS: Dict[Sensitivity, float] = {
    Sensitivity.HIGH: 80.0,
    Sensitivity.MEDIUM: 50.0,
    Sensitivity.LOW: 0.0,
}

_TIME_FORMATS = ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p", "%I %p", "%I%p")


def parse_time_of_day(value: str) -> time:
    """
    Parse a time-of-day condition value.

    Accepts ``HH:MM``, ``HH:MM:SS`` and 12-hour forms such as ``9:30 PM``.

    Raises:
        ConfigError: If the value is not a recognizable time of day
    """
    text = (value or "").strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ConfigError(
        f"Invalid time of day: {value!r}",
        component="ConditionMatcher",
        context={"value": value}
    )


def confidence_threshold(sensitivity: Sensitivity) -> float:
    """Return the minimum confidence for a sensitivity level."""
    return SENSITIVITY_THRESHOLDS[Sensitivity(sensitivity)]


@dataclass
class MatchResult:
    """Outcome of evaluating one rule against one event."""
    rule_id: Optional[str]
    matched: bool
    reason: str = ""
    threshold: Optional[float] = None
    error: Optional[ConfigError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "matched": self.matched,
            "reason": self.reason,
            "threshold": self.threshold,
            "error": self.error.to_dict() if self.error else None,
            "metadata": self.metadata
        }


class ConditionMatcher:
    """
    Match rules against events.

    Never raises for a malformed rule: the result carries a ``ConfigError``
    and reports no match.
    """

    def __init__(self, device_registry=None, tz: Optional[tzinfo] = None):
        """
        Initialize the matcher.

        Args:
            device_registry: Optional registry consulted for device conditions
            tz: Timezone used to derive an event's time of day
        """
        self.device_registry = device_registry
        self.tz = tz

    def matches(self, rule: Rule, event: Event) -> bool:
        """Return True when the rule fires for the event."""
        return self.evaluate(rule, event).matched

    def evaluate(self, rule: Rule, event: Event) -> MatchResult:
        """
        Evaluate a rule against an event.

        Args:
            rule: Rule to evaluate
            event: Normalized event

        Returns:
            MatchResult
        """
        if not rule.enabled:
            return MatchResult(rule_id=rule.id, matched=False, reason="rule disabled")

        threshold = confidence_threshold(rule.sensitivity)

        try:
            self._check_operator(rule.condition, rule.id)
            if rule.condition_type == ConditionType.TIME:
                # Parse up front so a malformed value is reported even when
                # the confidence gate would have rejected the event anyway.
                parse_time_of_day(rule.condition_value)
        except ConfigError as e:
            e.rule_id = rule.id
            e.context.setdefault("rule_id", rule.id)
            return MatchResult(
                rule_id=rule.id,
                matched=False,
                reason="invalid rule",
                threshold=threshold,
                error=e
            )

        if event.confidence < threshold:
            return MatchResult(
                rule_id=rule.id,
                matched=False,
                reason=f"confidence {event.confidence:g} below {rule.sensitivity.value} threshold {threshold:g}",
                threshold=threshold
            )

        result = self.match_condition(rule.condition, event)
        result.rule_id = rule.id
        result.threshold = threshold
        return result

    def match_condition(self, condition: Condition, event: Event) -> MatchResult:
        """
        Evaluate a bare condition (no enabled flag, no confidence gate).

        Args:
            condition: Condition to test
            event: Normalized event

        Returns:
            MatchResult with ``rule_id`` unset
        """
        try:
            self._check_operator(condition, None)
        except ConfigError as e:
            return MatchResult(rule_id=None, matched=False, reason="invalid rule", error=e)

        if condition.type == ConditionType.FACE:
            if event.source != EventSource.FACE:
                return MatchResult(rule_id=None, matched=False, reason="not a face event")
            return self._match_text(event.kind, condition)

        if condition.type == ConditionType.BEHAVIOR:
            return self._match_text(event.kind, condition)

        if condition.type == ConditionType.DEVICE:
            return self._match_device(condition, event)

        return self._match_time(condition, event)

    def evaluate_many(self, rules: Iterable[Rule], event: Event) -> List[MatchResult]:
        """Evaluate every rule against the event."""
        return [self.evaluate(rule, event) for rule in rules]

    def _check_operator(self, condition: Condition, rule_id: Optional[str]) -> None:
        allowed = ALLOWED_OPERATORS[condition.type]
        if condition.operator not in allowed:
            raise ConfigError(
                f"Operator '{condition.operator.value}' is not valid for "
                f"{condition.type.value} conditions",
                rule_id=rule_id,
                component="ConditionMatcher"
            )

    def _match_text(self, actual: Optional[str], condition: Condition) -> MatchResult:
        if actual is None:
            return MatchResult(rule_id=None, matched=False, reason="no value to compare")

        if condition.operator == ConditionOperator.EQUALS:
            matched = actual == condition.value
        else:
            matched = condition.value in actual

        reason = (
            f"'{actual}' {condition.operator.value} '{condition.value}'"
            if matched else
            f"'{actual}' does not {condition.operator.value.rstrip('s')} '{condition.value}'"
        )
        return MatchResult(rule_id=None, matched=matched, reason=reason)

    def _match_device(self, condition: Condition, event: Event) -> MatchResult:
        if not event.device_id:
            return MatchResult(rule_id=None, matched=False, reason="event has no device")

        metadata: Dict[str, Any] = {}
        if self.device_registry is not None:
            if not self.device_registry.is_known(event.device_id):
                return MatchResult(
                    rule_id=None,
                    matched=False,
                    reason=f"unknown device '{event.device_id}'"
                )
            metadata["device_alive"] = self.device_registry.is_alive(event.device_id)

        result = self._match_text(event.device_id, condition)
        result.metadata.update(metadata)
        return result

    def _match_time(self, condition: Condition, event: Event) -> MatchResult:
        try:
            boundary = parse_time_of_day(condition.value)
        except ConfigError as e:
            return MatchResult(rule_id=None, matched=False, reason="invalid rule", error=e)

        timestamp = event.timestamp
        if self.tz is not None and timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(self.tz)
        event_time = timestamp.time().replace(tzinfo=None)

        if condition.operator == ConditionOperator.AFTER:
            matched = event_time > boundary
        else:
            matched = event_time < boundary

        return MatchResult(
            rule_id=None,
            matched=matched,
            reason=f"{event_time.strftime('%H:%M:%S')} {'is' if matched else 'is not'} "
                   f"{condition.operator.value} {boundary.strftime('%H:%M:%S')}",
            metadata={"event_time": event_time.isoformat()}
        )
