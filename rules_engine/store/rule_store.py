"""
Rule Store

Authoritative set of rules. Every mutation is written to the persistence
backend first; the in-memory cache changes only after the write succeeds.
Readers work from immutable snapshots and never see a half-applied change.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from exceptions import ConfigError, DuplicateRuleError, RuleNotFoundError
from rules_engine.models import ConditionType, Rule, ValidationResult
from rules_engine.parser import RuleParser
from rules_engine.store.persistence import RulePersistence


logger = logging.getLogger("HomeGuardStore")


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of the rule set at one point in time."""
    rules: Tuple[Rule, ...] = ()
    version: int = 0
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    degraded: bool = False

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def enabled_rules(self) -> Tuple[Rule, ...]:
        return tuple(r for r in self.rules if r.enabled)

    def get(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.taken_at).total_seconds()


class RuleStore:
    """
    CRUD over rules with write-through persistence.
    """

    def __init__(self, persistence: RulePersistence, parser: Optional[RuleParser] = None):
        """
        Args:
            persistence: Durable backend
            parser: Rule parser/validator
        """
        self.persistence = persistence
        self.parser = parser or RuleParser()
        self.load_errors: List[ConfigError] = []

        self._write_lock = threading.Lock()
        self._snapshot = RuleSnapshot()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> RuleSnapshot:
        """Current immutable snapshot."""
        return self._snapshot

    def get(self, rule_id: str) -> Rule:
        """
        Raises:
            RuleNotFoundError: If no rule has this id
        """
        rule = self._snapshot.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule not found: {rule_id}", component="RuleStore")
        return rule

    def list(
        self,
        filter: Optional[Callable[[Rule], bool]] = None,
        enabled: Optional[bool] = None,
        condition_type: Optional[Union[str, ConditionType]] = None,
        tag: Optional[str] = None
    ) -> List[Rule]:
        """
        List rules, optionally filtered.

        Args:
            filter: Arbitrary predicate
            enabled: Only enabled (True) or disabled (False) rules
            condition_type: Only rules with this condition type
            tag: Only rules carrying this tag
        """
        rules = list(self._snapshot.rules)

        if enabled is not None:
            rules = [r for r in rules if r.enabled == enabled]
        if condition_type is not None:
            wanted = ConditionType(condition_type)
            rules = [r for r in rules if r.condition_type == wanted]
        if tag is not None:
            rules = [r for r in rules if tag in r.tags]
        if filter is not None:
            rules = [r for r in rules if filter(r)]

        return rules

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, rule_id: str) -> bool:
        return self._snapshot.get(rule_id) is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, rule: Union[Rule, Dict[str, Any]]) -> str:
        """
        Add a new rule.

        Returns:
            The rule id

        Raises:
            ConfigError: If the rule is invalid
            DuplicateRuleError: If the id is taken (store unchanged)
            StoreUnavailableError: If persistence fails (store unchanged)
        """
        rule = self._coerce(rule)
        self._ensure_valid(rule)

        with self._write_lock:
            current = self._snapshot
            if current.get(rule.id) is not None:
                raise DuplicateRuleError(
                    f"Rule already exists: {rule.id}",
                    component="RuleStore",
                    context={"rule_id": rule.id}
                )

            now = datetime.now(timezone.utc)
            rule = rule.model_copy(update={"created_at": rule.created_at or now, "updated_at": now})

            self.persistence.insert(rule.to_dict())
            self._publish(current.rules + (rule,))

        logger.info(f"Added rule {rule.id} ({rule.condition_type.value} {rule.operator.value} '{rule.condition_value}')")
        return rule.id

    def update(self, rule_id: str, patch: Dict[str, Any]) -> Rule:
        """
        Apply a partial update.

        Raises:
            RuleNotFoundError: If no rule has this id
            ConfigError: If the patched rule is invalid
            StoreUnavailableError: If persistence fails (store unchanged)
        """
        if "id" in patch and patch["id"] != rule_id:
            raise ConfigError("Rule id cannot be changed", rule_id=rule_id, component="RuleStore")

        with self._write_lock:
            current = self._snapshot
            existing = current.get(rule_id)
            if existing is None:
                raise RuleNotFoundError(f"Rule not found: {rule_id}", component="RuleStore")

            merged = existing.to_dict()
            merged.update({k: v for k, v in patch.items() if k != "condition"})
            if isinstance(patch.get("condition"), dict):
                condition = patch["condition"]
                merged["condition_type"] = condition.get("type", merged["condition_type"])
                merged["condition_value"] = condition.get("value", merged["condition_value"])
                merged["operator"] = condition.get("operator", merged["operator"])
            if "is_active" in patch:
                merged["enabled"] = patch["is_active"]
            merged["created_at"] = existing.created_at
            merged["updated_at"] = datetime.now(timezone.utc)

            updated = self.parser.parse_dict(merged)
            self._ensure_valid(updated)

            self.persistence.update(updated.to_dict())
            self._publish(tuple(updated if r.id == rule_id else r for r in current.rules))

        logger.info(f"Updated rule {rule_id}")
        return updated

    def set_enabled(self, rule_id: str, enabled: bool) -> Rule:
        """Enable or disable a rule."""
        return self.update(rule_id, {"enabled": bool(enabled)})

    def remove(self, rule_id: str) -> None:
        """
        Raises:
            RuleNotFoundError: If no rule has this id
            StoreUnavailableError: If persistence fails (store unchanged)
        """
        with self._write_lock:
            current = self._snapshot
            if current.get(rule_id) is None:
                raise RuleNotFoundError(f"Rule not found: {rule_id}", component="RuleStore")

            self.persistence.delete(rule_id)
            self._publish(tuple(r for r in current.rules if r.id != rule_id))

        logger.info(f"Removed rule {rule_id}")

    def refresh(self) -> RuleSnapshot:
        """
        Reload every rule from persistence, replacing the cache.

        Records that fail to parse or validate are skipped and kept in
        ``load_errors``.

        Mutations wait until the reload has been published.

        Raises:
            StoreUnavailableError: If persistence cannot be read (cache unchanged)
        """
        with self._write_lock:
            records = self.persistence.load_all()
            rules, errors = self._parse_records(records)
            self.load_errors = errors
            snapshot = self._publish(tuple(rules))

        logger.info(f"Loaded {len(rules)} rules from persistence (version {snapshot.version})")
        return snapshot

    def _parse_records(self, records: List[Dict[str, Any]]) -> Tuple[List[Rule], List[ConfigError]]:
        rules: List[Rule] = []
        errors: List[ConfigError] = []
        seen = set()
        for record in records:
            try:
                rule = self.parser.parse_dict(record)
                self._ensure_valid(rule)
            except ConfigError as e:
                logger.warning(f"Skipping stored rule {record.get('id')}: {e.message}")
                errors.append(e)
                continue
            if rule.id in seen:
                logger.warning(f"Skipping duplicate stored rule {rule.id}")
                continue
            seen.add(rule.id)
            rules.append(rule)
        return rules, errors

    def seed(self, definitions: List[Union[Rule, Dict[str, Any]]]) -> List[str]:
        """
        Add rules that are not present yet.

        Returns:
            Ids of the rules that were added
        """
        added = []
        for definition in definitions:
            rule = self._coerce(definition)
            if rule.id in self:
                continue
            added.append(self.add(rule))
        return added

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, rule: Union[Rule, Dict[str, Any]]) -> ValidationResult:
        """Validate without storing."""
        try:
            rule = self._coerce(rule)
        except ConfigError as e:
            return ValidationResult(valid=False, errors=[e.message])
        return self.parser.validate_rule(rule)

    def _ensure_valid(self, rule: Rule) -> None:
        result = self.parser.validate_rule(rule)
        if not result.valid:
            raise ConfigError(
                "; ".join(result.errors),
                rule_id=rule.id,
                component="RuleStore",
                context={"errors": result.errors}
            )
        for warning in result.warnings:
            logger.debug(f"Rule {rule.id}: {warning}")

    def _coerce(self, rule: Union[Rule, Dict[str, Any]]) -> Rule:
        if isinstance(rule, Rule):
            return rule
        return self.parser.parse_dict(rule)

    def _publish(self, rules: Tuple[Rule, ...]) -> RuleSnapshot:
        snapshot = RuleSnapshot(rules=rules, version=self._snapshot.version + 1)
        self._snapshot = snapshot
        return snapshot
