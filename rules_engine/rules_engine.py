"""
Rules Engine Main Class

Matches events against a rule snapshot, dispatches the actions of every
matching rule and records one alert per match.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from exceptions import HistorianError, StoreUnavailableError
from metrics import EngineMetrics, Timer
from rules_engine.actions import ActionDispatcher
from rules_engine.evaluator import ConditionMatcher, MatchResult
from rules_engine.models import (
    ActionType,
    Alert,
    DispatchResult,
    EvaluationReport,
    Event,
    Rule,
    Severity
)
from rules_engine.store import RuleSnapshot, RuleStore


logger = logging.getLogger("HomeGuardEngine")

CRITICAL_ACTIONS = (ActionType.POLICE, ActionType.ALARM)


def alert_severity(rule: Rule) -> Severity:
    """Critical when the rule calls the police or sounds the alarm, else its sensitivity."""
    if any(t in CRITICAL_ACTIONS for t in rule.action_types):
        return Severity.CRITICAL
    return Severity(rule.sensitivity.value)


def alert_message(rule: Rule, event: Event) -> str:
    for action in rule.actions:
        if action.action_type == ActionType.NOTIFICATION:
            return action.value
    return f"{rule.name or rule.id}: {event.kind}"


class RulesEngine:
    """
    Stateless evaluation steps over a rule store.

    The evaluation loop drives these steps; ``evaluate`` runs them all in
    one call.
    """

    def __init__(
        self,
        store: RuleStore,
        dispatcher: ActionDispatcher,
        matcher: Optional[ConditionMatcher] = None,
        historian=None,
        metrics: Optional[EngineMetrics] = None,
        snapshot_refresh_seconds: Optional[float] = 60.0
    ):
        """
        Args:
            store: Rule store
            dispatcher: Action dispatcher
            matcher: Condition matcher
            historian: Alert sink with ``save_alerts``; alerts are only kept in reports when omitted
            metrics: Metrics helper
            snapshot_refresh_seconds: Snapshot age that triggers a store refresh (None disables)
        """
        self.store = store
        self.dispatcher = dispatcher
        self.matcher = matcher or ConditionMatcher()
        self.historian = historian
        self.metrics = metrics or EngineMetrics()
        self.snapshot_refresh_seconds = snapshot_refresh_seconds

    # ------------------------------------------------------------------
    # Evaluation steps
    # ------------------------------------------------------------------

    def take_snapshot(self) -> RuleSnapshot:
        """
        Snapshot the rule set, refreshing it first when it is stale.

        When the store cannot be reached the cached snapshot is returned
        with ``degraded`` set.
        """
        snapshot = self.store.snapshot()
        if self.snapshot_refresh_seconds is None:
            return snapshot
        if snapshot.version > 0 and snapshot.age_seconds() < self.snapshot_refresh_seconds:
            return snapshot

        try:
            return self.store.refresh()
        except StoreUnavailableError as e:
            logger.warning(f"Rule store unavailable, using cached snapshot v{snapshot.version}: {e.message}")
            self.metrics.record_store_unavailable()
            return replace(snapshot, degraded=True)

    def match(self, event: Event, snapshot: RuleSnapshot) -> Tuple[EvaluationReport, List[Rule]]:
        """
        Match an event against every rule in the snapshot.

        Malformed rules are skipped and reported in ``report.errors``.
        """
        report = EvaluationReport(
            event_id=event.id,
            snapshot_version=snapshot.version,
            degraded=snapshot.degraded,
            rules_evaluated=len(snapshot)
        )

        matched: List[Rule] = []
        for rule, result in zip(snapshot.rules, self.matcher.evaluate_many(snapshot.rules, event)):
            if result.error is not None:
                logger.warning(f"Rule {rule.id} skipped: {result.error.message}")
                self.metrics.record_rule_error(rule.id)
                report.errors.append(result.error.to_dict())
                continue
            if result.matched:
                logger.debug(f"Rule {rule.id} matched event {event.id}: {result.reason}")
                matched.append(rule)

        report.matched_rule_ids = [r.id for r in matched]
        return report, matched

    async def dispatch(self, report: EvaluationReport, rules: List[Rule], event: Event) -> List[Alert]:
        """
        Dispatch every matched rule's actions concurrently and build alerts.
        """
        if not rules:
            return []

        results: List[DispatchResult] = await asyncio.gather(
            *(self.dispatcher.dispatch(rule.actions, self._context(rule, event), rule.id) for rule in rules)
        )

        alerts = []
        for rule, result in zip(rules, results):
            report.dispatch_results[rule.id] = result
            alerts.append(Alert(
                rule_id=rule.id,
                rule_name=rule.name,
                event_id=event.id,
                actions_attempted=[o.action_type for o in result.attempted],
                actions_succeeded=[o.action_type for o in result.succeeded],
                severity=alert_severity(rule),
                message=alert_message(rule, event),
                degraded=report.degraded,
                outcomes=result.outcomes
            ))

        report.alerts = alerts
        return alerts

    async def persist(self, report: EvaluationReport) -> bool:
        """
        Write the report's alerts in one transaction.

        A failed write is recorded on the report, not raised.
        """
        if not report.alerts or self.historian is None:
            return True

        try:
            with Timer("alert_write_duration_ms", collector=self.metrics.collector):
                await asyncio.to_thread(self.historian.save_alerts, report.alerts)
        except HistorianError as e:
            logger.error(f"Alerts for event {report.event_id} were not stored: {e.message}")
            report.alerts_persisted = False
            report.errors.append(e.to_dict())
            self.metrics.record_alerts(len(report.alerts), persisted=False)
            return False

        self.metrics.record_alerts(len(report.alerts), persisted=True)
        return True

    async def evaluate(self, event: Event, snapshot: Optional[RuleSnapshot] = None) -> EvaluationReport:
        """
        Run every step for one event.
        """
        if snapshot is None:
            snapshot = self.take_snapshot()
        report, matched = self.match(event, snapshot)
        await self.dispatch(report, matched, event)
        await self.persist(report)
        report.finished_at = datetime.now(timezone.utc)
        return report

    # ------------------------------------------------------------------
    # Admin helpers
    # ------------------------------------------------------------------

    def test_rule(self, rule_id: str, event: Event) -> MatchResult:
        """
        Dry-run one stored rule against an event. Nothing is dispatched.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        return self.test_definition(self.store.get(rule_id), event)

    def test_definition(self, rule: Rule, event: Event) -> MatchResult:
        """Dry-run an unsaved rule against an event."""
        result = self.matcher.evaluate(rule, event)
        result.metadata["would_dispatch"] = [a.to_dict() for a in rule.actions] if result.matched else []
        result.metadata["severity"] = alert_severity(rule).value
        return result

    def get_summary(self) -> Dict[str, Any]:
        """
        Get summary of the rule set.
        """
        snapshot = self.store.snapshot()
        by_type: Dict[str, int] = {}
        for rule in snapshot.rules:
            by_type[rule.condition_type.value] = by_type.get(rule.condition_type.value, 0) + 1

        return {
            "total_rules": len(snapshot),
            "enabled_rules": len(snapshot.enabled_rules),
            "disabled_rules": len(snapshot) - len(snapshot.enabled_rules),
            "rules_by_condition_type": by_type,
            "snapshot_version": snapshot.version,
            "snapshot_taken_at": snapshot.taken_at.isoformat(),
            "load_errors": [e.to_dict() for e in self.store.load_errors]
        }

    @staticmethod
    def _context(rule: Rule, event: Event) -> Dict[str, Any]:
        return {
            "rule_id": rule.id,
            "rule_name": rule.name,
            "event_id": event.id,
            "event": event.to_dict(),
            "severity": alert_severity(rule).value,
            "notification_type": rule.notification_type.value
        }
