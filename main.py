"""
Main Orchestrator: Complete HomeGuard System
Wires the rule store, matcher, dispatcher and evaluation loop together.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import httpx

from config import load_config, HomeGuardConfig, SystemMode
from database import DatabaseManager
from historian import AlertHistorian
from metrics import EngineMetrics
from exceptions import ConfigError, ConfigurationError, StoreUnavailableError
from resilience import CircuitBreaker
from rules_engine.models import ActionType, Event
from rules_engine.parser import DEFAULT_MONITORING_RULES, RuleParser
from rules_engine.evaluator import ConditionMatcher
from rules_engine.devices import InMemoryDeviceRegistry
from rules_engine.normalizer import EventNormalizer
from rules_engine.actions import (
    ActionDispatcher,
    ActionHandler,
    ConfirmationGate,
    ConfirmationToken,
    LogActionHandler,
    WebhookActionHandler
)
from rules_engine.store import HostedRulePersistence, RuleStore, SqliteRulePersistence
from rules_engine.rules_engine import RulesEngine
from rules_engine.evaluation_loop import EvaluationLoop


# Logging is configured by the entry points (cli.py / api.py), not here.
logger = logging.getLogger("HomeGuardOrchestrator")


class HomeGuardSystem:
    """
    Main orchestrator for the HomeGuard rules engine.
    """

    def __init__(
        self,
        config: Optional[HomeGuardConfig] = None,
        persistence=None,
        handlers: Optional[Dict[ActionType, ActionHandler]] = None
    ):
        """
        Args:
            config: Configuration (loaded from the environment when omitted)
            persistence: Rule persistence backend override
            handlers: Action handlers that replace the configured ones
        """
        self.config = config or load_config()
        logger.info(f"HomeGuard initializing: mode={self.config.system.mode.value}")

        self.metrics = EngineMetrics()
        self.db_manager = DatabaseManager(self.config.database)
        self.historian = AlertHistorian(self.db_manager)

        self.parser = RuleParser()
        self.persistence = persistence or self._build_persistence()
        self.store = RuleStore(self.persistence, self.parser)

        self.device_registry = InMemoryDeviceRegistry(
            liveness_seconds=self.config.engine.device_liveness_seconds
        )
        self.normalizer = EventNormalizer()
        self.matcher = ConditionMatcher(
            device_registry=self.device_registry,
            tz=self._timezone()
        )
        self.confirmation_gate = ConfirmationGate(
            timeout_minutes=self.config.engine.confirmation_timeout_minutes,
            auto_confirm=self.config.engine.police_auto_confirm,
            retention_minutes=self.config.engine.confirmation_retention_minutes
        )
        self.dispatcher = ActionDispatcher(
            timeout_seconds=self.config.engine.action_timeout_seconds,
            confirmation_gate=self.confirmation_gate,
            metrics=self.metrics
        )
        self._register_handlers(handlers)

        self.engine = RulesEngine(
            store=self.store,
            dispatcher=self.dispatcher,
            matcher=self.matcher,
            historian=self.historian,
            metrics=self.metrics,
            snapshot_refresh_seconds=self.config.engine.snapshot_refresh_seconds
        )
        self.loop = EvaluationLoop(
            self.engine,
            queue_size=self.config.engine.queue_size,
            workers=self.config.engine.workers,
            recent_reports=self.config.engine.recent_reports,
            metrics=self.metrics
        )

        self._load_rules()
        logger.info(f"HomeGuard ready with {len(self.store)} rule(s)")

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _build_persistence(self):
        store_config = self.config.store
        if store_config.backend == "hosted":
            return HostedRulePersistence(
                base_url=store_config.hosted_url,
                api_key=store_config.hosted_api_key,
                table=store_config.hosted_table,
                timeout_seconds=store_config.timeout_seconds,
                max_retries=store_config.max_retries,
                circuit_breaker=CircuitBreaker(
                    failure_threshold=store_config.circuit_failure_threshold,
                    recovery_timeout=store_config.circuit_recovery_seconds,
                    expected_exceptions=(httpx.HTTPError,),
                    name="hosted-rule-store"
                )
            )
        return SqliteRulePersistence(self.db_manager)

    def _timezone(self):
        name = self.config.system.timezone
        if not name:
            return None
        try:
            return ZoneInfo(name)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown timezone: {name}",
                component="HomeGuardSystem",
                context={"cause": str(e)}
            )

    def _register_handlers(self, handlers: Optional[Dict[ActionType, ActionHandler]]) -> None:
        if self.config.system.mode != SystemMode.PRODUCTION:
            log_handler = LogActionHandler()
            for action_type in ActionType:
                self.dispatcher.register(action_type, log_handler)

        notification = self.config.notification
        if notification.webhook_url:
            webhook = WebhookActionHandler(
                notification.webhook_url,
                timeout_seconds=notification.webhook_timeout_seconds
            )
            targets = notification.webhook_actions or [t.value for t in ActionType]
            for action_type in targets:
                self.dispatcher.register(action_type, webhook)
            logger.info(f"Webhook integration enabled for: {', '.join(targets)}")

        for action_type, handler in (handlers or {}).items():
            self.dispatcher.register(action_type, handler)

    def _load_rules(self) -> None:
        try:
            self.store.refresh()
        except StoreUnavailableError as e:
            logger.warning(f"Rule store unavailable at startup, starting with no rules: {e.message}")
            return

        if len(self.store) == 0 and self.config.store.seed_from_files:
            self.seed_rules()

    def seed_rules(self) -> int:
        """
        Install starter rules: YAML files from the rules directory when it
        exists, otherwise the default monitoring rules.
        """
        rules_dir = Path(self.config.store.rules_path)
        if rules_dir.is_dir():
            definitions = self.parser.parse_multiple_files(str(rules_dir))
            source = str(rules_dir)
        else:
            definitions = DEFAULT_MONITORING_RULES
            source = "default monitoring rules"

        added = 0
        for definition in definitions:
            try:
                added += len(self.store.seed([definition]))
            except ConfigError as e:
                logger.warning(f"Skipping seed rule: {e.message}")
            except StoreUnavailableError as e:
                logger.warning(f"Seeding stopped, rule store unavailable: {e.message}")
                break

        logger.info(f"Seeded {added} rule(s) from {source}")
        return added

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.loop.start()

    async def stop(self) -> None:
        await self.loop.stop(drain=True)

    def submit_raw(self, raw: Dict[str, Any]) -> bool:
        """Normalize and queue a raw payload."""
        return self.loop.submit(self.normalizer.normalize(raw))

    async def evaluate_raw(self, raw: Dict[str, Any]):
        """Normalize and evaluate a raw payload right away."""
        return await self.loop.process_event(self.normalizer.normalize(raw))

    async def evaluate(self, event: Event):
        return await self.loop.process_event(event)

    async def approve_confirmation(
        self,
        token_id: str,
        approver: str,
        comment: Optional[str] = None
    ) -> Optional[ConfirmationToken]:
        """
        Approve a held action and carry it out.

        Returns:
            The token with its result, or None when it cannot be approved
        """
        token = self.confirmation_gate.approve(token_id, approver, comment)
        if token is None:
            return None
        await self.dispatcher.execute_confirmed(token)
        return token

    def reject_confirmation(
        self,
        token_id: str,
        rejector: str,
        reason: Optional[str] = None
    ) -> Optional[ConfirmationToken]:
        return self.confirmation_gate.reject(token_id, rejector, reason)

    def get_metrics_summary(self) -> Dict[str, Any]:
        return self.metrics.get_summary()

    def get_status(self) -> Dict[str, Any]:
        store_status: Dict[str, Any] = {"backend": self.config.store.backend}
        breaker = getattr(self.persistence, "breaker", None)
        if breaker is not None:
            store_status["circuit"] = breaker.to_dict()

        return {
            "mode": self.config.system.mode.value,
            "version": self.config.system.version,
            "store": store_status,
            "rules": self.engine.get_summary(),
            "loop": self.loop.stats(),
            "pending_confirmations": len(self.confirmation_gate.pending()),
            "devices": len(self.device_registry.list_devices())
        }

    def shutdown(self) -> None:
        logger.info("Shutting down HomeGuard system...")
        close = getattr(self.persistence, "close", None)
        if callable(close):
            close()
        self.db_manager.close()
        logger.info("Database connections closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
