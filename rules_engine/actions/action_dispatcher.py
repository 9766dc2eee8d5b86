"""
Action Dispatcher

Runs a rule's actions through pluggable handlers.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Dict, Optional, Protocol, Sequence, runtime_checkable

from exceptions import DispatchError
from metrics import EngineMetrics
from rules_engine.models import ActionOutcome, ActionType, DispatchResult, OutcomeStatus
from rules_engine.actions.confirmation_gate import ConfirmationGate, ConfirmationToken


logger = logging.getLogger("HomeGuardDispatcher")

DEFAULT_ACTION_TIMEOUT = 5.0


@runtime_checkable
class ActionHandler(Protocol):
    """
    Carries out one kind of action.

    ``handle`` may be a coroutine function or a plain function; plain
    functions run in a worker thread. Raise ``DispatchError`` to report a
    failure. The returned mapping, if any, is kept as outcome details.
    """

    def handle(self, action: Any, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...


class ActionDispatcher:
    """
    Dispatch actions concurrently, each under its own timeout.

    One failing, slow or missing handler never affects its siblings.
    """

    def __init__(
        self,
        handlers: Optional[Dict[ActionType, ActionHandler]] = None,
        timeout_seconds: float = DEFAULT_ACTION_TIMEOUT,
        confirmation_gate: Optional[ConfirmationGate] = None,
        metrics: Optional[EngineMetrics] = None
    ):
        """
        Args:
            handlers: Initial handler per action type
            timeout_seconds: Per-action timeout
            confirmation_gate: Gate for police contact (a closed gate is created when omitted)
            metrics: Metrics helper
        """
        self.timeout_seconds = timeout_seconds
        self.confirmation_gate = confirmation_gate or ConfirmationGate()
        self.metrics = metrics or EngineMetrics()
        self.handlers: Dict[ActionType, ActionHandler] = {}

        for action_type, handler in (handlers or {}).items():
            self.register(action_type, handler)

    def register(self, action_type, handler: ActionHandler) -> None:
        """Register (or replace) the handler for an action type."""
        action_type = ActionType(action_type)
        if not callable(getattr(handler, "handle", None)):
            raise TypeError(f"Handler for {action_type.value} must define handle(action, context)")
        self.handlers[action_type] = handler
        logger.debug(f"Registered {type(handler).__name__} for {action_type.value}")

    def unregister(self, action_type) -> None:
        self.handlers.pop(ActionType(action_type), None)

    async def dispatch(
        self,
        actions: Sequence[Any],
        context: Optional[Dict[str, Any]] = None,
        rule_id: Optional[str] = None
    ) -> DispatchResult:
        """
        Dispatch a rule's actions.

        Args:
            actions: Actions in rule order
            context: Rule and event details passed to every handler
            rule_id: Rule the actions belong to

        Returns:
            DispatchResult with one outcome per action, in the same order
        """
        context = dict(context or {})
        if rule_id is not None:
            context.setdefault("rule_id", rule_id)

        outcomes = await asyncio.gather(
            *(self._dispatch_one(index, action, context) for index, action in enumerate(actions))
        )

        result = DispatchResult(rule_id=context.get("rule_id"), outcomes=list(outcomes))
        if result.failed:
            logger.warning(
                f"Rule {result.rule_id}: {len(result.failed)}/{len(result.outcomes)} actions failed"
            )
        return result

    async def execute_confirmed(self, token: ConfirmationToken) -> ActionOutcome:
        """
        Run an action whose confirmation has been approved.

        The outcome is stored on the token.
        """
        outcome = await self._run_handler(0, token.action, token.context)
        token.result = outcome.model_dump(mode="json")
        return outcome

    async def _dispatch_one(self, index: int, action: Any, context: Dict[str, Any]) -> ActionOutcome:
        if self.confirmation_gate.requires_confirmation(action):
            token = self.confirmation_gate.request(action, context)
            self.metrics.record_action(action.type, OutcomeStatus.SKIPPED.value, 0.0)
            return ActionOutcome(
                index=index,
                action_type=action.type,
                status=OutcomeStatus.SKIPPED,
                reason="awaiting confirmation",
                details={"confirmation_token": token.token_id}
            )

        return await self._run_handler(index, action, context)

    async def _run_handler(self, index: int, action: Any, context: Dict[str, Any]) -> ActionOutcome:
        action_type = action.type
        handler = self.handlers.get(ActionType(action_type))

        if handler is None:
            self.metrics.record_action(action_type, OutcomeStatus.SKIPPED.value, 0.0)
            return ActionOutcome(
                index=index,
                action_type=action_type,
                status=OutcomeStatus.SKIPPED,
                reason="no handler registered"
            )

        start = time.perf_counter()
        status = OutcomeStatus.SUCCEEDED
        reason = None
        details: Dict[str, Any] = {}

        try:
            details = await asyncio.wait_for(
                self._invoke(handler, action, context),
                timeout=self.timeout_seconds
            ) or {}
        except asyncio.TimeoutError:
            status, reason = OutcomeStatus.FAILED, "timeout"
            logger.warning(f"{action_type} action timed out after {self.timeout_seconds}s")
        except DispatchError as e:
            status, reason = OutcomeStatus.FAILED, e.message
            logger.warning(f"{action_type} action failed: {e.message}")
        except Exception as e:
            status, reason = OutcomeStatus.FAILED, f"{type(e).__name__}: {e}"
            logger.error(f"{action_type} handler raised unexpectedly: {e}", exc_info=True)

        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_action(action_type, status.value, duration_ms)

        return ActionOutcome(
            index=index,
            action_type=action_type,
            status=status,
            reason=reason,
            duration_ms=round(duration_ms, 3),
            details=details if isinstance(details, dict) else {"result": details}
        )

    async def _invoke(self, handler: ActionHandler, action: Any, context: Dict[str, Any]):
        if inspect.iscoroutinefunction(handler.handle):
            return await handler.handle(action, context)
        return await asyncio.to_thread(handler.handle, action, context)
