"""
Confirmation Gate

Holds police-contact actions until the homeowner confirms them.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Optional

from rules_engine.models import ActionType


logger = logging.getLogger("HomeGuardConfirmationGate")


class ConfirmationStatus(Enum):
    """Status of a confirmation request."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass
class ConfirmationToken:
    """A held action waiting for a human decision."""
    token_id: str
    rule_id: Optional[str]
    action: Any
    context: Dict[str, Any]
    requested_at: datetime
    expires_at: datetime
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    comment: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "rule_id": self.rule_id,
            "action": self.action.to_dict(),
            "event_id": self.context.get("event_id"),
            "requested_at": self.requested_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "comment": self.comment,
            "result": self.result
        }


class ConfirmationGate:
    """
    Approval workflow for actions that must not fire on their own.

    With ``auto_confirm`` set every gated action passes straight through.
    """

    GATED_ACTIONS = (ActionType.POLICE,)

    def __init__(self, timeout_minutes: int = 10, auto_confirm: bool = False, retention_minutes: int = 60):
        """
        Args:
            timeout_minutes: How long a request stays open
            auto_confirm: Skip the human step entirely
            retention_minutes: How long decided and expired requests stay listed
        """
        self.timeout_minutes = timeout_minutes
        self.auto_confirm = auto_confirm
        self.retention_minutes = retention_minutes
        self.tokens: Dict[str, ConfirmationToken] = {}
        self._lock = Lock()

    def requires_confirmation(self, action) -> bool:
        """True when the action has to wait for a human."""
        if self.auto_confirm:
            return False
        return action.action_type in self.GATED_ACTIONS

    def request(self, action, context: Dict[str, Any]) -> ConfirmationToken:
        """
        Open a confirmation request for an action.

        A pending request for the same rule and action is reused.
        """
        rule_id = context.get("rule_id")
        now = datetime.now(timezone.utc)

        with self._lock:
            self._prune(now)
            for token in self.tokens.values():
                if (
                    token.status == ConfirmationStatus.PENDING
                    and token.rule_id == rule_id
                    and token.action == action
                    and now <= token.expires_at
                ):
                    return token

            token = ConfirmationToken(
                token_id=str(uuid.uuid4()),
                rule_id=rule_id,
                action=action,
                context=dict(context),
                requested_at=now,
                expires_at=now + timedelta(minutes=self.timeout_minutes)
            )
            self.tokens[token.token_id] = token

        logger.warning(
            f"Confirmation required for {action.type} action from rule {rule_id} (token: {token.token_id})"
        )
        return token

    def get(self, token_id: str) -> Optional[ConfirmationToken]:
        with self._lock:
            token = self.tokens.get(token_id)
            if token is not None:
                self._expire_if_due(token)
            return token

    def approve(self, token_id: str, approver: str, comment: Optional[str] = None) -> Optional[ConfirmationToken]:
        """
        Approve a pending request.

        Returns:
            The approved token, or None when it is unknown, already decided or expired
        """
        return self._decide(token_id, ConfirmationStatus.APPROVED, approver, comment)

    def reject(self, token_id: str, rejector: str, reason: Optional[str] = None) -> Optional[ConfirmationToken]:
        """Reject a pending request."""
        return self._decide(token_id, ConfirmationStatus.REJECTED, rejector, reason)

    def _decide(
        self,
        token_id: str,
        status: ConfirmationStatus,
        who: str,
        comment: Optional[str]
    ) -> Optional[ConfirmationToken]:
        with self._lock:
            token = self.tokens.get(token_id)

            if not token:
                logger.error(f"Confirmation token not found: {token_id}")
                return None

            self._expire_if_due(token)
            if token.status != ConfirmationStatus.PENDING:
                logger.error(f"Token not pending: {token_id} (status: {token.status.value})")
                return None

            token.status = status
            token.decided_by = who
            token.decided_at = datetime.now(timezone.utc)
            token.comment = comment

        logger.info(f"Action {token.action.type} {status.value} by {who} (token: {token_id})")
        return token

    def pending(self) -> List[ConfirmationToken]:
        """All requests still waiting for a decision."""
        with self._lock:
            for token in self.tokens.values():
                self._expire_if_due(token)
            return [t for t in self.tokens.values() if t.status == ConfirmationStatus.PENDING]

    def list_tokens(self) -> List[ConfirmationToken]:
        with self._lock:
            for token in self.tokens.values():
                self._expire_if_due(token)
            return sorted(self.tokens.values(), key=lambda t: t.requested_at, reverse=True)

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """
        Drop decided and expired requests older than the retention window.

        Pending requests are never dropped. Runs on every new request.

        Returns:
            Number of tokens removed
        """
        with self._lock:
            return self._prune(now or datetime.now(timezone.utc))

    def _prune(self, now: datetime) -> int:
        cutoff = now - timedelta(minutes=self.retention_minutes)
        stale = []
        for token_id, token in self.tokens.items():
            self._expire_if_due(token, now)
            if token.status != ConfirmationStatus.PENDING and token.decided_at <= cutoff:
                stale.append(token_id)
        for token_id in stale:
            del self.tokens[token_id]

        if stale:
            logger.info(f"Dropped {len(stale)} decided confirmation token(s)")
        return len(stale)

    @staticmethod
    def _expire_if_due(token: ConfirmationToken, now: Optional[datetime] = None) -> None:
        if token.status == ConfirmationStatus.PENDING and (now or datetime.now(timezone.utc)) > token.expires_at:
            token.status = ConfirmationStatus.EXPIRED
            token.decided_at = token.expires_at
