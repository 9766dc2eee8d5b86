"""
Built-in Action Handlers
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from exceptions import DispatchError


logger = logging.getLogger("HomeGuardHandlers")


class LogActionHandler:
    """
    Logs the action instead of driving hardware.

    Used in demo and mock modes, and by the CLI. Keeps a bounded history of
    what it was asked to do.
    """

    def __init__(self, max_history: int = 200):
        self.max_history = max_history
        self.history: List[Dict[str, Any]] = []

    def handle(self, action, context: Dict[str, Any]) -> Dict[str, Any]:
        entry = {
            "action": action.to_dict(),
            "rule_id": context.get("rule_id"),
            "event_id": context.get("event_id"),
            "at": datetime.now(timezone.utc).isoformat()
        }
        self.history.append(entry)
        if len(self.history) > self.max_history:
            del self.history[:-self.max_history]

        logger.info(f"[{action.type.upper()}] {action.value} (rule: {context.get('rule_id')})")
        return {"logged": True}


class WebhookActionHandler:
    """
    Forwards actions to an integration endpoint over HTTP.

    The endpoint receives a JSON body with the action, rule and event ids.
    Any non-2xx response is a failure.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            url: Integration endpoint
            timeout_seconds: HTTP timeout
            headers: Extra request headers
            client: Shared client (one is created per request when omitted)
        """
        if not url:
            raise ValueError("Webhook URL is required")
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = headers or {}
        self.client = client

    async def handle(self, action, context: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "action": action.to_dict(),
            "rule_id": context.get("rule_id"),
            "rule_name": context.get("rule_name"),
            "event_id": context.get("event_id"),
            "severity": context.get("severity"),
        }

        try:
            if self.client is not None:
                response = await self.client.post(
                    self.url, json=payload, headers=self.headers, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.url, json=payload, headers=self.headers)
        except httpx.HTTPError as e:
            raise DispatchError(
                f"Webhook request failed: {e}",
                action_type=action.type,
                component="WebhookActionHandler"
            )

        if response.status_code >= 300:
            raise DispatchError(
                f"Webhook returned HTTP {response.status_code}",
                action_type=action.type,
                component="WebhookActionHandler",
                context={"url": self.url, "status_code": response.status_code}
            )

        return {"status_code": response.status_code, "url": self.url}
