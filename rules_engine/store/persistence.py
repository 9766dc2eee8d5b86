"""
Rule Persistence Backends

The rule store writes through one of these before touching its cache.
Every backend raises ``StoreUnavailableError`` when it cannot complete an
operation.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from database import DatabaseManager
from exceptions import DatabaseError, StoreUnavailableError
from resilience import CircuitBreaker, CircuitBreakerOpenError, retry_on_exception


logger = logging.getLogger("HomeGuardPersistence")


class RulePersistence(Protocol):
    """Durable home of rule definitions (plain dicts)."""

    def load_all(self) -> List[Dict[str, Any]]:
        ...

    def insert(self, record: Dict[str, Any]) -> None:
        ...

    def update(self, record: Dict[str, Any]) -> None:
        ...

    def delete(self, rule_id: str) -> None:
        ...


class SqliteRulePersistence:
    """
    Rules kept in the local SQLite database.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def load_all(self) -> List[Dict[str, Any]]:
        try:
            with self.db.connection() as conn:
                rows = conn.execute("SELECT definition FROM rules ORDER BY created_at, id").fetchall()
        except DatabaseError as e:
            raise self._unavailable("load rules", e)
        return [json.loads(row[0]) for row in rows]

    def insert(self, record: Dict[str, Any]) -> None:
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    '''
                    INSERT INTO rules (id, name, condition_type, enabled, definition, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ''',
                    self._row(record)
                )
        except DatabaseError as e:
            raise self._unavailable("insert rule", e, record.get("id"))

    def update(self, record: Dict[str, Any]) -> None:
        try:
            with self.db.transaction() as conn:
                row = self._row(record)
                cursor = conn.execute(
                    '''
                    UPDATE rules
                    SET name = ?, condition_type = ?, enabled = ?, definition = ?, created_at = ?, updated_at = ?
                    WHERE id = ?
                    ''',
                    row[1:] + (row[0],)
                )
                if cursor.rowcount == 0:
                    raise StoreUnavailableError(
                        f"Rule {record['id']} is missing from the database",
                        component="SqliteRulePersistence"
                    )
        except DatabaseError as e:
            raise self._unavailable("update rule", e, record.get("id"))

    def delete(self, rule_id: str) -> None:
        try:
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        except DatabaseError as e:
            raise self._unavailable("delete rule", e, rule_id)

    @staticmethod
    def _row(record: Dict[str, Any]) -> tuple:
        return (
            record["id"],
            record.get("name") or record["id"],
            record["condition_type"],
            1 if record.get("enabled", True) else 0,
            json.dumps(record),
            record.get("created_at") or "",
            record.get("updated_at") or "",
        )

    @staticmethod
    def _unavailable(operation: str, error: Exception, rule_id: Optional[str] = None) -> StoreUnavailableError:
        logger.error(f"Failed to {operation}: {error}")
        return StoreUnavailableError(
            f"Rule database unavailable: could not {operation}",
            component="SqliteRulePersistence",
            context={"rule_id": rule_id, "cause": str(error)}
        )


class HostedRulePersistence:
    """
    Rules kept in a hosted PostgREST-style table (``/rest/v1/<table>``).

    Rows use the dashboard's trigger shape: ``condition`` is a nested
    ``{type, value, operator}`` object and ``is_active`` is the enabled flag.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        table: str = "triggers",
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.Client] = None
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self.table = table
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds
        )
        self.breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            expected_exceptions=(httpx.HTTPError,),
            name="hosted-rule-store"
        )

    @property
    def path(self) -> str:
        return f"/rest/v1/{self.table}"

    def load_all(self) -> List[Dict[str, Any]]:
        response = self._request("GET", self.path, params={"select": "*", "order": "created_at.asc"})
        return [self.from_row(row) for row in response.json()]

    def insert(self, record: Dict[str, Any]) -> None:
        self._request(
            "POST",
            self.path,
            json=self.to_row(record),
            headers={"Prefer": "return=minimal"}
        )

    def update(self, record: Dict[str, Any]) -> None:
        row = self.to_row(record)
        row.pop("id")
        self._request(
            "PATCH",
            self.path,
            params={"id": f"eq.{record['id']}"},
            json=row,
            headers={"Prefer": "return=minimal"}
        )

    def delete(self, rule_id: str) -> None:
        self._request("DELETE", self.path, params={"id": f"eq.{rule_id}"})

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        @retry_on_exception(
            (httpx.TransportError,),
            max_attempts=self.max_retries + 1,
            delay=self.retry_delay
        )
        def send() -> httpx.Response:
            response = self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        try:
            return self.breaker.call(send)
        except CircuitBreakerOpenError as e:
            raise StoreUnavailableError(e.message, component="HostedRulePersistence")
        except httpx.HTTPError as e:
            logger.error(f"Hosted rule store {method} {url} failed: {e}")
            raise StoreUnavailableError(
                f"Hosted rule store unavailable: {e}",
                component="HostedRulePersistence",
                context={"method": method, "url": url}
            )

    @staticmethod
    def to_row(record: Dict[str, Any]) -> Dict[str, Any]:
        """Flat rule record -> trigger row."""
        return {
            "id": record["id"],
            "name": record.get("name") or record["id"],
            "condition": {
                "type": record["condition_type"],
                "value": record["condition_value"],
                "operator": record.get("operator", "equals"),
            },
            "actions": record.get("actions", []),
            "is_active": record.get("enabled", True),
            "sensitivity": record.get("sensitivity", "medium"),
            "notification_type": record.get("notification_type", "alert"),
            "tags": record.get("tags", []),
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> Dict[str, Any]:
        """Trigger row -> flat rule record."""
        condition = row.get("condition") or {}
        record = {
            "id": row.get("id"),
            "name": row.get("name"),
            "condition_type": condition.get("type"),
            "condition_value": condition.get("value"),
            "operator": condition.get("operator", "equals"),
            "actions": row.get("actions") or [],
            "enabled": row.get("is_active", True),
            "tags": row.get("tags") or [],
            "created_at": row.get("created_at"),
            "updated_at": row.get("updated_at"),
        }
        for key in ("sensitivity", "notification_type"):
            if row.get(key):
                record[key] = row[key]
        return record
