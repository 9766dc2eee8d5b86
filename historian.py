"""
Historian Module: Alert Audit Trail
Persists alerts to the database. Alerts are written once and never updated.
"""
import logging
import json
from datetime import datetime
from typing import List, Optional, Sequence

from database import DatabaseManager
from exceptions import AlertRetrievalError, AlertStorageError, DatabaseError
from rules_engine.models import Alert

logger = logging.getLogger("HomeGuardHistorian")


class AlertHistorian:
    """
    Append-only store of alerts.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Args:
            db_manager: Database manager instance
        """
        self.db_manager = db_manager
        self.component_id = "ALERT_HISTORIAN"

    def save_alerts(self, alerts: Sequence[Alert]) -> int:
        """
        Save all alerts for one event in a single transaction.

        Either every alert is stored or none is.

        Raises:
            AlertStorageError: If the write fails
        """
        if not alerts:
            return 0

        try:
            with self.db_manager.transaction() as conn:
                conn.executemany(
                    """INSERT INTO alerts
                       (id, rule_id, event_id, severity, degraded, created_at, full_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    [
                        (
                            alert.id,
                            alert.rule_id,
                            alert.event_id,
                            alert.severity.value,
                            1 if alert.degraded else 0,
                            alert.created_at.isoformat(),
                            alert.model_dump_json()
                        )
                        for alert in alerts
                    ]
                )
        except DatabaseError as e:
            raise AlertStorageError(
                f"Failed to save alerts: {e}",
                component=self.component_id,
                context={"alert_ids": [a.id for a in alerts], "event_id": alerts[0].event_id}
            )

        logger.info(f"Stored {len(alerts)} alert(s) for event {alerts[0].event_id}")
        return len(alerts)

    def save_alert(self, alert: Alert) -> None:
        self.save_alerts([alert])

    def get_recent_alerts(
        self,
        limit: int = 50,
        rule_id: Optional[str] = None,
        severity: Optional[str] = None,
        since: Optional[datetime] = None
    ) -> List[Alert]:
        """
        Retrieve recent alerts, newest first, with optional filtering.
        """
        query = "SELECT full_json FROM alerts"
        params = []
        where_clauses = []

        if rule_id:
            where_clauses.append("rule_id = ?")
            params.append(rule_id)

        if severity:
            where_clauses.append("severity = ?")
            params.append(severity)

        if since:
            where_clauses.append("created_at >= ?")
            params.append(since.isoformat())

        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        return self._fetch(query, tuple(params))

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        alerts = self._fetch("SELECT full_json FROM alerts WHERE id = ?", (alert_id,))
        return alerts[0] if alerts else None

    def get_alerts_for_event(self, event_id: str) -> List[Alert]:
        return self._fetch(
            "SELECT full_json FROM alerts WHERE event_id = ? ORDER BY created_at",
            (event_id,)
        )

    def count_alerts(self) -> int:
        try:
            with self.db_manager.connection() as conn:
                return conn.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]
        except DatabaseError as e:
            raise AlertRetrievalError(f"Failed to count alerts: {e}", component=self.component_id)

    def _fetch(self, query: str, params: tuple) -> List[Alert]:
        try:
            with self.db_manager.connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except DatabaseError as e:
            raise AlertRetrievalError(f"Failed to retrieve alerts: {e}", component=self.component_id)

        return [Alert.model_validate(json.loads(row[0])) for row in rows]
