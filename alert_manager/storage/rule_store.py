"""
DuckDB rule store.

Project and alert rule configuration, maintained by the settings UI and
read once per cycle by the pipeline. The pipeline never writes here; the
write helpers exist for seeding and tests.
"""

import threading
from typing import Any, Optional
import structlog

from alert_manager.interfaces import Project
from alert_manager.rules.models import AlertRule, InvalidRule, NotificationMethod, normalize_methods
from alert_manager.storage.duckdb_store import DuckDBStore

logger = structlog.get_logger(__name__)


class RuleStore(DuckDBStore):
    """
    Projects, alert rules and their notification methods.

    Rules are listed highest threshold first (ties by id), which is the
    order alert grouping relies on.
    """

    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS projects (
            name VARCHAR PRIMARY KEY,
            active BOOLEAN NOT NULL DEFAULT TRUE,
            active_monitoring BOOLEAN NOT NULL DEFAULT TRUE
        )
        """,
        "CREATE SEQUENCE IF NOT EXISTS alerts_id_seq START 1",
        """
        CREATE TABLE IF NOT EXISTS alerts (
            id INTEGER DEFAULT nextval('alerts_id_seq') PRIMARY KEY,
            project_name VARCHAR NOT NULL,
            rule_type VARCHAR NOT NULL,
            metric_name VARCHAR,
            log_field VARCHAR,
            log_field_value VARCHAR,
            operator VARCHAR NOT NULL,
            threshold DOUBLE NOT NULL,
            time_window VARCHAR NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS alert_methods (
            alert_id INTEGER NOT NULL,
            method VARCHAR NOT NULL,
            value VARCHAR
        )
        """,
    )

    def __init__(self, db_path: str, read_only: bool = False, **kwargs):
        self._write_lock = threading.Lock()
        super().__init__(db_path, read_only=read_only, **kwargs)

    # =========================================================================
    # Reads
    # =========================================================================

    def list_active_projects(self) -> list[Project]:
        """Projects that are both active and actively monitored."""
        rows = self._query(
            """
            SELECT name
            FROM projects
            WHERE active AND active_monitoring
            ORDER BY name
            """
        )
        return [Project(name=name) for (name,) in rows]

    def list_rules(self, project: str) -> list[AlertRule]:
        """
        Rules for a project, highest threshold first.

        Rows that cannot be parsed are logged and skipped.
        """
        rows = self._query_dicts(
            """
            SELECT id, project_name, rule_type, metric_name, log_field,
                   log_field_value, operator, threshold, time_window
            FROM alerts
            WHERE project_name = ?
            ORDER BY threshold DESC, id ASC
            """,
            [project],
        )

        rules = []
        for row in rows:
            try:
                methods = self.list_notification_methods(row["id"])
                rules.append(AlertRule.from_row(row, methods))
            except InvalidRule as e:
                logger.error(
                    "invalid_alert_rule",
                    rule_id=row.get("id"),
                    project=project,
                    error=str(e),
                )
        return rules

    def list_notification_methods(self, rule_id: Any) -> list[NotificationMethod]:
        rows = self._query_dicts(
            """
            SELECT method, value
            FROM alert_methods
            WHERE alert_id = ?
            ORDER BY rowid
            """,
            [rule_id],
        )
        return normalize_methods(rows)

    # =========================================================================
    # Writes (seeding)
    # =========================================================================

    def upsert_project(self, name: str, active: bool = True, active_monitoring: bool = True) -> None:
        with self._write_lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO projects (name, active, active_monitoring) VALUES (?, ?, ?)",
                [name, active, active_monitoring],
            )
            self.conn.commit()

    def insert_rule(
        self,
        project_name: str,
        rule_type: str,
        operator: str,
        threshold: float,
        time_window: str,
        metric_name: Optional[str] = None,
        log_field: Optional[str] = None,
        log_field_value: Optional[str] = None,
        methods: Optional[list[dict]] = None,
    ) -> int:
        """Insert a rule (and its methods). Returns the new rule id."""
        with self._write_lock:
            rule_id = self.conn.execute(
                """
                INSERT INTO alerts
                (project_name, rule_type, metric_name, log_field, log_field_value,
                 operator, threshold, time_window)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [project_name, rule_type, metric_name, log_field, log_field_value,
                 operator, threshold, time_window],
            ).fetchone()[0]
            self.conn.commit()

        for method in methods or []:
            self.insert_notification_method(rule_id, method["method"], method.get("value"))

        logger.debug("alert_rule_inserted", rule_id=rule_id, project=project_name)
        return int(rule_id)

    def insert_notification_method(self, rule_id: int, method: str, value: Optional[str]) -> None:
        with self._write_lock:
            self.conn.execute(
                "INSERT INTO alert_methods (alert_id, method, value) VALUES (?, ?, ?)",
                [rule_id, method, value],
            )
            self.conn.commit()
