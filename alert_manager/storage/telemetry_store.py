"""
DuckDB telemetry store.

Holds the metrics and logs shipped by monitored services and answers the
aggregations alert rules need:
- average of a metric over a window
- matching/total log counts for a level or status class
- top terms of a log field (source IPs)
- counts of lifecycle messages

Timestamps are stored as naive UTC.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence
import structlog

import pandas as pd

from alert_manager.interfaces import LogCounts, TermBucket
from alert_manager.rules.time_window import TimeWindow
from alert_manager.storage.duckdb_store import DEFAULT_QUERY_TIMEOUT_SECONDS, DuckDBStore

logger = structlog.get_logger(__name__)


# Log columns that can be used in filters and term aggregations
_LOG_COLUMNS = {
    "level": "level",
    "status_code": "response_status",
    "ip_address": "ip_address",
    "message": "message",
}

# A status only counts as a code if it is a plain base-10 integer.
# TRY_CAST alone would also accept "499.6", "1e3", "0x1F4" or "5_00".
_STATUS_IS_INTEGER = "regexp_full_match(response_status, '[+-]?[0-9]+')"

# Status class -> SQL predicate. Statuses that are not integers never match.
_STATUS_CLASSES = {
    "4xx": f"{_STATUS_IS_INTEGER} AND TRY_CAST(response_status AS INTEGER) BETWEEN 400 AND 499",
    "5xx": f"{_STATUS_IS_INTEGER} AND TRY_CAST(response_status AS INTEGER) >= 500",
}

_METRIC_COLUMNS = ["service_name", "metric_name", "timestamp", "value"]
_LOG_INSERT_COLUMNS = ["service_name", "timestamp", "level", "message", "response_status", "ip_address"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


class TelemetryStore(DuckDBStore):
    """
    Metrics and logs, queried per project over a time window.

    Usage:
        store = TelemetryStore("data/telemetry.duckdb")
        avg = store.average_over("checkout", "cpu_usage", resolve_time_window("5 minutes"))
    """

    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS metrics (
            service_name VARCHAR NOT NULL,
            metric_name VARCHAR NOT NULL,
            timestamp TIMESTAMP NOT NULL,
            value DOUBLE NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS logs (
            service_name VARCHAR NOT NULL,
            timestamp TIMESTAMP NOT NULL,
            level VARCHAR,
            message VARCHAR,
            response_status VARCHAR,
            ip_address VARCHAR
        )
        """,
    )

    def __init__(
        self,
        db_path: str,
        read_only: bool = False,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize telemetry store.

        Args:
            db_path: Path to DuckDB file
            read_only: Open in read-only mode
            query_timeout: Seconds before a query is interrupted
            clock: Returns "now" as naive UTC (defaults to the system clock)
        """
        self.clock = clock or utc_now
        self._write_lock = threading.Lock()
        super().__init__(db_path, read_only=read_only, query_timeout=query_timeout)

    def _bounds(self, window: TimeWindow) -> tuple[datetime, datetime]:
        now = _naive_utc(self.clock())
        return window.lower_bound(now), now

    # =========================================================================
    # Ingestion
    # =========================================================================

    def insert_metrics(self, records: list[dict]) -> int:
        """
        Insert metric samples.

        Args:
            records: Dicts with service_name, metric_name, timestamp, value

        Returns:
            Number of samples inserted
        """
        if not records:
            return 0

        df = pd.DataFrame(
            [
                {
                    "service_name": r["service_name"],
                    "metric_name": r["metric_name"],
                    "timestamp": _naive_utc(r["timestamp"]),
                    "value": float(r["value"]),
                }
                for r in records
            ],
            columns=_METRIC_COLUMNS,
        )

        with self._write_lock:
            self.conn.register("metrics_batch", df)
            try:
                self.conn.execute(
                    "INSERT INTO metrics (service_name, metric_name, timestamp, value) "
                    "SELECT service_name, metric_name, timestamp, value FROM metrics_batch"
                )
            finally:
                self.conn.unregister("metrics_batch")
            self.conn.commit()

        logger.debug("metrics_inserted", count=len(records))
        return len(records)

    def insert_logs(self, records: list[dict]) -> int:
        """
        Insert log entries.

        Args:
            records: Dicts with service_name, timestamp and optionally
                     level, message, response_status, ip_address

        Returns:
            Number of entries inserted
        """
        if not records:
            return 0

        def text(value):
            return None if value is None else str(value)

        df = pd.DataFrame(
            [
                {
                    "service_name": r["service_name"],
                    "timestamp": _naive_utc(r["timestamp"]),
                    "level": text(r.get("level")),
                    "message": text(r.get("message")),
                    "response_status": text(r.get("response_status")),
                    "ip_address": text(r.get("ip_address")),
                }
                for r in records
            ],
            columns=_LOG_INSERT_COLUMNS,
        ).astype({c: "object" for c in _LOG_INSERT_COLUMNS if c != "timestamp"})

        with self._write_lock:
            self.conn.register("logs_batch", df)
            try:
                self.conn.execute(
                    "INSERT INTO logs (service_name, timestamp, level, message, response_status, ip_address) "
                    "SELECT service_name, timestamp, "
                    "CAST(level AS VARCHAR), CAST(message AS VARCHAR), "
                    "CAST(response_status AS VARCHAR), CAST(ip_address AS VARCHAR) "
                    "FROM logs_batch"
                )
            finally:
                self.conn.unregister("logs_batch")
            self.conn.commit()

        logger.debug("logs_inserted", count=len(records))
        return len(records)

    # =========================================================================
    # Aggregations
    # =========================================================================

    def average_over(
        self,
        project: str,
        metric_name: str,
        window: TimeWindow,
    ) -> Optional[float]:
        """Average of a metric in the window, or None without samples."""
        start, end = self._bounds(window)
        rows = self._query(
            """
            SELECT avg(value)
            FROM metrics
            WHERE service_name = ?
              AND metric_name = ?
              AND timestamp >= ?
              AND timestamp <= ?
            """,
            [project, metric_name, start, end],
        )
        value = rows[0][0] if rows else None
        return None if value is None else float(value)

    def counts_over(
        self,
        project: str,
        field: str,
        value: str,
        window: TimeWindow,
    ) -> LogCounts:
        """
        Count log entries in the window, and how many match.

        For `status_code`, `value` is a status class ("4xx" or "5xx").
        Entries whose status is not an integer count toward the total only.

        Raises:
            ValueError: on an unsupported field or status class
        """
        if field == "status_code":
            predicate = _STATUS_CLASSES.get(value)
            if predicate is None:
                raise ValueError(f"Unsupported status class: {value!r}")
            params: list = []
        elif field in _LOG_COLUMNS:
            predicate = f"{_LOG_COLUMNS[field]} = ?"
            params = [value]
        else:
            raise ValueError(f"Unsupported log field: {field!r}")

        start, end = self._bounds(window)
        rows = self._query(
            f"""
            SELECT
                count(*) FILTER (WHERE {predicate}) AS matching,
                count(*) AS total
            FROM logs
            WHERE service_name = ?
              AND timestamp >= ?
              AND timestamp <= ?
            """,
            params + [project, start, end],
        )
        matching, total = rows[0] if rows else (0, 0)
        return LogCounts(matching=int(matching or 0), total=int(total or 0))

    def top_terms_over(
        self,
        project: str,
        field: str,
        window: TimeWindow,
        limit: int = 10,
    ) -> list[TermBucket]:
        """Most frequent values of a log field, most frequent first."""
        column = _LOG_COLUMNS.get(field)
        if column is None:
            raise ValueError(f"Unsupported log field: {field!r}")

        start, end = self._bounds(window)
        rows = self._query(
            f"""
            SELECT {column} AS term, count(*) AS n, min(timestamp) AS first_seen
            FROM logs
            WHERE service_name = ?
              AND timestamp >= ?
              AND timestamp <= ?
              AND {column} IS NOT NULL
            GROUP BY {column}
            ORDER BY n DESC, first_seen ASC, term ASC
            LIMIT ?
            """,
            [project, start, end, int(limit)],
        )
        return [TermBucket(key=str(term), count=int(n)) for term, n, _ in rows]

    def phrase_counts_over(
        self,
        project: str,
        phrases: Sequence[str],
        window: TimeWindow,
        limit: int = 10,
    ) -> list[TermBucket]:
        """
        Count log messages containing any of `phrases` (case-insensitive),
        grouped by full message text, most frequent first.
        """
        if not phrases:
            return []

        start, end = self._bounds(window)
        phrase_filter = " OR ".join("message ILIKE ?" for _ in phrases)
        rows = self._query(
            f"""
            SELECT message, count(*) AS n, min(timestamp) AS first_seen
            FROM logs
            WHERE service_name = ?
              AND timestamp >= ?
              AND timestamp <= ?
              AND ({phrase_filter})
            GROUP BY message
            ORDER BY n DESC, first_seen ASC, message ASC
            LIMIT ?
            """,
            [project, start, end] + [f"%{p}%" for p in phrases] + [int(limit)],
        )
        return [TermBucket(key=str(message), count=int(n)) for message, n, _ in rows]
