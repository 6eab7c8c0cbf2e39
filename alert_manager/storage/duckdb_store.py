"""
DuckDB base store.

DuckDB backs both the telemetry store (metrics and logs, read-heavy
aggregations) and the rule store (projects, rules, notification
methods). This base class owns the connection, schema creation and the
timeout-bounded query helper they share.
"""

import threading
from pathlib import Path
from typing import Any, Optional, Sequence
import structlog

import duckdb

logger = structlog.get_logger(__name__)


DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0


class QueryTimeout(TimeoutError):
    """Raised when a query runs past its timeout and is interrupted."""


class DuckDBStore:
    """
    Shared DuckDB plumbing.

    Design principles:
    - One cursor per query, so concurrent project workers never share one
    - Every query is interrupted after `query_timeout` seconds
    - Schema is created on open unless read-only
    """

    SCHEMA: Sequence[str] = ()

    def __init__(
        self,
        db_path: str,
        read_only: bool = False,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    ):
        """
        Initialize DuckDB store.

        Args:
            db_path: Path to DuckDB file (":memory:" for an in-process database)
            read_only: Open in read-only mode
            query_timeout: Seconds before a running query is interrupted
        """
        self.db_path = db_path
        self.read_only = read_only
        self.query_timeout = query_timeout

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = duckdb.connect(str(db_path), read_only=read_only)

        if not read_only:
            self._init_schema()

        logger.info(
            "duckdb_store_initialized",
            store=type(self).__name__,
            path=str(db_path),
            read_only=read_only,
        )

    def _init_schema(self) -> None:
        """Initialize database schema."""
        for statement in self.SCHEMA:
            self.conn.execute(statement)
        self.conn.commit()

    def _fetch(self, sql: str, params: Optional[list] = None) -> tuple[list[str], list[tuple]]:
        """Run a read query on its own cursor, bounded by the query timeout."""
        cursor = self.conn.cursor()
        timer = threading.Timer(self.query_timeout, cursor.interrupt)
        timer.daemon = True
        timer.start()
        try:
            result = cursor.execute(sql, params or [])
            columns = [d[0] for d in result.description]
            return columns, result.fetchall()
        except duckdb.InterruptException as e:
            raise QueryTimeout(
                f"query exceeded {self.query_timeout}s and was interrupted"
            ) from e
        finally:
            timer.cancel()
            cursor.close()

    def _query(self, sql: str, params: Optional[list] = None) -> list[tuple]:
        return self._fetch(sql, params)[1]

    def _query_dicts(self, sql: str, params: Optional[list] = None) -> list[dict[str, Any]]:
        """Like `_query`, returning rows as column-name dicts."""
        columns, rows = self._fetch(sql, params)
        return [dict(zip(columns, row)) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
        logger.info("duckdb_store_closed", store=type(self).__name__, path=str(self.db_path))
