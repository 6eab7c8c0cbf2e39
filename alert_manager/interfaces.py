"""
Collaborator contracts.

The pipeline never constructs its own clients. Each component receives a
handle satisfying one of these protocols, so the DuckDB/Redis
implementations in `alert_manager.storage` can be swapped for fakes.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

from alert_manager.rules.models import AlertRule, NotificationMethod
from alert_manager.rules.time_window import TimeWindow


@dataclass(frozen=True)
class Project:
    name: str


@dataclass(frozen=True)
class LogCounts:
    """Matching vs. total log entries in a window."""
    matching: int
    total: int


@dataclass(frozen=True)
class TermBucket:
    """One bucket of a top-terms aggregation."""
    key: str
    count: int


@runtime_checkable
class TelemetryBackend(Protocol):
    """Aggregations over a project's metrics and logs."""

    def average_over(
        self, project: str, metric_name: str, window: TimeWindow
    ) -> Optional[float]: ...

    def counts_over(
        self, project: str, field: str, value: str, window: TimeWindow
    ) -> LogCounts: ...

    def top_terms_over(
        self, project: str, field: str, window: TimeWindow, limit: int = 10
    ) -> list[TermBucket]: ...

    def phrase_counts_over(
        self, project: str, phrases: Sequence[str], window: TimeWindow, limit: int = 10
    ) -> list[TermBucket]: ...


@runtime_checkable
class RuleSource(Protocol):
    """Read access to project and rule configuration."""

    def list_active_projects(self) -> list[Project]: ...

    def list_rules(self, project: str) -> list[AlertRule]: ...

    def list_notification_methods(self, rule_id) -> list[NotificationMethod]: ...


@runtime_checkable
class CooldownCache(Protocol):
    """Shared last-fired timestamps with TTL."""

    def get_if_fresh(self, key: str, ttl_seconds: int, now: int) -> Optional[int]: ...

    def set_with_ttl(self, key: str, value: int, ttl_seconds: int) -> None: ...

    def check_and_set_many(
        self, keys: Sequence[str], now: int, ttl_seconds: int
    ) -> list[bool]:
        """
        Atomically, per key: admit (and store `now` with TTL) if the key is
        absent or older than `ttl_seconds`, otherwise refuse. Returns one
        flag per key, in order.
        """
        ...


@runtime_checkable
class EventBus(Protocol):
    """Pub/sub transport for delivery events."""

    def publish_batch(self, channel: str, payloads: Sequence[str]) -> list[int]: ...

    def publish_one(self, channel: str, payload: str) -> int: ...
