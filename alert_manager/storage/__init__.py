"""
Storage layer.

- TelemetryStore (DuckDB): metrics and logs, aggregated per rule
- RuleStore (DuckDB): projects, rules, notification methods
- RedisCooldownCache / RedisEventBus: shared cooldown records and alert pub/sub
"""

from alert_manager.storage.duckdb_store import DuckDBStore, QueryTimeout
from alert_manager.storage.redis_store import RedisCooldownCache, RedisEventBus, connect_redis
from alert_manager.storage.rule_store import RuleStore
from alert_manager.storage.telemetry_store import TelemetryStore

__all__ = [
    "DuckDBStore",
    "QueryTimeout",
    "RedisCooldownCache",
    "RedisEventBus",
    "RuleStore",
    "TelemetryStore",
    "connect_redis",
]
