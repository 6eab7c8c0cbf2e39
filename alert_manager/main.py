"""
Main Alert Manager application.

Wires the pipeline from settings:
- Telemetry store (DuckDB)
- Rule store (DuckDB)
- Cooldown cache and event bus (Redis)
- Evaluator, grouper, cooldown filter, publisher, orchestrator

The scheduler calls `run_cycle()` once per tick:
    python scripts/run_alert_cycle.py
"""

from typing import Optional
import structlog

import redis

from alert_manager.config import Settings
from alert_manager.interfaces import CooldownCache, EventBus, RuleSource, TelemetryBackend
from alert_manager.pipeline.cooldown import CooldownFilter
from alert_manager.pipeline.grouping import AlertGrouper
from alert_manager.pipeline.orchestrator import CycleOrchestrator, CycleReport
from alert_manager.pipeline.publisher import NotificationPublisher
from alert_manager.rules.evaluator import RuleEvaluator
from alert_manager.storage.redis_store import RedisCooldownCache, RedisEventBus, connect_redis
from alert_manager.storage.rule_store import RuleStore
from alert_manager.storage.telemetry_store import TelemetryStore

logger = structlog.get_logger(__name__)


class AlertManager:
    """
    Alert evaluation application.

    Any collaborator can be passed in; the rest are built from settings.
    Collaborators built here are closed by `close()`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        telemetry: Optional[TelemetryBackend] = None,
        rule_source: Optional[RuleSource] = None,
        cache: Optional[CooldownCache] = None,
        bus: Optional[EventBus] = None,
    ):
        """
        Initialize the Alert Manager.

        Args:
            settings: Runtime settings (defaults if omitted)
            telemetry: Telemetry backend (DuckDB store if omitted)
            rule_source: Rule source (DuckDB store if omitted)
            cache: Cooldown cache (Redis if omitted)
            bus: Event bus (Redis if omitted)
        """
        self.settings = settings or Settings()
        self.settings.validate()
        self._owned: list = []
        self._redis: Optional[redis.Redis] = None

        try:
            self._init_storage(telemetry, rule_source, cache, bus)
            self._init_pipeline()
        except Exception:
            # Release whatever was opened before the failure
            self.close()
            raise

        logger.info(
            "alert_manager_initialized",
            channel=self.settings.alert_channel,
            cooldown_seconds=self.settings.cooldown_seconds,
            max_workers=self.settings.max_workers,
        )

    def _init_storage(self, telemetry, rule_source, cache, bus) -> None:
        s = self.settings

        if telemetry is None:
            telemetry = TelemetryStore(s.telemetry_db_path, query_timeout=s.query_timeout_seconds)
            self._owned.append(telemetry)
        if rule_source is None:
            rule_source = RuleStore(s.rules_db_path, query_timeout=s.query_timeout_seconds)
            self._owned.append(rule_source)

        if cache is None or bus is None:
            self._redis = connect_redis(
                host=s.redis_host,
                port=s.redis_port,
                db=s.redis_db,
                password=s.redis_password,
                socket_timeout=s.redis_socket_timeout,
            )
            cache = cache or RedisCooldownCache(self._redis)
            bus = bus or RedisEventBus(self._redis)

        self.telemetry = telemetry
        self.rule_source = rule_source
        self.cache = cache
        self.bus = bus

    def _init_pipeline(self) -> None:
        s = self.settings
        self.evaluator = RuleEvaluator(self.telemetry)
        self.cooldown = CooldownFilter(
            self.cache,
            cooldown_seconds=s.cooldown_seconds,
            key_prefix=s.cooldown_key_prefix,
        )
        self.publisher = NotificationPublisher(
            self.bus,
            channel=s.alert_channel,
            source=s.source_tag,
            version=s.schema_version,
        )
        self.orchestrator = CycleOrchestrator(
            rule_source=self.rule_source,
            evaluator=self.evaluator,
            cooldown=self.cooldown,
            publisher=self.publisher,
            grouper=AlertGrouper(),
            max_workers=s.max_workers,
        )

    def run_cycle(self) -> CycleReport:
        """Run one evaluation cycle."""
        return self.orchestrator.run_cycle()

    def close(self) -> None:
        """Close the stores and Redis client created by this instance."""
        for store in self._owned:
            store.close()
        self._owned = []
        if self._redis is not None:
            self._redis.close()
            self._redis = None
            logger.info("redis_connection_closed")

    def __enter__(self) -> "AlertManager":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
