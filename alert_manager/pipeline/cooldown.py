"""
Cooldown suppression.

Prevents alert fatigue: the same alert is delivered at most once per
cooldown period. "The same alert" means the same fingerprint, built from
project, category, discriminant, threshold and operator, so two rules
configured identically share a cooldown even if their ids differ.

The last-fired time lives in the shared cache, and admission is a single
atomic check-and-set per fingerprint. If the cache cannot be reached the
filter fails open: every alert is admitted and the outage is logged.
"""

import time
from typing import Callable, Optional
import structlog

from alert_manager.interfaces import CooldownCache
from alert_manager.rules.models import Observation, RuleCategory

logger = structlog.get_logger(__name__)


DEFAULT_COOLDOWN_SECONDS = 300
DEFAULT_KEY_PREFIX = "cooldown:"


def _format_threshold(threshold: float) -> str:
    value = float(threshold)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def fingerprint(observation: Observation) -> str:
    """Deterministic identity of an alert across cycles."""
    rule = observation.rule
    parts = [rule.project_name, rule.category.value]

    if rule.category is RuleCategory.METRIC_AVERAGE:
        parts.append(rule.metric_name)
    elif rule.category is RuleCategory.LOG_COUNT:
        parts.extend([rule.log_field, rule.log_field_value])

    parts.extend([_format_threshold(rule.threshold), rule.operator.value])
    return "_".join(str(p) for p in parts)


class CooldownFilter:
    """
    Cache-backed cooldown filter.

    Usage:
        cooldown = CooldownFilter(RedisCooldownCache(client), cooldown_seconds=300)
        admitted = cooldown.filter(observations)
    """

    def __init__(
        self,
        cache: CooldownCache,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize cooldown filter.

        Args:
            cache: Shared cooldown cache
            cooldown_seconds: Minimum seconds between two deliveries per fingerprint
            key_prefix: Prefix for cache keys
            clock: Returns Unix time in seconds (defaults to time.time)
        """
        if cooldown_seconds <= 0:
            raise ValueError(f"cooldown_seconds must be positive, got {cooldown_seconds}")

        self.cache = cache
        self.cooldown_seconds = int(cooldown_seconds)
        self.key_prefix = key_prefix
        self.clock = clock or time.time

    def cache_key(self, observation: Observation) -> str:
        return f"{self.key_prefix}{fingerprint(observation)}"

    def filter(self, observations: list[Observation]) -> list[Observation]:
        """
        Return the observations allowed through, in input order.

        Each admitted observation refreshes its cache entry to `now` with a
        TTL of the cooldown period.
        """
        if not observations:
            return []

        keys = [self.cache_key(o) for o in observations]
        now = int(self.clock())

        try:
            decisions = self.cache.check_and_set_many(keys, now, self.cooldown_seconds)
            if len(decisions) != len(keys):
                raise RuntimeError(
                    f"cooldown cache returned {len(decisions)} results for {len(keys)} keys"
                )
        except Exception as e:
            logger.error(
                "cooldown_cache_unavailable",
                error=str(e),
                admitted=len(observations),
                message="Admitting all alerts (fail open)",
            )
            return list(observations)

        admitted = []
        for observation, key, allowed in zip(observations, keys, decisions):
            if allowed:
                admitted.append(observation)
            else:
                logger.info("alert_suppressed_cooldown", key=key)

        return admitted
