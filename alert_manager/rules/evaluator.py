"""
Rule evaluation against the telemetry store.

Each rule category has its own handler:

- metric_avg:  average of a metric over the window vs. threshold
- log_count:   share of log entries matching a level or status class,
               or the first top source IP whose share crosses the threshold
- event_count: the first lifecycle message whose share crosses the threshold

Comparisons always use the unrounded value; reported values are rounded
to 2 decimal places.

A rule that fails to evaluate (bad time window, query error, timeout) is
logged and reported as not triggered. It never stops sibling rules.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union
import structlog

from alert_manager.interfaces import TelemetryBackend, TermBucket
from alert_manager.rules.models import (
    STATUS_CLASSES,
    AlertRule,
    LogField,
    Observation,
    RuleCategory,
)
from alert_manager.rules.operators import compare, priority_score
from alert_manager.rules.time_window import resolve_time_window

logger = structlog.get_logger(__name__)


# Phrases counted by event_count rules
LIFECYCLE_PHRASES = (
    "server started",
    "database connected",
    "database disconnected",
    "db connected",
    "server shutdown",
    "app shutdown",
)

TOP_TERMS_LIMIT = 10


@dataclass(frozen=True)
class NotTriggered:
    reason: str = "condition_not_met"


@dataclass(frozen=True)
class Triggered:
    current_value: float
    detail: dict[str, Any] = field(default_factory=dict)


EvaluationResult = Union[NotTriggered, Triggered]


def _round(value: float) -> float:
    return round(float(value), 2)


class RuleEvaluator:
    """
    Evaluates AlertRules against a TelemetryBackend.

    Usage:
        evaluator = RuleEvaluator(telemetry_store)
        result = evaluator.evaluate(rule)
        if isinstance(result, Triggered):
            ...
    """

    def __init__(
        self,
        telemetry: TelemetryBackend,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize evaluator.

        Args:
            telemetry: Aggregation backend
            clock: Returns the current time (defaults to UTC now)
        """
        self.telemetry = telemetry
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._handlers: dict[RuleCategory, Callable[[AlertRule], EvaluationResult]] = {
            RuleCategory.METRIC_AVERAGE: self._evaluate_metric_average,
            RuleCategory.LOG_COUNT: self._evaluate_log_count,
            RuleCategory.EVENT_COUNT: self._evaluate_event_count,
        }
        missing = set(RuleCategory) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No evaluator for categories: {sorted(c.value for c in missing)}")

    def evaluate(self, rule: AlertRule) -> EvaluationResult:
        """Evaluate one rule. Errors are logged and reported as NotTriggered."""
        try:
            return self._handlers[rule.category](rule)
        except Exception as e:
            logger.error(
                "rule_evaluation_failed",
                rule_id=rule.id,
                project=rule.project_name,
                rule_type=rule.category.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return NotTriggered(reason="error")

    def observe(self, rule: AlertRule) -> Optional[Observation]:
        """Evaluate a rule and wrap a trigger as an Observation."""
        result = self.evaluate(rule)
        if not isinstance(result, Triggered):
            return None

        return Observation(
            rule=rule,
            current_value=result.current_value,
            detail=result.detail,
            timestamp=self.clock(),
            priority=priority_score(rule.operator, rule.threshold),
        )

    # =========================================================================
    # Category handlers
    # =========================================================================

    def _evaluate_metric_average(self, rule: AlertRule) -> EvaluationResult:
        window = resolve_time_window(rule.time_window)
        average = self.telemetry.average_over(rule.project_name, rule.metric_name, window)

        if average is None:
            return NotTriggered(reason="no_data")

        if not compare(rule.operator, average, rule.threshold):
            return NotTriggered()

        return Triggered(
            current_value=_round(average),
            detail={"metric_name": rule.metric_name},
        )

    def _evaluate_log_count(self, rule: AlertRule) -> EvaluationResult:
        window = resolve_time_window(rule.time_window)
        log_field = rule.criteria.log_field

        if log_field is LogField.IP_ADDRESS:
            buckets = self.telemetry.top_terms_over(
                rule.project_name, log_field.value, window, limit=TOP_TERMS_LIMIT
            )
            hit = self._first_share_crossing(rule, buckets)
            if hit is None:
                return NotTriggered()
            bucket, percentage = hit
            return Triggered(
                current_value=_round(percentage),
                detail={"triggered_ip": bucket.key, "ip_count": bucket.count},
            )

        if log_field is LogField.STATUS_CODE and rule.log_field_value not in STATUS_CLASSES:
            return NotTriggered(reason="unsupported_status_class")

        counts = self.telemetry.counts_over(
            rule.project_name, log_field.value, rule.log_field_value, window
        )
        if counts.total == 0:
            return NotTriggered(reason="no_data")

        percentage = counts.matching / counts.total * 100
        if not compare(rule.operator, percentage, rule.threshold):
            return NotTriggered()

        return Triggered(
            current_value=_round(percentage),
            detail={"error_count": counts.matching, "total_count": counts.total},
        )

    def _evaluate_event_count(self, rule: AlertRule) -> EvaluationResult:
        window = resolve_time_window(rule.time_window)
        buckets = self.telemetry.phrase_counts_over(
            rule.project_name, LIFECYCLE_PHRASES, window, limit=TOP_TERMS_LIMIT
        )

        hit = self._first_share_crossing(rule, buckets)
        if hit is None:
            return NotTriggered()

        bucket, percentage = hit
        return Triggered(
            current_value=_round(percentage),
            detail={"triggered_message": bucket.key, "message_count": bucket.count},
        )

    @staticmethod
    def _first_share_crossing(
        rule: AlertRule,
        buckets: list[TermBucket],
    ) -> Optional[tuple[TermBucket, float]]:
        """First bucket (by rank) whose share of the total satisfies the rule."""
        buckets = buckets[:TOP_TERMS_LIMIT]
        total = sum(b.count for b in buckets)
        if total == 0:
            return None

        for bucket in buckets:
            percentage = bucket.count / total * 100
            if compare(rule.operator, percentage, rule.threshold):
                return bucket, percentage

        return None
