"""
Alert rule and observation models.

An AlertRule is read-only configuration loaded once per cycle. Each rule
belongs to exactly one category, and each category carries its own
criteria payload:

- metric_avg   -> MetricCriteria(metric_name)
- log_count    -> LogCriteria(log_field, log_field_value)
- event_count  -> EventCriteria()

Observations are what a rule produces when it triggers. They live for a
single cycle and are never persisted.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Union
import structlog

from alert_manager.rules.operators import Operator, to_number

logger = structlog.get_logger(__name__)


class InvalidRule(ValueError):
    """Raised when a stored rule cannot be turned into an AlertRule."""


class RuleCategory(Enum):
    """Rule categories. Values are the stored/wire names."""
    METRIC_AVERAGE = "metric_avg"
    LOG_COUNT = "log_count"
    EVENT_COUNT = "event_count"

    @classmethod
    def parse(cls, value: Union["RuleCategory", str]) -> "RuleCategory":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name == "metric_average":
            return cls.METRIC_AVERAGE
        try:
            return cls(name)
        except ValueError:
            raise InvalidRule(
                f"rule_type must be one of: {', '.join(c.value for c in cls)}, got {value!r}"
            ) from None


class LogField(Enum):
    """Log fields a log_count rule can target."""
    LEVEL = "level"
    STATUS_CODE = "status_code"
    IP_ADDRESS = "ip_address"


# Status classes understood by status_code rules
STATUS_CLASSES = ("4xx", "5xx")

# Known notification channels (others are kept, with a warning)
KNOWN_METHODS = ("email", "slack", "webhook", "sms", "discord")


@dataclass(frozen=True)
class MetricCriteria:
    metric_name: str


@dataclass(frozen=True)
class LogCriteria:
    log_field: LogField
    log_field_value: str


@dataclass(frozen=True)
class EventCriteria:
    pass


Criteria = Union[MetricCriteria, LogCriteria, EventCriteria]

_CRITERIA_TYPES = {
    RuleCategory.METRIC_AVERAGE: MetricCriteria,
    RuleCategory.LOG_COUNT: LogCriteria,
    RuleCategory.EVENT_COUNT: EventCriteria,
}


@dataclass(frozen=True)
class NotificationMethod:
    """Where a triggered alert should be sent."""
    method: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"method": self.method, "value": self.value}


def normalize_methods(rows: Iterable[dict]) -> list[NotificationMethod]:
    """
    Clean up raw notification method rows.

    Kinds are lower-cased and destinations trimmed. Rows without a kind or
    with an empty destination are dropped. Unknown kinds are kept but logged.
    """
    methods = []
    for row in rows or []:
        if not row or not row.get("method"):
            continue

        kind = str(row["method"]).strip().lower()
        value = row.get("value")

        if kind not in KNOWN_METHODS:
            logger.warning("unknown_alert_method", method=kind)

        if value is None or not str(value).strip():
            logger.warning("empty_alert_method_value", method=kind)
            continue

        methods.append(NotificationMethod(method=kind, value=str(value).strip()))

    return methods


@dataclass(frozen=True)
class AlertRule:
    """
    One monitored condition.

    The criteria type always matches the category; use `from_row` to build
    rules from stored rows so that invariant is checked.
    """
    id: Any
    project_name: str
    category: RuleCategory
    criteria: Criteria
    operator: Operator
    threshold: float
    time_window: str
    methods: tuple[NotificationMethod, ...] = ()

    def __post_init__(self):
        expected = _CRITERIA_TYPES[self.category]
        if not isinstance(self.criteria, expected):
            raise InvalidRule(
                f"{self.category.value} rule needs {expected.__name__}, "
                f"got {type(self.criteria).__name__}"
            )

    @property
    def metric_name(self) -> Optional[str]:
        if isinstance(self.criteria, MetricCriteria):
            return self.criteria.metric_name
        return None

    @property
    def log_field(self) -> Optional[str]:
        if isinstance(self.criteria, LogCriteria):
            return self.criteria.log_field.value
        return None

    @property
    def log_field_value(self) -> Optional[str]:
        if isinstance(self.criteria, LogCriteria):
            return self.criteria.log_field_value
        return None

    def discriminant_fields(self) -> dict[str, Optional[str]]:
        """Category-specific identifying fields, in wire form."""
        if self.category is RuleCategory.METRIC_AVERAGE:
            return {"metric_name": self.metric_name}
        if self.category is RuleCategory.LOG_COUNT:
            return {"log_field": self.log_field, "log_field_value": self.log_field_value}
        return {}

    @classmethod
    def from_row(
        cls,
        row: dict[str, Any],
        methods: Iterable[NotificationMethod] = (),
    ) -> "AlertRule":
        """
        Build a rule from a stored row.

        Raises:
            InvalidRule: on an unknown category or operator, a missing
                discriminant, or a non-numeric threshold
        """
        category = RuleCategory.parse(row.get("rule_type"))

        try:
            operator = Operator.parse(row.get("operator"))
        except ValueError as e:
            raise InvalidRule(str(e)) from None

        threshold = to_number(row.get("threshold"))
        if threshold is None:
            raise InvalidRule(f"threshold must be a valid number, got {row.get('threshold')!r}")

        if category is RuleCategory.METRIC_AVERAGE:
            metric_name = row.get("metric_name")
            if not metric_name:
                raise InvalidRule("metric_name is required for metric_avg rules")
            criteria: Criteria = MetricCriteria(metric_name=metric_name)
        elif category is RuleCategory.LOG_COUNT:
            try:
                log_field = LogField(row.get("log_field"))
            except ValueError:
                raise InvalidRule(
                    f"log_field must be one of: {', '.join(f.value for f in LogField)}, "
                    f"got {row.get('log_field')!r}"
                ) from None
            log_field_value = row.get("log_field_value")
            if log_field is not LogField.IP_ADDRESS and not log_field_value:
                raise InvalidRule("log_field_value is required for log_count alerts")
            criteria = LogCriteria(log_field=log_field, log_field_value=log_field_value or "")
        else:
            criteria = EventCriteria()

        project_name = row.get("project_name")
        if not project_name:
            raise InvalidRule("project_name is required")

        return cls(
            id=row.get("id"),
            project_name=project_name,
            category=category,
            criteria=criteria,
            operator=operator,
            threshold=threshold,
            time_window=row.get("time_window") or "",
            methods=tuple(methods),
        )


@dataclass
class Observation:
    """A rule that triggered at one point in time."""
    rule: AlertRule
    current_value: float
    detail: dict[str, Any]
    timestamp: datetime
    priority: float

    def to_dict(self) -> dict[str, Any]:
        """Wire form. Priority is internal and not included."""
        rule = self.rule
        data: dict[str, Any] = {
            "id": rule.id,
            "project_name": rule.project_name,
            "rule_type": rule.category.value,
        }
        data.update(rule.discriminant_fields())
        data.update(self.detail)
        data.update({
            "current_value": self.current_value,
            "operator": rule.operator.value,
            "threshold": rule.threshold,
            "time_window": rule.time_window,
            "methods": [m.to_dict() for m in rule.methods],
            "timestamp": self.timestamp.isoformat(),
        })
        return data


@dataclass
class DeliveryEvent:
    """What actually goes out on the alert channel."""
    observation: Observation
    published_at: datetime
    source: str
    version: str
    subscribers: Optional[int] = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data = self.observation.to_dict()
        data.update({
            "published_at": self.published_at.isoformat(),
            "source": self.source,
            "version": self.version,
        })
        return data

    def to_json(self) -> str:
        """Serialize for publishing."""
        return json.dumps(self.to_dict(), default=str)
