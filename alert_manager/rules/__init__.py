"""
Alert rules: models, time windows, operators and evaluation.
"""

from alert_manager.rules.models import (
    AlertRule,
    DeliveryEvent,
    EventCriteria,
    InvalidRule,
    LogCriteria,
    LogField,
    MetricCriteria,
    NotificationMethod,
    Observation,
    RuleCategory,
)
from alert_manager.rules.operators import Operator, compare, priority_score
from alert_manager.rules.time_window import InvalidTimeWindow, TimeWindow, resolve_time_window

__all__ = [
    "AlertRule",
    "DeliveryEvent",
    "EventCriteria",
    "InvalidRule",
    "InvalidTimeWindow",
    "LogCriteria",
    "LogField",
    "MetricCriteria",
    "NotificationMethod",
    "Observation",
    "Operator",
    "RuleCategory",
    "TimeWindow",
    "compare",
    "priority_score",
    "resolve_time_window",
]
